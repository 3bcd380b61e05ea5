import asyncio
import logging
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field
from uuid import uuid4

import numpy as np
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.embeddings.base import EmbedderBase
from trellis.retrieval.exceptions import (
    SummarizationFailure,
    TreeBuildAborted,
    TreeInvariantViolation,
)
from trellis.retrieval.raptor.clustering import Clusterer, GMMClusterer, SoftClusters
from trellis.retrieval.raptor.summarizer import SummarizerBase
from trellis.retrieval.store.models import Chunk, RaptorNode, RaptorTree

logger = logging.getLogger(__name__)


@dataclass
class BuildProgress:
    """Emitted by RaptorTreeBuilder.build() after each level completes."""

    level: int
    pool_size: int
    clusters: int
    created: int
    failed: int


@dataclass
class _ClusterJob:
    members: list[str]
    overlapping: list[str]


@dataclass
class _WorkingTree:
    """Mutable node table used while building; frozen into a RaptorTree at the end."""

    level: dict[str, int] = field(default_factory=dict)
    embedding: dict[str, list[float]] = field(default_factory=dict)
    text: dict[str, str] = field(default_factory=dict)
    children: dict[str, set[str]] = field(default_factory=dict)
    parent: dict[str, str] = field(default_factory=dict)
    overlaps: dict[str, set[str]] = field(default_factory=dict)
    synthetic: set[str] = field(default_factory=set)

    def add(
        self,
        node_id: str,
        level: int,
        embedding: list[float],
        text: str,
        children: Sequence[str] = (),
    ) -> None:
        self.level[node_id] = level
        self.embedding[node_id] = embedding
        self.text[node_id] = text
        self.children[node_id] = set(children)
        for child in children:
            self.parent[child] = node_id

    def freeze(self, roots: set[str], failed: int, warnings: list[str]) -> RaptorTree:
        nodes = {
            node_id: RaptorNode(
                id=node_id,
                level=level,
                embedding=self.embedding[node_id],
                summary_text=self.text[node_id],
                children=frozenset(self.children[node_id]),
                parent=self.parent.get(node_id),
                overlaps=frozenset(self.overlaps.get(node_id, set())),
                synthetic=node_id in self.synthetic,
            )
            for node_id, level in self.level.items()
        }
        return RaptorTree(
            nodes=nodes,
            roots=frozenset(roots),
            failed_clusters=failed,
            warnings=tuple(warnings),
        )


class RaptorTreeBuilder:
    """Builds the RAPTOR hierarchical summary tree over a set of chunks."""

    def __init__(
        self,
        embedder: EmbedderBase,
        summarizer: SummarizerBase,
        config: AppConfig = Config,
        clusterer: Clusterer | None = None,
    ):
        self._embedder = embedder
        self._summarizer = summarizer
        self._config = config.raptor
        self._clusterer = clusterer or GMMClusterer(
            reduction_dim=self._config.reduction_dim,
            threshold=self._config.cluster_similarity_threshold,
            n_neighbors=self._config.umap_n_neighbors,
            min_dist=self._config.umap_min_dist,
        )
        self.tree: RaptorTree | None = None
        self.total_nodes = 0

    async def build(
        self, chunks: Sequence[Chunk]
    ) -> AsyncGenerator[BuildProgress, None]:
        """Build a RAPTOR tree from chunks, yielding progress after each level.

        Each level clusters the current pool of nodes, summarizes every
        multi-member cluster with the summarization capability, embeds the
        summary and links the cluster's primary members as children of the new
        node. Soft-clustering overlap feeds extra member texts into a summary
        without creating a second parent. Clusters that still fail after the
        retry limit are dropped and their members become roots.

        The finished tree is available as `self.tree` once the generator is
        exhausted.

        Raises:
            ValueError: If chunk ids are not unique
            TreeBuildAborted: If too many clusters fail summarization
        """
        self.tree = None
        self.total_nodes = 0

        ids = [chunk.id for chunk in chunks]
        if len(set(ids)) != len(ids):
            raise ValueError("Chunk ids must be unique")

        work = _WorkingTree()
        for chunk in chunks:
            work.add(chunk.id, 0, list(chunk.embedding), chunk.text)

        pool = list(ids)
        orphans: list[str] = []
        warnings: list[str] = []
        attempted = 0
        failed = 0
        level = 1
        semaphore = asyncio.Semaphore(max(1, self._config.summarization_concurrency))

        while len(pool) > 1 and level <= self._config.max_depth:
            logger.debug(f"Building RAPTOR level {level} from {len(pool)} nodes")

            clusters = self._cluster(pool, work)
            jobs, carried = self._plan_jobs(pool, clusters)

            if not jobs:
                logger.debug(f"No multi-member clusters at level {level}")
                break

            outcomes = await asyncio.gather(
                *(self._summarize(job, work, semaphore) for job in jobs),
                return_exceptions=True,
            )

            created: list[str] = []
            level_failed = 0
            for job, outcome in zip(jobs, outcomes):
                attempted += 1
                if isinstance(outcome, SummarizationFailure):
                    failed += 1
                    level_failed += 1
                    orphans.extend(job.members)
                    message = (
                        f"Summarization failed for a level {level} cluster of "
                        f"{len(job.members)} nodes: {outcome}"
                    )
                    warnings.append(message)
                    logger.warning(message)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome

                summary, embedding = outcome
                node_id = str(uuid4())
                work.add(node_id, level, embedding, summary, children=job.members)
                for member in job.overlapping:
                    work.overlaps.setdefault(member, set()).add(node_id)
                created.append(node_id)

            self.total_nodes += len(created)

            threshold = self._config.build_failure_fraction_abort_threshold
            if attempted and failed / attempted > threshold:
                raise TreeBuildAborted(failed, attempted, threshold)

            logger.debug(
                f"Created {len(created)} nodes at level {level} ({level_failed} failed)"
            )
            yield BuildProgress(
                level=level,
                pool_size=len(pool),
                clusters=len(jobs),
                created=len(created),
                failed=level_failed,
            )

            pool = carried + created
            level += 1

        if len(pool) > 1:
            pool = [self._synthesize_root(pool, work)]

        tree = work.freeze(set(pool) | set(orphans), failed, warnings)
        tree.validate_structure(ids)
        self.tree = tree
        logger.debug(
            f"RAPTOR tree built with {len(tree)} nodes "
            f"({self.total_nodes} summaries, {failed} failed clusters)"
        )

    async def build_tree(self, chunks: Sequence[Chunk]) -> RaptorTree:
        """Run build() to completion and return the resulting tree."""
        async for _ in self.build(chunks):
            pass
        if self.tree is None:
            raise TreeInvariantViolation("Tree build finished without a tree")
        return self.tree

    def _cluster(self, pool: list[str], work: _WorkingTree) -> SoftClusters:
        if len(pool) < self._config.min_cluster_size:
            return SoftClusters.single(len(pool))
        embeddings = np.array([work.embedding[node_id] for node_id in pool])
        return self._clusterer.cluster(embeddings)

    def _plan_jobs(
        self, pool: list[str], clusters: SoftClusters
    ) -> tuple[list[_ClusterJob], list[str]]:
        """Split the pool into summarization jobs and nodes carried up unchanged."""
        jobs: list[_ClusterJob] = []
        carried: list[str] = []
        for cluster_id in clusters.cluster_ids:
            members = [
                node_id
                for node_id, primary in zip(pool, clusters.primary)
                if primary == cluster_id
            ]
            if not members:
                continue
            if len(members) == 1:
                carried.extend(members)
                continue
            overlapping = [
                node_id
                for node_id, assignments, primary in zip(
                    pool, clusters.memberships, clusters.primary
                )
                if primary != cluster_id and cluster_id in assignments
            ]
            jobs.append(_ClusterJob(members=members, overlapping=overlapping))
        return jobs, carried

    async def _summarize(
        self,
        job: _ClusterJob,
        work: _WorkingTree,
        semaphore: asyncio.Semaphore,
    ) -> tuple[str, list[float]]:
        texts = [work.text[node_id] for node_id in job.members + job.overlapping]
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self._config.summarization_retry_limit)),
                wait=wait_exponential(
                    multiplier=self._config.retry_initial_wait,
                    max=self._config.retry_max_wait,
                ),
                reraise=True,
            ):
                with attempt:
                    async with semaphore:
                        summary = await self._summarizer.summarize(texts)
                        if not summary or not summary.strip():
                            raise SummarizationFailure("Empty summary returned")
                        embedding = await self._embedder.embed(summary)
        except Exception as e:
            raise SummarizationFailure(str(e) or type(e).__name__) from e
        return summary, embedding

    def _synthesize_root(self, pool: list[str], work: _WorkingTree) -> str:
        """Aggregate the remaining top-level nodes under one root without summarizing."""
        vectors = np.array([work.embedding[node_id] for node_id in pool], dtype=float)
        mean = vectors.mean(axis=0)
        norm = np.linalg.norm(mean)
        if norm > 0:
            mean = mean / norm

        root_id = str(uuid4())
        level = max(work.level[node_id] for node_id in pool) + 1
        work.add(root_id, level, mean.tolist(), "", children=pool)
        work.synthetic.add(root_id)
        logger.debug(f"Synthesized root over {len(pool)} top-level nodes at level {level}")
        return root_id

import asyncio
import logging
from collections.abc import Sequence

from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.embeddings import EmbedderBase, get_embedder
from trellis.retrieval.embeddings.cache import CachedEmbedder
from trellis.retrieval.exceptions import TreeInvariantViolation
from trellis.retrieval.pipeline.models import QueryResult
from trellis.retrieval.pipeline.orchestrator import RetrievalPipeline
from trellis.retrieval.query.expansion import QueryExpanderBase
from trellis.retrieval.raptor.builder import RaptorTreeBuilder
from trellis.retrieval.raptor.clustering import Clusterer
from trellis.retrieval.raptor.index import RaptorTreeIndex
from trellis.retrieval.raptor.search import TreeSearchMode
from trellis.retrieval.raptor.summarizer import SummarizerBase
from trellis.retrieval.reranking import CrossEncoderBase, Reranker, get_cross_encoder
from trellis.retrieval.retrieval.channels import (
    ChannelAdapter,
    DenseChannel,
    SparseChannel,
    SummaryChannel,
)
from trellis.retrieval.retrieval.fusion import FusionEngine
from trellis.retrieval.store import (
    SparseIndex,
    VectorStore,
    create_sparse_index,
    create_vector_store,
)
from trellis.retrieval.store.models import Chunk, Document, RaptorTree

logger = logging.getLogger(__name__)

class RetrievalEngine:
    """High-level hybrid retrieval engine.

    Owns the chunk registry, the dense and sparse backends and the RAPTOR
    tree index. Queries run against the tree snapshot current when they start;
    rebuilds construct a new tree off to the side and publish it atomically.
    """

    def __init__(
        self,
        config: AppConfig = Config,
        embedder: EmbedderBase | None = None,
        vector_store: VectorStore | None = None,
        sparse_index: SparseIndex | None = None,
        summarizer: SummarizerBase | None = None,
        cross_encoder: CrossEncoderBase | None = None,
        expander: QueryExpanderBase | None = None,
        clusterer: Clusterer | None = None,
    ):
        """Initialize the engine.

        Args:
            config: Configuration to use. Defaults to global Config.
            embedder: Embedding capability. Built from config when omitted.
            vector_store: Dense backend. Selected by config.storage.backend when omitted.
            sparse_index: Sparse backend. Selected by config.storage.backend when omitted.
            summarizer: Summarization capability for tree builds. An LLM
                summarizer is created on first rebuild when omitted.
            cross_encoder: Reranking capability. Built from config.reranking when
                omitted and the rerank stage is enabled.
            expander: Query expansion capability. An LLM expander is created
                on first use when omitted and expansion is enabled.
            clusterer: Clustering strategy for tree builds. UMAP + GMM by default.
        """
        self._config = config
        self.embedder = CachedEmbedder(embedder or get_embedder(config))
        self.vector_store = vector_store or create_vector_store(config)
        self.sparse_index = sparse_index or create_sparse_index(config)
        self._summarizer = summarizer
        self._cross_encoder = cross_encoder
        if cross_encoder is None and config.pipeline.stages.rerank:
            self._cross_encoder = get_cross_encoder(config)
        self._expander = expander
        self._clusterer = clusterer

        self.trees = RaptorTreeIndex()
        self._chunks: dict[str, Chunk] = {}
        self._documents: dict[str, Document] = {}
        self._generation = 0
        self._published_generation = 0
        self._rebuild_lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):  # noqa: ARG002
        """Async context manager exit."""
        # Wait for an in-flight rebuild to publish before closing
        async with self._rebuild_lock:
            pass
        return False

    async def index_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Upsert chunks into the dense and sparse backends."""
        if not chunks:
            return
        await self.vector_store.upsert_many([(c.id, c.embedding) for c in chunks])
        await self.sparse_index.upsert_many([(c.id, c.text) for c in chunks])
        for chunk in chunks:
            self._chunks[chunk.id] = chunk
        self._generation += 1
        logger.debug(f"Indexed {len(chunks)} chunks")

    async def add_document(self, document: Document, chunks: Sequence[Chunk]) -> Document:
        """Register a document and index its chunks.

        The document's chunk list is taken from chunks, in order. Re-adding a
        document replaces it: chunks it no longer lists are removed from both
        backends.
        """
        for chunk in chunks:
            if chunk.doc_id not in (None, document.id):
                raise ValueError(
                    f"Chunk '{chunk.id}' belongs to document '{chunk.doc_id}', "
                    f"not '{document.id}'"
                )
        stored = document.model_copy(update={"chunks": [c.id for c in chunks]})
        previous = self._documents.get(document.id)
        if previous is not None:
            keep = set(stored.chunks)
            await self._remove_chunks([cid for cid in previous.chunks if cid not in keep])
        await self.index_chunks(chunks)
        self._documents[document.id] = stored
        return stored

    async def create_document(
        self,
        document_id: str,
        texts: Sequence[str],
        metadata: dict | None = None,
    ) -> Document:
        """Embed pre-split texts as chunks of a new document and index them."""
        embeddings = await self.embedder.embed_many(list(texts))
        chunks = [
            Chunk(
                id=f"{document_id}:{i}",
                text=text,
                embedding=embedding,
                doc_id=document_id,
                metadata={"order": i},
            )
            for i, (text, embedding) in enumerate(zip(texts, embeddings))
        ]
        return await self.add_document(
            Document(id=document_id, metadata=metadata or {}), chunks
        )

    async def delete_document(self, document_id: str) -> bool:
        document = self._documents.pop(document_id, None)
        if document is None:
            return False
        await self._remove_chunks(document.chunks)
        return True

    async def _remove_chunks(self, chunk_ids: Sequence[str]) -> None:
        if not chunk_ids:
            return
        for chunk_id in chunk_ids:
            await self.vector_store.delete(chunk_id)
            await self.sparse_index.delete(chunk_id)
            self._chunks.pop(chunk_id, None)
        self._generation += 1
        logger.debug(f"Removed {len(chunk_ids)} chunks")

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        return self._chunks.get(chunk_id)

    def get_document(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    def tree_is_stale(self) -> bool:
        """True when chunks changed since the last published tree was built."""
        return self._generation != self._published_generation

    async def rebuild_tree(self) -> RaptorTree:
        """Build a new RAPTOR tree over all indexed chunks and publish it."""
        async with self._rebuild_lock:
            generation = self._generation
            chunks = list(self._chunks.values())
            builder = RaptorTreeBuilder(
                self.embedder,
                self._get_summarizer(),
                self._config,
                clusterer=self._clusterer,
            )
            async for progress in builder.build(chunks):
                logger.info(
                    f"RAPTOR level {progress.level}: {progress.created} summaries "
                    f"from {progress.pool_size} nodes ({progress.failed} failed)"
                )
            if builder.tree is None:
                raise TreeInvariantViolation("Tree build finished without a tree")
            published = self.trees.publish(builder.tree)
            self._published_generation = generation
            return published

    async def query(
        self, text: str, mode: TreeSearchMode | None = None
    ) -> QueryResult:
        """Run the full retrieval pipeline for a query.

        Raises:
            AllChannelsFailed: Every channel was unavailable.
            PipelineTimeout: The deadline expired before any channel completed.
        """
        tree = self.trees.snapshot()
        pipeline = RetrievalPipeline(
            channels=self._channels(tree, mode),
            fusion=FusionEngine(
                k=self._config.fusion.k, max_results=self._config.fusion.max_results
            ),
            reranker=Reranker(
                self._cross_encoder,
                top_n=self._config.reranking.top_n,
                concurrency=self._config.reranking.concurrency,
                timeout=self._config.reranking.timeout,
            ),
            expander=self._get_expander(),
            text_resolver=lambda ref: self._resolve_text(tree, ref),
            config=self._config,
            tree_version=tree.version,
        )
        return await pipeline.run(text)

    def _channels(
        self, tree: RaptorTree, mode: TreeSearchMode | None
    ) -> list[ChannelAdapter]:
        enabled = self._config.channels
        channels: list[ChannelAdapter] = []
        if enabled.dense.enabled:
            channels.append(DenseChannel(self.vector_store, self.embedder))
        if enabled.sparse.enabled:
            channels.append(SparseChannel(self.sparse_index))
        if enabled.summary.enabled:
            channels.append(
                SummaryChannel(
                    tree,
                    self.embedder,
                    mode=mode or TreeSearchMode(self._config.raptor.search_mode),
                    top_k=self._config.raptor.traversal_top_k,
                )
            )
        return channels

    def _resolve_text(self, tree: RaptorTree, ref: str) -> str | None:
        chunk = self._chunks.get(ref)
        if chunk is not None:
            return chunk.text
        node = tree.nodes.get(ref)
        if node is not None and node.summary_text:
            return node.summary_text
        return None

    def _get_summarizer(self) -> SummarizerBase:
        if self._summarizer is None:
            from trellis.retrieval.raptor.summarizer import ClusterSummarizer

            self._summarizer = ClusterSummarizer(self._config)
        return self._summarizer

    def _get_expander(self) -> QueryExpanderBase | None:
        if self._expander is None and self._config.pipeline.stages.expand:
            from trellis.retrieval.query.expansion import LLMQueryExpander

            self._expander = LLMQueryExpander(self._config)
        return self._expander

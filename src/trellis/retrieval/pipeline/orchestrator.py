import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.exceptions import (
    AllChannelsFailed,
    ChannelUnavailable,
    PipelineTimeout,
)
from trellis.retrieval.pipeline.context import assemble_context
from trellis.retrieval.pipeline.models import (
    ChannelReport,
    PipelineStage,
    QueryResult,
)
from trellis.retrieval.query.expansion import QueryExpanderBase, dedupe_variants
from trellis.retrieval.reranking.reranker import Reranker
from trellis.retrieval.retrieval.channels import ChannelAdapter
from trellis.retrieval.retrieval.fusion import FusionEngine
from trellis.retrieval.retrieval.models import (
    Channel,
    ChannelResult,
    ChannelStatus,
    FusedResult,
    RerankedResult,
    RetrievalCandidate,
)

logger = logging.getLogger(__name__)

TextResolver = Callable[[str], str | None]


@dataclass
class _Deadline:
    loop: asyncio.AbstractEventLoop
    expires_at: float

    def remaining(self) -> float:
        return self.expires_at - self.loop.time()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


@dataclass
class _RunState:
    warnings: list[str] = field(default_factory=list)
    skipped: list[PipelineStage] = field(default_factory=list)
    degraded: bool = False

    def degrade(self, message: str) -> None:
        self.degraded = True
        self.warnings.append(message)
        logger.warning(message)

    def skip(
        self, stage: PipelineStage, reason: str = "overall deadline exhausted"
    ) -> None:
        self.skipped.append(stage)
        self.degrade(f"Skipped stage '{stage}': {reason}")


class RetrievalPipeline:
    """Runs one query through Expand -> Dispatch -> Fuse -> Rerank -> Assemble.

    Expansion, reranking and context assembly are enabled per configuration.
    Channels are queried concurrently, each under its own timeout; an
    unavailable channel degrades the result, and only the loss of every
    channel is fatal. Every stage checks the overall deadline before starting
    and is skipped when no time remains.
    """

    def __init__(
        self,
        channels: Sequence[ChannelAdapter],
        fusion: FusionEngine,
        reranker: Reranker | None = None,
        expander: QueryExpanderBase | None = None,
        text_resolver: TextResolver | None = None,
        config: AppConfig = Config,
        tree_version: int | None = None,
    ):
        self._channels = list(channels)
        self._fusion = fusion
        self._reranker = reranker
        self._expander = expander
        self._resolve_text = text_resolver or (lambda ref: None)
        self._config = config
        self._tree_version = tree_version

    async def run(self, query: str) -> QueryResult:
        """Run the pipeline for one query.

        Raises:
            AllChannelsFailed: No channel produced a result.
            PipelineTimeout: The deadline expired before any channel completed.
        """
        pipeline = self._config.pipeline
        stages = pipeline.stages
        loop = asyncio.get_running_loop()
        deadline = _Deadline(loop, loop.time() + pipeline.overall_deadline)
        state = _RunState()

        if not self._channels:
            raise AllChannelsFailed({})

        variants = [query]
        if stages.expand and self._expander is not None:
            variants.extend(await self._expand(query, deadline, state))

        channel_results = await self._dispatch(variants, deadline, state)
        reports = {
            channel: ChannelReport(
                channel=channel,
                status=result.status,
                candidates=len(result.candidates),
                error=result.error,
                timed_out=result.timed_out,
            )
            for channel, result in channel_results.items()
        }

        available = {c: r for c, r in channel_results.items() if r.ok}
        for channel, result in channel_results.items():
            if not result.ok:
                state.degrade(f"Channel '{channel}' unavailable: {result.error}")

        fused = self._fusion.fuse({c: r.candidates for c, r in available.items()})
        texts = self._texts_for(fused)

        results: list[RerankedResult] | None = None
        if stages.rerank and self._reranker is not None and self._reranker.available:
            if deadline.expired:
                state.skip(PipelineStage.RERANK)
            else:
                results = await self._rerank(query, fused, texts, deadline, state)
        if results is None:
            results = _fusion_order(fused, texts)

        context_text = ""
        context_refs: list[str] = []
        if stages.assemble_context:
            if deadline.expired:
                state.skip(PipelineStage.ASSEMBLE)
            else:
                ctx = self._config.context
                assembled = assemble_context(
                    results,
                    ctx.token_budget,
                    unit=ctx.budget_unit,
                    separator=ctx.separator,
                    encoding=ctx.encoding,
                )
                context_text = assembled.text
                context_refs = assembled.refs

        logger.debug(
            f"Query completed with {len(results)} results from "
            f"{len(available)}/{len(channel_results)} channels"
            + (" (degraded)" if state.degraded else "")
        )
        return QueryResult(
            query=query,
            variants=variants,
            results=results,
            fused=fused,
            context=context_text,
            context_refs=context_refs,
            degraded=state.degraded,
            warnings=state.warnings,
            channels=reports,
            skipped_stages=state.skipped,
            tree_version=self._tree_version,
        )

    async def _expand(
        self, query: str, deadline: _Deadline, state: _RunState
    ) -> list[str]:
        assert self._expander is not None
        count = self._config.expansion.variant_count
        if count <= 0:
            return []
        # Dispatch keeps one full per-channel timeout of the deadline
        per_channel = self._config.pipeline.per_channel_timeout
        budget = min(per_channel, deadline.remaining() - per_channel)
        if budget <= 0:
            state.skip(
                PipelineStage.EXPAND, "not enough of the overall deadline left"
            )
            return []
        try:
            variants = await asyncio.wait_for(
                self._expander.expand(query, count), budget
            )
        except TimeoutError:
            state.degrade(
                f"Query expansion timed out after {budget:.2f}s; "
                "using the original query only"
            )
            return []
        except Exception as e:
            state.degrade(f"Query expansion failed; using the original query only: {e}")
            return []
        return dedupe_variants(query, variants, count)

    async def _run_channel(
        self, adapter: ChannelAdapter, query: str, k: int, timeout: float
    ) -> ChannelResult:
        try:
            return await asyncio.wait_for(adapter.search(query, k), timeout)
        except TimeoutError:
            error = ChannelUnavailable(
                adapter.channel, f"timed out after {timeout:.2f}s", timed_out=True
            )
            logger.warning(str(error))
            return ChannelResult.from_error(error)

    async def _dispatch(
        self, variants: list[str], deadline: _Deadline, state: _RunState
    ) -> dict[Channel, ChannelResult]:
        pipeline = self._config.pipeline
        remaining = deadline.remaining()
        if remaining <= 0:
            raise PipelineTimeout("Overall deadline exhausted before channel dispatch")

        timeout = min(pipeline.per_channel_timeout, remaining)
        limited_by_deadline = timeout < pipeline.per_channel_timeout

        units = [(adapter, variant) for variant in variants for adapter in self._channels]
        outcomes = await asyncio.gather(
            *(
                self._run_channel(adapter, variant, pipeline.channel_k, timeout)
                for adapter, variant in units
            )
        )

        per_channel: dict[Channel, list[ChannelResult]] = {}
        for (adapter, _), outcome in zip(units, outcomes):
            per_channel.setdefault(adapter.channel, []).append(outcome)

        merged = {
            channel: _merge_variants(channel, results)
            for channel, results in per_channel.items()
        }

        if not any(result.ok for result in merged.values()):
            errors = {str(c): r.error or "unavailable" for c, r in merged.items()}
            all_timed_out = all(
                r.timed_out
                for results in per_channel.values()
                for r in results
            )
            if limited_by_deadline and all_timed_out:
                raise PipelineTimeout(
                    "Overall deadline expired before any channel completed"
                )
            raise AllChannelsFailed(errors)

        return merged

    async def _rerank(
        self,
        query: str,
        fused: list[FusedResult],
        texts: dict[str, str],
        deadline: _Deadline,
        state: _RunState,
    ) -> list[RerankedResult] | None:
        assert self._reranker is not None
        try:
            results, failures = await asyncio.wait_for(
                self._reranker.rerank(query, fused, texts), deadline.remaining()
            )
        except TimeoutError:
            state.degrade("Reranking exceeded the overall deadline; using fusion order")
            return None
        if failures:
            state.degrade(
                f"Cross-encoder failed for {failures} candidates; "
                "they keep their fusion positions"
            )
        return results

    def _texts_for(self, fused: list[FusedResult]) -> dict[str, str]:
        texts: dict[str, str] = {}
        for result in fused:
            text = self._resolve_text(result.ref)
            if text is not None:
                texts[result.ref] = text
        return texts


def _merge_variants(channel: Channel, results: list[ChannelResult]) -> ChannelResult:
    """Union one channel's results across query variants, keeping best ranks."""
    ok = [r for r in results if r.ok]
    if not ok:
        errors = sorted({r.error or "unavailable" for r in results})
        return ChannelResult(
            channel=channel,
            status=ChannelStatus.UNAVAILABLE,
            error="; ".join(errors),
            timed_out=all(r.timed_out for r in results),
        )
    if len(ok) == 1:
        return ok[0]

    best: dict[str, RetrievalCandidate] = {}
    for result in ok:
        for candidate in result.candidates:
            current = best.get(candidate.ref)
            if current is None or candidate.rank < current.rank:
                best[candidate.ref] = candidate
    candidates = sorted(best.values(), key=lambda c: (c.rank, c.ref))
    return ChannelResult(channel=channel, candidates=candidates)


def _fusion_order(
    fused: list[FusedResult], texts: dict[str, str]
) -> list[RerankedResult]:
    return [
        RerankedResult(
            ref=r.ref,
            text=texts.get(r.ref, ""),
            fused_score=r.fused_score,
            contributing_channels=r.contributing_channels,
        )
        for r in fused
    ]

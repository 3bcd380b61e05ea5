import asyncio
import time

import pytest

from tests.conftest import FakeCrossEncoder, FakeExpander, build_config
from trellis.retrieval.exceptions import AllChannelsFailed, PipelineTimeout
from trellis.retrieval.pipeline import PipelineStage, QueryStatus, RetrievalPipeline
from trellis.retrieval.reranking import Reranker
from trellis.retrieval.retrieval.channels import ChannelAdapter
from trellis.retrieval.retrieval.fusion import FusionEngine
from trellis.retrieval.retrieval.models import Channel, ChannelStatus

TEXTS = {
    "A": "alpha passage about rank fusion",
    "B": "beta passage about trees",
    "C": "gamma passage",
    "D": "delta passage about fusion",
}


class ScriptedChannel(ChannelAdapter):
    """Returns canned results per query, optionally after a delay or an error."""

    def __init__(self, channel, results=None, delay=0.0, error=None, by_query=None):
        self.channel = channel
        self.results = results or []
        self.delay = delay
        self.error = error
        self.by_query = by_query or {}
        self.queries: list[str] = []

    async def _search(self, query, k):
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.by_query.get(query, self.results)


def dense(**kwargs):
    kwargs.setdefault("results", [("A", 0.9), ("B", 0.8), ("C", 0.7)])
    return ScriptedChannel(Channel.DENSE, **kwargs)


def sparse(**kwargs):
    kwargs.setdefault("results", [("B", 12.0), ("A", 8.0), ("D", 3.0)])
    return ScriptedChannel(Channel.SPARSE, **kwargs)


def make_pipeline(channels, reranker=None, expander=None, resolver=None, **config):
    config.setdefault("fusion", {"k": 1})
    app_config = build_config(**config)
    return RetrievalPipeline(
        channels=channels,
        fusion=FusionEngine(k=app_config.fusion.k),
        reranker=reranker,
        expander=expander,
        text_resolver=resolver or TEXTS.get,
        config=app_config,
        tree_version=4,
    )


@pytest.mark.asyncio
class TestRetrievalPipeline:
    async def test_fuses_all_channels(self):
        pipeline = make_pipeline([dense(), sparse()])

        result = await pipeline.run("rank fusion")

        assert result.status == QueryStatus.COMPLETED
        assert not result.degraded
        assert [r.ref for r in result.results] == ["A", "B", "C", "D"]
        assert result.results[0].contributing_channels == {Channel.DENSE, Channel.SPARSE}
        assert result.variants == ["rank fusion"]
        assert result.tree_version == 4
        assert result.channels[Channel.DENSE].status == ChannelStatus.OK
        assert result.channels[Channel.DENSE].candidates == 3

    async def test_context_assembled_in_result_order(self):
        pipeline = make_pipeline(
            [dense(), sparse()],
            context={"token_budget": len(TEXTS["A"]) + 2 + len(TEXTS["B"])},
        )

        result = await pipeline.run("rank fusion")

        assert result.context_refs == ["A", "B"]
        assert result.context == TEXTS["A"] + "\n\n" + TEXTS["B"]

    async def test_slow_channel_degrades_to_remaining_channels(self):
        pipeline = make_pipeline(
            [dense(), sparse(delay=1.0)],
            pipeline={"per_channel_timeout": 0.05},
        )

        result = await pipeline.run("rank fusion")

        assert result.degraded
        assert [r.ref for r in result.results] == ["A", "B", "C"]
        assert all(r.contributing_channels == {Channel.DENSE} for r in result.results)
        report = result.channels[Channel.SPARSE]
        assert report.status == ChannelStatus.UNAVAILABLE
        assert "timed out" in report.error
        assert report.timed_out
        assert any("sparse" in w for w in result.warnings)

    async def test_failing_channel_degrades(self):
        pipeline = make_pipeline([dense(error=RuntimeError("boom")), sparse()])

        result = await pipeline.run("rank fusion")

        assert result.degraded
        assert [r.ref for r in result.results] == ["B", "A", "D"]
        assert "boom" in result.channels[Channel.DENSE].error
        assert not result.channels[Channel.DENSE].timed_out

    async def test_all_channels_failed(self):
        pipeline = make_pipeline(
            [dense(error=RuntimeError("dense down")), sparse(error=OSError("sparse down"))]
        )

        with pytest.raises(AllChannelsFailed) as exc_info:
            await pipeline.run("rank fusion")

        assert set(exc_info.value.channel_errors) == {"dense", "sparse"}
        assert "dense down" in exc_info.value.channel_errors["dense"]

    async def test_all_channels_timing_out_within_deadline_is_all_failed(self):
        pipeline = make_pipeline(
            [dense(delay=1.0), sparse(delay=1.0)],
            pipeline={"per_channel_timeout": 0.02, "overall_deadline": 10.0},
        )

        with pytest.raises(AllChannelsFailed):
            await pipeline.run("rank fusion")

    async def test_deadline_expiring_before_any_channel_is_timeout(self):
        pipeline = make_pipeline(
            [dense(delay=1.0), sparse(delay=1.0)],
            pipeline={"per_channel_timeout": 5.0, "overall_deadline": 0.05},
        )

        with pytest.raises(PipelineTimeout):
            await pipeline.run("rank fusion")

    async def test_no_channels_is_all_failed(self):
        with pytest.raises(AllChannelsFailed):
            await make_pipeline([]).run("q")

    async def test_rerank_reorders_results(self):
        reranker = Reranker(FakeCrossEncoder(), top_n=10)
        pipeline = make_pipeline([dense(), sparse()], reranker=reranker)

        result = await pipeline.run("delta fusion")

        assert [r.ref for r in result.results][:2] == ["D", "A"]
        assert result.results[0].rerank_score == 2.0
        assert not result.degraded

    async def test_rerank_failure_keeps_fused_order(self):
        reranker = Reranker(FakeCrossEncoder(fail_all=True), top_n=10)
        pipeline = make_pipeline([dense(), sparse()], reranker=reranker)

        result = await pipeline.run("rank fusion")

        assert [r.ref for r in result.results] == [f.ref for f in result.fused]
        assert all(r.rerank_score is None for r in result.results)
        assert result.degraded

    async def test_rerank_stage_disabled(self):
        encoder = FakeCrossEncoder()
        pipeline = make_pipeline(
            [dense(), sparse()],
            reranker=Reranker(encoder),
            pipeline={"stages": {"rerank": False}},
        )

        result = await pipeline.run("delta fusion")

        assert [r.ref for r in result.results] == ["A", "B", "C", "D"]
        assert encoder.calls == 0
        assert not result.degraded

    async def test_context_stage_disabled(self):
        pipeline = make_pipeline(
            [dense()], pipeline={"stages": {"assemble_context": False}}
        )
        result = await pipeline.run("rank fusion")
        assert result.context == ""
        assert result.context_refs == []
        assert result.results

    async def test_expansion_dispatches_every_variant(self):
        dense_channel = dense(
            by_query={"paraphrase": [("D", 0.99), ("A", 0.5)]},
        )
        sparse_channel = sparse()
        pipeline = make_pipeline(
            [dense_channel, sparse_channel],
            expander=FakeExpander(["paraphrase", "RANK FUSION", "  "]),
            pipeline={"stages": {"expand": True}},
            expansion={"variant_count": 3},
        )

        result = await pipeline.run("rank fusion")

        assert result.variants == ["rank fusion", "paraphrase"]
        assert sorted(dense_channel.queries) == ["paraphrase", "rank fusion"]
        assert sorted(sparse_channel.queries) == ["paraphrase", "rank fusion"]
        by_ref = {r.ref: r for r in result.fused}
        # "D" is rank 1 for the paraphrase on dense and rank 3 on sparse
        assert by_ref["D"].contributing_channels == {Channel.DENSE, Channel.SPARSE}
        assert by_ref["D"].best_rank == 1

    async def test_expansion_failure_uses_original_query(self):
        dense_channel = dense()
        pipeline = make_pipeline(
            [dense_channel],
            expander=FakeExpander(fail=True),
            pipeline={"stages": {"expand": True}},
        )

        result = await pipeline.run("rank fusion")

        assert result.variants == ["rank fusion"]
        assert dense_channel.queries == ["rank fusion"]
        assert result.degraded

    async def test_slow_expansion_leaves_dispatch_its_budget(self):
        dense_channel = dense()
        pipeline = make_pipeline(
            [dense_channel, sparse()],
            expander=FakeExpander(["paraphrase"], delay=5.0),
            pipeline={
                "stages": {"expand": True},
                "overall_deadline": 0.5,
                "per_channel_timeout": 0.2,
            },
        )

        result = await pipeline.run("rank fusion")

        assert result.status == QueryStatus.COMPLETED
        assert result.degraded
        assert result.variants == ["rank fusion"]
        assert dense_channel.queries == ["rank fusion"]
        assert [r.ref for r in result.results] == ["A", "B", "C", "D"]
        assert any("expansion timed out" in w for w in result.warnings)

    async def test_expansion_skipped_when_deadline_cannot_cover_dispatch(self):
        expander = FakeExpander(["paraphrase"], delay=5.0)
        pipeline = make_pipeline(
            [dense(), sparse()],
            expander=expander,
            pipeline={"stages": {"expand": True}, "overall_deadline": 0.2},
        )

        result = await pipeline.run("rank fusion")

        assert result.status == QueryStatus.COMPLETED
        assert result.degraded
        assert result.skipped_stages == [PipelineStage.EXPAND]
        assert [r.ref for r in result.results] == ["A", "B", "C", "D"]

    async def test_expansion_disabled_ignores_expander(self):
        dense_channel = dense()
        pipeline = make_pipeline([dense_channel], expander=FakeExpander(["other"]))

        result = await pipeline.run("rank fusion")

        assert result.variants == ["rank fusion"]
        assert dense_channel.queries == ["rank fusion"]

    async def test_stages_skipped_when_deadline_exhausted(self):
        def slow_lookup(ref):
            time.sleep(0.05)
            return TEXTS.get(ref)

        reranker = Reranker(FakeCrossEncoder(), top_n=10)
        pipeline = make_pipeline(
            [dense()],
            reranker=reranker,
            resolver=slow_lookup,
            pipeline={"overall_deadline": 0.1, "per_channel_timeout": 0.1},
        )

        result = await pipeline.run("rank fusion")

        assert result.degraded
        assert result.skipped_stages == [PipelineStage.RERANK, PipelineStage.ASSEMBLE]
        assert [r.ref for r in result.results] == ["A", "B", "C"]
        assert result.context == ""

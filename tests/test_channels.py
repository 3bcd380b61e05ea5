import asyncio

import pytest

from tests.conftest import FakeEmbedder, embed_text
from trellis.retrieval.exceptions import ChannelUnavailable
from trellis.retrieval.retrieval.channels import (
    ChannelAdapter,
    DenseChannel,
    SparseChannel,
    SummaryChannel,
)
from trellis.retrieval.retrieval.models import Channel, ChannelResult, ChannelStatus
from trellis.retrieval.store.memory import InMemorySparseIndex, InMemoryVectorStore
from trellis.retrieval.store.models import RaptorNode, RaptorTree


class StaticChannel(ChannelAdapter):
    channel = Channel.DENSE

    def __init__(self, scored):
        self.scored = scored

    async def _search(self, query, k):
        return self.scored


class BrokenChannel(ChannelAdapter):
    channel = Channel.SPARSE

    async def _search(self, query, k):
        raise ConnectionError("index offline")


@pytest.mark.asyncio
class TestChannelAdapter:
    async def test_ranks_are_one_based_and_bounded(self):
        adapter = StaticChannel([("a", 0.9), ("b", 0.8), ("c", 0.7)])
        result = await adapter.search("q", k=2)

        assert result.ok
        assert [(c.ref, c.rank) for c in result.candidates] == [("a", 1), ("b", 2)]
        assert all(c.channel == Channel.DENSE for c in result.candidates)

    async def test_equal_scores_order_by_ref(self):
        adapter = StaticChannel([("c", 0.5), ("a", 0.5), ("b", 0.9)])
        result = await adapter.search("q", k=3)
        assert [c.ref for c in result.candidates] == ["b", "a", "c"]

    async def test_duplicate_refs_keep_best(self):
        adapter = StaticChannel([("a", 0.2), ("a", 0.9), ("b", 0.5)])
        result = await adapter.search("q", k=3)
        assert [(c.ref, c.raw_score) for c in result.candidates] == [
            ("a", 0.9),
            ("b", 0.5),
        ]

    async def test_backend_error_becomes_unavailable(self):
        result = await BrokenChannel().search("q", k=5)

        assert result.status == ChannelStatus.UNAVAILABLE
        assert not result.ok
        assert "index offline" in result.error
        assert result.candidates == []

    async def test_raised_channel_unavailable_keeps_reason(self):
        class TimingOutChannel(ChannelAdapter):
            channel = Channel.SUMMARY

            async def _search(self, query, k):
                raise ChannelUnavailable(self.channel, "tree service busy", timed_out=True)

        result = await TimingOutChannel().search("q", k=5)

        assert result.status == ChannelStatus.UNAVAILABLE
        assert result.channel == Channel.SUMMARY
        assert result.error == "tree service busy"
        assert result.timed_out

    async def test_non_positive_k_is_empty_ok(self):
        result = await StaticChannel([("a", 1.0)]).search("q", k=0)
        assert result.ok
        assert result.candidates == []

    async def test_cancellation_propagates(self):
        class SlowChannel(ChannelAdapter):
            channel = Channel.DENSE

            async def _search(self, query, k):
                await asyncio.sleep(10)
                return []

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(SlowChannel().search("q", 1), 0.01)


@pytest.mark.asyncio
class TestDenseChannel:
    async def test_embeds_query_and_searches(self):
        store = InMemoryVectorStore()
        await store.upsert("fusion", embed_text("rank fusion"))
        await store.upsert("tree", embed_text("summary tree"))
        embedder = FakeEmbedder()

        result = await DenseChannel(store, embedder).search("rank fusion", k=1)

        assert [c.ref for c in result.candidates] == ["fusion"]
        assert embedder.calls == ["rank fusion"]

    async def test_embedding_failure_is_unavailability(self):
        store = InMemoryVectorStore()
        await store.upsert("a", [1.0])

        result = await DenseChannel(store, FakeEmbedder(fail=True)).search("q", k=3)

        assert result.status == ChannelStatus.UNAVAILABLE
        assert "EmbeddingFailure" in result.error

    async def test_blank_query_skips_embedding(self):
        embedder = FakeEmbedder()
        result = await DenseChannel(InMemoryVectorStore(), embedder).search("  ", k=3)
        assert result.ok and result.candidates == []
        assert embedder.calls == []


@pytest.mark.asyncio
class TestSparseChannel:
    async def test_searches_index(self):
        index = InMemorySparseIndex()
        await index.upsert("a", "reciprocal rank fusion")
        await index.upsert("b", "summary tree")

        result = await SparseChannel(index).search("fusion", k=5)

        assert [c.ref for c in result.candidates] == ["a"]
        assert result.channel == Channel.SPARSE


@pytest.mark.asyncio
class TestSummaryChannel:
    async def test_empty_tree_is_ok_and_empty(self):
        embedder = FakeEmbedder()
        result = await SummaryChannel(RaptorTree(), embedder).search("q", k=3)

        assert result == ChannelResult(channel=Channel.SUMMARY)
        assert embedder.calls == []

    async def test_searches_snapshot(self):
        nodes = {
            "c1": RaptorNode(id="c1", level=0, embedding=embed_text("rank fusion")),
            "c2": RaptorNode(id="c2", level=0, embedding=embed_text("summary tree")),
        }
        tree = RaptorTree(nodes=nodes, roots=frozenset(nodes))

        result = await SummaryChannel(tree, FakeEmbedder()).search("summary tree", k=1)

        assert [c.ref for c in result.candidates] == ["c2"]
        assert result.channel == Channel.SUMMARY


def test_channel_result_from_error():
    error = ChannelUnavailable(Channel.DENSE, "timed out after 0.50s", timed_out=True)

    result = ChannelResult.from_error(error)

    assert result.channel == Channel.DENSE
    assert not result.ok
    assert result.error == "timed out after 0.50s"
    assert result.timed_out
    assert str(error) == "Channel 'dense' unavailable: timed out after 0.50s"

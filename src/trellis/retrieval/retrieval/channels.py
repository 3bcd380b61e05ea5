import asyncio
import logging

from trellis.retrieval.embeddings.base import EmbedderBase
from trellis.retrieval.exceptions import ChannelUnavailable
from trellis.retrieval.raptor.search import TreeSearchMode, search_tree
from trellis.retrieval.retrieval.models import Channel, ChannelResult
from trellis.retrieval.store.base import SparseIndex, VectorStore
from trellis.retrieval.store.models import RaptorTree

logger = logging.getLogger(__name__)


class ChannelAdapter:
    """Thin wrapper turning one retrieval backend into a ranked candidate list.

    Subclasses implement _search(); search() assigns ranks 1..k, breaks score
    ties by ref and converts any backend error into an unavailable result.
    """

    channel: Channel

    async def _search(self, query: str, k: int) -> list[tuple[str, float]]:
        raise NotImplementedError(
            "ChannelAdapter is an abstract class. Please implement _search in a subclass."
        )

    async def search(self, query: str, k: int) -> ChannelResult:
        if k <= 0:
            return ChannelResult(channel=self.channel)
        try:
            scored = await self._search(query, k)
        except asyncio.CancelledError:
            raise
        except ChannelUnavailable as e:
            logger.warning(str(e))
            return ChannelResult.from_error(e)
        except Exception as e:
            error = ChannelUnavailable(self.channel, f"{type(e).__name__}: {e}")
            logger.warning(str(error))
            return ChannelResult.from_error(error)

        ordered = sorted(scored, key=lambda item: (-item[1], item[0]))
        return ChannelResult.from_scores(self.channel, ordered, k)


class DenseChannel(ChannelAdapter):
    channel = Channel.DENSE

    def __init__(self, vector_store: VectorStore, embedder: EmbedderBase):
        self._store = vector_store
        self._embedder = embedder

    async def _search(self, query: str, k: int) -> list[tuple[str, float]]:
        if not query.strip():
            return []
        embedding = await self._embedder.embed(query)
        return await self._store.search(embedding, k)


class SparseChannel(ChannelAdapter):
    channel = Channel.SPARSE

    def __init__(self, sparse_index: SparseIndex):
        self._index = sparse_index

    async def _search(self, query: str, k: int) -> list[tuple[str, float]]:
        if not query.strip():
            return []
        return await self._index.search(query, k)


class SummaryChannel(ChannelAdapter):
    """Searches one RAPTOR tree snapshot, read-only."""

    channel = Channel.SUMMARY

    def __init__(
        self,
        tree: RaptorTree,
        embedder: EmbedderBase,
        mode: TreeSearchMode = TreeSearchMode.COLLAPSED,
        top_k: int = 3,
    ):
        self.tree = tree
        self._embedder = embedder
        self.mode = mode
        self.top_k = top_k

    async def _search(self, query: str, k: int) -> list[tuple[str, float]]:
        if not query.strip() or self.tree.is_empty:
            return []
        embedding = await self._embedder.embed(query)
        return search_tree(self.tree, embedding, k, mode=self.mode, top_k=self.top_k)

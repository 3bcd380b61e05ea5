import asyncio
from collections import OrderedDict

from trellis.retrieval.embeddings.base import EmbedderBase
from trellis.retrieval.exceptions import EmbeddingFailure


class CachedEmbedder(EmbedderBase):
    """Wraps an embedder so concurrent requests for the same text share one call.

    Completed embeddings are kept in a bounded LRU. Failed calls are evicted so
    the next request retries.
    """

    def __init__(self, embedder: EmbedderBase, maxsize: int = 1024):
        super().__init__(embedder._model, embedder._vector_dim, embedder._config)
        self._inner = embedder
        self._maxsize = maxsize
        self._tasks: OrderedDict[str, asyncio.Task[list[float]]] = OrderedDict()

    async def _embed(self, text: str) -> list[float]:
        try:
            return await self._inner.embed(text)
        except EmbeddingFailure:
            raise
        except Exception as e:
            raise EmbeddingFailure(f"Embedding failed: {e}") from e

    async def embed(self, text: str) -> list[float]:
        task = self._tasks.get(text)
        if task is None or (
            task.done() and (task.cancelled() or task.exception() is not None)
        ):
            task = asyncio.ensure_future(self._embed(text))
            self._tasks[text] = task
            while len(self._tasks) > self._maxsize:
                self._tasks.popitem(last=False)
        else:
            self._tasks.move_to_end(text)

        try:
            # Shielded so a caller timing out does not cancel the shared call
            return await asyncio.shield(task)
        except EmbeddingFailure:
            if self._tasks.get(text) is task:
                del self._tasks[text]
            raise

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        try:
            return await self._inner.embed_many(texts)
        except EmbeddingFailure:
            raise
        except Exception as e:
            raise EmbeddingFailure(f"Embedding failed: {e}") from e

from abc import ABC, abstractmethod


class VectorStore(ABC):
    """Dense vector capability: nearest-neighbour search over chunk embeddings."""

    @abstractmethod
    async def search(self, embedding: list[float], k: int) -> list[tuple[str, float]]:
        """Return up to k (chunk_id, similarity) pairs, best first."""

    @abstractmethod
    async def upsert(self, chunk_id: str, embedding: list[float]) -> None: ...

    async def upsert_many(self, items: list[tuple[str, list[float]]]) -> None:
        for chunk_id, embedding in items:
            await self.upsert(chunk_id, embedding)

    @abstractmethod
    async def delete(self, chunk_id: str) -> None: ...

    @abstractmethod
    async def count(self) -> int: ...


class SparseIndex(ABC):
    """Term-based full text capability."""

    @abstractmethod
    async def search(self, query_text: str, k: int) -> list[tuple[str, float]]:
        """Return up to k (chunk_id, score) pairs, best first."""

    @abstractmethod
    async def upsert(self, chunk_id: str, text: str) -> None: ...

    async def upsert_many(self, items: list[tuple[str, str]]) -> None:
        for chunk_id, text in items:
            await self.upsert(chunk_id, text)

    @abstractmethod
    async def delete(self, chunk_id: str) -> None: ...

import re

import numpy as np
from rank_bm25 import BM25Okapi

from trellis.retrieval.store.base import SparseIndex, VectorStore

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


class InMemoryVectorStore(VectorStore):
    """Embedded vector store using exhaustive cosine similarity."""

    def __init__(self) -> None:
        self._vectors: dict[str, np.ndarray] = {}

    async def search(self, embedding: list[float], k: int) -> list[tuple[str, float]]:
        if not self._vectors or k <= 0:
            return []

        ids = sorted(self._vectors)
        matrix = np.vstack([self._vectors[i] for i in ids])
        query = np.asarray(embedding, dtype=np.float32)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        similarities = matrix @ (query / norm)

        # Stable sort keeps id order among equal similarities
        order = np.argsort(-similarities, kind="stable")[:k]
        return [(ids[i], float(similarities[i])) for i in order]

    async def upsert(self, chunk_id: str, embedding: list[float]) -> None:
        vector = np.asarray(embedding, dtype=np.float32)
        norm = np.linalg.norm(vector)
        self._vectors[chunk_id] = vector / norm if norm > 0 else vector

    async def delete(self, chunk_id: str) -> None:
        self._vectors.pop(chunk_id, None)

    async def count(self) -> int:
        return len(self._vectors)


class InMemorySparseIndex(SparseIndex):
    """BM25 index over chunk texts, rebuilt lazily after writes."""

    def __init__(self) -> None:
        self._texts: dict[str, list[str]] = {}
        self._ids: list[str] = []
        self._bm25: BM25Okapi | None = None

    def _ensure_index(self) -> BM25Okapi | None:
        if self._bm25 is None and self._texts:
            self._ids = sorted(self._texts)
            self._bm25 = BM25Okapi([self._texts[i] or [""] for i in self._ids])
        return self._bm25

    async def search(self, query_text: str, k: int) -> list[tuple[str, float]]:
        terms = tokenize(query_text)
        if not terms or k <= 0:
            return []
        bm25 = self._ensure_index()
        if bm25 is None:
            return []

        scores = bm25.get_scores(terms)
        matched = [
            (self._ids[i], float(score))
            for i, score in enumerate(scores)
            if any(term in self._texts[self._ids[i]] for term in terms)
        ]
        matched.sort(key=lambda item: (-item[1], item[0]))
        return matched[:k]

    async def upsert(self, chunk_id: str, text: str) -> None:
        self._texts[chunk_id] = tokenize(text)
        self._bm25 = None

    async def delete(self, chunk_id: str) -> None:
        if self._texts.pop(chunk_id, None) is not None:
            self._bm25 = None

from pathlib import Path

import lancedb
from lancedb.pydantic import LanceModel, Vector

from trellis.retrieval.store.base import SparseIndex, VectorStore


def create_vector_model(vector_dim: int):
    """Create a record model with the specified vector dimension."""

    class ChunkVectorRecord(LanceModel):
        id: str
        vector: Vector(vector_dim)  # type: ignore

    return ChunkVectorRecord


class ChunkTextRecord(LanceModel):
    id: str
    text: str


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class LanceDBVectorStore(VectorStore):
    """Vector store persisted in an embedded LanceDB database."""

    TABLE = "chunk_vectors"

    def __init__(self, db_path: Path, vector_dim: int):
        self.db_path = db_path
        self.db = lancedb.connect(db_path)
        self.VectorRecord = create_vector_model(vector_dim)
        if self.TABLE in self.db.table_names():
            self.table = self.db.open_table(self.TABLE)
        else:
            self.table = self.db.create_table(self.TABLE, schema=self.VectorRecord)

    async def search(self, embedding: list[float], k: int) -> list[tuple[str, float]]:
        if k <= 0 or self.table.count_rows() == 0:
            return []
        rows = (
            self.table.search(embedding, vector_column_name="vector")
            .distance_type("cosine")
            .limit(k)
            .to_list()
        )
        results = [(str(row["id"]), 1.0 - float(row["_distance"])) for row in rows]
        results.sort(key=lambda item: (-item[1], item[0]))
        return results

    async def upsert(self, chunk_id: str, embedding: list[float]) -> None:
        await self.upsert_many([(chunk_id, embedding)])

    async def upsert_many(self, items: list[tuple[str, list[float]]]) -> None:
        if not items:
            return
        records = [self.VectorRecord(id=i, vector=v) for i, v in items]
        (
            self.table.merge_insert("id")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute(records)
        )

    async def delete(self, chunk_id: str) -> None:
        self.table.delete(f"id = {_quote(chunk_id)}")

    async def count(self) -> int:
        return self.table.count_rows()


class LanceDBSparseIndex(SparseIndex):
    """Full text index backed by LanceDB's native FTS."""

    TABLE = "chunk_texts"

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db = lancedb.connect(db_path)
        if self.TABLE in self.db.table_names():
            self.table = self.db.open_table(self.TABLE)
        else:
            self.table = self.db.create_table(self.TABLE, schema=ChunkTextRecord)
        self._index_dirty = True

    def _ensure_fts_index(self) -> None:
        if self._index_dirty:
            self.table.create_fts_index("text", replace=True)
            self._index_dirty = False

    async def search(self, query_text: str, k: int) -> list[tuple[str, float]]:
        if not query_text.strip() or k <= 0 or self.table.count_rows() == 0:
            return []
        self._ensure_fts_index()
        rows = self.table.search(query_text, query_type="fts").limit(k).to_list()
        results = [(str(row["id"]), float(row["_score"])) for row in rows]
        results.sort(key=lambda item: (-item[1], item[0]))
        return results

    async def upsert(self, chunk_id: str, text: str) -> None:
        await self.upsert_many([(chunk_id, text)])

    async def upsert_many(self, items: list[tuple[str, str]]) -> None:
        if not items:
            return
        records = [ChunkTextRecord(id=i, text=t) for i, t in items]
        (
            self.table.merge_insert("id")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute(records)
        )
        self._index_dirty = True

    async def delete(self, chunk_id: str) -> None:
        self.table.delete(f"id = {_quote(chunk_id)}")
        self._index_dirty = True

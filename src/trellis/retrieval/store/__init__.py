from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.store.base import SparseIndex, VectorStore
from trellis.retrieval.store.memory import InMemorySparseIndex, InMemoryVectorStore


def create_vector_store(config: AppConfig = Config) -> VectorStore:
    """
    Factory function selecting the vector store backend from the configuration.
    """
    backend = config.storage.backend

    if backend == "memory":
        return InMemoryVectorStore()

    if backend == "lancedb":
        try:
            from trellis.retrieval.store.lance import LanceDBVectorStore
        except ImportError:
            raise ImportError(
                "The lancedb backend requires the 'lancedb' package. "
                "Please install trellis-retrieval with the 'lancedb' extra: "
                "uv pip install trellis-retrieval[lancedb]"
            )
        return LanceDBVectorStore(
            config.storage.data_dir / "trellis.lancedb",
            config.embeddings.model.vector_dim,
        )

    raise ValueError(f"Unsupported storage backend: {backend}")


def create_sparse_index(config: AppConfig = Config) -> SparseIndex:
    """
    Factory function selecting the sparse index backend from the configuration.
    """
    backend = config.storage.backend

    if backend == "memory":
        return InMemorySparseIndex()

    if backend == "lancedb":
        try:
            from trellis.retrieval.store.lance import LanceDBSparseIndex
        except ImportError:
            raise ImportError(
                "The lancedb backend requires the 'lancedb' package. "
                "Please install trellis-retrieval with the 'lancedb' extra: "
                "uv pip install trellis-retrieval[lancedb]"
            )
        return LanceDBSparseIndex(config.storage.data_dir / "trellis.lancedb")

    raise ValueError(f"Unsupported storage backend: {backend}")


__all__ = [
    "SparseIndex",
    "VectorStore",
    "InMemorySparseIndex",
    "InMemoryVectorStore",
    "create_sparse_index",
    "create_vector_store",
]

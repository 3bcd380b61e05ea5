import os
import tempfile
import zlib
from pathlib import Path

# Prevent tests from loading a local trellis.yaml by pointing the env var
# at an empty config file BEFORE any trellis.retrieval imports.
_test_config_dir = tempfile.mkdtemp()
_test_config_path = Path(_test_config_dir) / "test-defaults.yaml"
_test_config_path.write_text("{}")  # Empty YAML = use all defaults
os.environ["TRELLIS_CONFIG_PATH"] = str(_test_config_path)

import asyncio  # noqa: E402

import numpy as np  # noqa: E402
import pytest  # noqa: E402
import yaml  # noqa: E402

from trellis.retrieval.config import AppConfig  # noqa: E402
from trellis.retrieval.embeddings.base import EmbedderBase  # noqa: E402
from trellis.retrieval.exceptions import EmbeddingFailure  # noqa: E402
from trellis.retrieval.query.expansion import QueryExpanderBase  # noqa: E402
from trellis.retrieval.raptor.clustering import SoftClusters  # noqa: E402
from trellis.retrieval.raptor.summarizer import SummarizerBase  # noqa: E402
from trellis.retrieval.reranking.base import CrossEncoderBase  # noqa: E402
from trellis.retrieval.store.memory import tokenize  # noqa: E402
from trellis.retrieval.store.models import Chunk  # noqa: E402

VECTOR_DIM = 32


def embed_text(text: str, dim: int = VECTOR_DIM) -> list[float]:
    """Deterministic bag-of-words embedding: one bucket per hashed token."""
    vector = [0.0] * dim
    for token in tokenize(text):
        vector[zlib.crc32(token.encode()) % dim] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeEmbedder(EmbedderBase):
    def __init__(self, fail: bool = False, delay: float = 0.0):
        super().__init__("fake-embedder", VECTOR_DIM, AppConfig())
        self.fail = fail
        self.delay = delay
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise EmbeddingFailure("embedding service down")
        return embed_text(text)


class FakeSummarizer(SummarizerBase):
    """Joins its inputs; fails for any cluster containing one of fail_texts."""

    def __init__(self, fail_texts: set[str] | None = None, fail_all: bool = False):
        self.fail_texts = fail_texts or set()
        self.fail_all = fail_all
        self.calls: list[list[str]] = []

    async def summarize(self, texts: list[str]) -> str:
        self.calls.append(list(texts))
        if self.fail_all or any(t in self.fail_texts for t in texts):
            raise RuntimeError("summarizer unavailable")
        return "Summary of: " + " | ".join(texts)


class FixedSizeClusterer:
    """Groups consecutive pool entries into clusters of a fixed size."""

    def __init__(self, size: int = 3, overlaps: dict[int, list[int]] | None = None):
        self.size = size
        self.overlaps = overlaps or {}

    def cluster(self, embeddings: np.ndarray) -> SoftClusters:
        primary = [i // self.size for i in range(len(embeddings))]
        memberships = [
            np.array(sorted({p, *self.overlaps.get(i, [])}), dtype=int)
            for i, p in enumerate(primary)
        ]
        return SoftClusters(memberships=memberships, primary=primary)


class FakeCrossEncoder(CrossEncoderBase):
    """Scores by query term overlap; can fail for selected or all candidates."""

    def __init__(self, fail_texts: set[str] | None = None, fail_all: bool = False):
        super().__init__(AppConfig())
        self.fail_texts = fail_texts or set()
        self.fail_all = fail_all
        self.calls = 0

    async def score(self, query: str, candidate_text: str) -> float:
        self.calls += 1
        if self.fail_all or candidate_text in self.fail_texts:
            raise RuntimeError("cross-encoder unavailable")
        terms = set(tokenize(query))
        return float(sum(1 for t in tokenize(candidate_text) if t in terms))


class FakeExpander(QueryExpanderBase):
    def __init__(
        self, variants: list[str] | None = None, fail: bool = False, delay: float = 0.0
    ):
        self.variants = variants or []
        self.fail = fail
        self.delay = delay

    async def expand(self, query: str, n: int) -> list[str]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("expansion model unavailable")
        return self.variants[:n]


def chunk_text(i: int) -> str:
    return f"Chunk {i} discusses topic {i % 3} in some detail."


def make_chunks(n: int, doc_id: str = "doc") -> list[Chunk]:
    return [
        Chunk(
            id=f"{doc_id}:{i}",
            text=chunk_text(i),
            embedding=embed_text(chunk_text(i)),
            doc_id=doc_id,
        )
        for i in range(n)
    ]


def build_config(**overrides) -> AppConfig:
    """Default config with fast retries, updated by nested section dicts."""
    data = AppConfig().model_dump()
    data["raptor"].update(
        {"retry_initial_wait": 0.0, "retry_max_wait": 0.0, "min_cluster_size": 2}
    )
    data["context"]["budget_unit"] = "chars"
    for section, values in overrides.items():
        if isinstance(values, dict) and isinstance(data.get(section), dict):
            _deep_update(data[section], values)
        else:
            data[section] = values
    return AppConfig.model_validate(data)


def _deep_update(target: dict, values: dict) -> None:
    for key, value in values.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


@pytest.fixture
def config() -> AppConfig:
    return build_config()


@pytest.fixture
def temp_db_path():
    """Create a temporary LanceDB path for testing."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir) / "test.lancedb"


@pytest.fixture
def temp_yaml_config(tmp_path, monkeypatch):
    """Create a temporary YAML config file and point the loader at it."""
    config_file = tmp_path / "test-config.yaml"
    config_data = {
        "environment": "development",
        "storage": {"backend": "memory"},
        "fusion": {"k": 10, "max_results": 5},
        "raptor": {"max_depth": 2, "search_mode": "traversal"},
        "pipeline": {"per_channel_timeout": 1.5, "stages": {"expand": True}},
        "context": {"token_budget": 256, "budget_unit": "chars"},
    }

    with open(config_file, "w") as f:
        yaml.dump(config_data, f)

    monkeypatch.setenv("TRELLIS_CONFIG_PATH", str(config_file))

    yield config_file

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class ModelConfig(BaseModel):
    """Configuration for a language model.

    Attributes:
        provider: Model provider (ollama, openai, anthropic, etc.)
        name: Model name/identifier
        base_url: Optional base URL for OpenAI-compatible servers (vLLM, LM Studio, etc.)
        temperature: Sampling temperature (0.0 to 1.0+)
        max_tokens: Maximum tokens to generate
    """

    provider: str = "ollama"
    name: str = "gpt-oss"
    base_url: str | None = None

    temperature: float | None = None
    max_tokens: int | None = None


class EmbeddingModelConfig(BaseModel):
    """Configuration for an embedding model.

    Attributes:
        provider: Model provider (ollama, openai, vllm)
        name: Model name/identifier
        vector_dim: Vector dimensions produced by the model
        base_url: Optional base URL for OpenAI-compatible servers
    """

    provider: str = "ollama"
    name: str = "qwen3-embedding:4b"
    vector_dim: int = 2560
    base_url: str | None = None
    timeout: float = 60.0


class EmbeddingsConfig(BaseModel):
    model: EmbeddingModelConfig = Field(default_factory=EmbeddingModelConfig)


class StorageConfig(BaseModel):
    backend: Literal["memory", "lancedb"] = "memory"
    data_dir: Path = Path("./trellis-data")


class RaptorConfig(BaseModel):
    """RAPTOR tree construction and query settings.

    Attributes:
        max_depth: Maximum number of summary levels above the chunks
        min_cluster_size: Minimum pool size for running the clusterer
        cluster_similarity_threshold: GMM posterior probability above which a
            node joins a cluster. Values below 0.5 allow overlapping clusters.
        summarization_retry_limit: Attempts per cluster before it is marked failed
        summarization_concurrency: Concurrent summarization calls during a build
        build_failure_fraction_abort_threshold: Fraction of failed clusters
            above which the build aborts
        search_mode: Default query mode for the summary channel
        traversal_top_k: Children kept per level in tree-traversal search
        model: Summarization model; falls back to expansion model when unset
    """

    max_depth: int = 5
    min_cluster_size: int = 3
    cluster_similarity_threshold: float = 0.1
    umap_n_neighbors: int = 10
    umap_min_dist: float = 0.0
    reduction_dim: int = 10
    summarization_retry_limit: int = 3
    summarization_concurrency: int = 4
    retry_initial_wait: float = 0.5
    retry_max_wait: float = 8.0
    build_failure_fraction_abort_threshold: float = 0.5
    search_mode: Literal["collapsed", "traversal"] = "collapsed"
    traversal_top_k: int = 3
    model: ModelConfig | None = None


class FusionConfig(BaseModel):
    k: int = 60
    max_results: int = 50


class RerankingConfig(BaseModel):
    model: ModelConfig | None = None
    top_n: int = 20
    concurrency: int = 4
    timeout: float = 30.0


class ChannelConfig(BaseModel):
    enabled: bool = True


class ChannelsConfig(BaseModel):
    dense: ChannelConfig = Field(default_factory=ChannelConfig)
    sparse: ChannelConfig = Field(default_factory=ChannelConfig)
    summary: ChannelConfig = Field(default_factory=ChannelConfig)


class ExpansionConfig(BaseModel):
    model: ModelConfig = Field(
        default_factory=lambda: ModelConfig(provider="ollama", name="gpt-oss")
    )
    variant_count: int = 3


class StagesConfig(BaseModel):
    expand: bool = False
    rerank: bool = True
    assemble_context: bool = True


class PipelineConfig(BaseModel):
    """Query pipeline settings.

    Timeouts are in seconds. `channel_k` bounds each channel's candidate list.
    """

    stages: StagesConfig = Field(default_factory=StagesConfig)
    channel_k: int = 20
    per_channel_timeout: float = 5.0
    overall_deadline: float = 30.0


class ContextConfig(BaseModel):
    token_budget: int = 4000
    budget_unit: Literal["tokens", "chars"] = "tokens"
    encoding: str = "cl100k_base"
    separator: str = "\n\n"


class OllamaConfig(BaseModel):
    base_url: str = Field(
        default_factory=lambda: os.environ.get(
            "OLLAMA_BASE_URL", "http://localhost:11434"
        )
    )


class VLLMConfig(BaseModel):
    embeddings_base_url: str = ""
    rerank_base_url: str = ""


class ProvidersConfig(BaseModel):
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    vllm: VLLMConfig = Field(default_factory=VLLMConfig)


class AppConfig(BaseModel):
    environment: str = "production"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    raptor: RaptorConfig = Field(default_factory=RaptorConfig)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    reranking: RerankingConfig = Field(default_factory=RerankingConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    expansion: ExpansionConfig = Field(default_factory=ExpansionConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)

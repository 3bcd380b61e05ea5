import os

from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.embeddings.base import EmbedderBase
from trellis.retrieval.embeddings.openai_compat import Embedder as OpenAICompatEmbedder


def get_embedder(config: AppConfig = Config) -> EmbedderBase:
    """
    Factory function to get the appropriate embedder based on the configuration.

    Args:
        config: Configuration to use. Defaults to global Config.

    Returns:
        An embedder instance configured according to the config.
    """
    embedding_model = config.embeddings.model

    if embedding_model.provider == "ollama":
        base_url = embedding_model.base_url or config.providers.ollama.base_url
        return OpenAICompatEmbedder(
            embedding_model.name,
            embedding_model.vector_dim,
            base_url,
            config,
            timeout=embedding_model.timeout,
        )

    if embedding_model.provider == "vllm":
        base_url = (
            embedding_model.base_url or config.providers.vllm.embeddings_base_url
        )
        if not base_url:
            raise ValueError("vLLM embedder requires a base_url")
        return OpenAICompatEmbedder(
            embedding_model.name,
            embedding_model.vector_dim,
            base_url,
            config,
            timeout=embedding_model.timeout,
        )

    if embedding_model.provider == "openai":
        return OpenAICompatEmbedder(
            embedding_model.name,
            embedding_model.vector_dim,
            embedding_model.base_url or "https://api.openai.com",
            config,
            api_key=os.environ.get("OPENAI_API_KEY"),
            timeout=embedding_model.timeout,
        )

    raise ValueError(f"Unsupported embedding provider: {embedding_model.provider}")


__all__ = ["EmbedderBase", "get_embedder"]

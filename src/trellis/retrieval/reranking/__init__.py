import os

from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.reranking.base import CrossEncoderBase
from trellis.retrieval.reranking.reranker import Reranker

_cross_encoders: dict[tuple[str, str, str], CrossEncoderBase] = {}


def get_cross_encoder(config: AppConfig = Config) -> CrossEncoderBase | None:
    """
    Factory function to get the cross-encoder based on the configuration.
    Returns None when no reranking model is configured.
    """
    model = config.reranking.model
    if model is None:
        return None

    if model.provider not in ("vllm", "tei", "jina"):
        raise ValueError(f"Unsupported reranking provider: {model.provider}")

    base_url = model.base_url or config.providers.vllm.rerank_base_url
    if not base_url:
        raise ValueError(f"{model.provider} reranker requires a base_url")

    key = (model.provider, model.name, base_url)
    if key not in _cross_encoders:
        from trellis.retrieval.reranking.remote import HTTPCrossEncoder

        api_key = os.environ.get("JINA_API_KEY") if model.provider == "jina" else None
        _cross_encoders[key] = HTTPCrossEncoder(base_url, config, api_key=api_key)
    return _cross_encoders[key]


__all__ = ["CrossEncoderBase", "Reranker", "get_cross_encoder"]

from trellis.retrieval.config import AppConfig, Config


class CrossEncoderBase:
    """Joint query/candidate relevance scoring capability."""

    _model: str | None = None

    def __init__(self, config: AppConfig = Config):
        self._config = config
        self._model = config.reranking.model.name if config.reranking.model else None

    async def score(self, query: str, candidate_text: str) -> float:
        raise NotImplementedError(
            "Cross-encoder is an abstract class. Please implement the score method in a subclass."
        )

from trellis.retrieval.config import AppConfig, Config


class EmbedderBase:
    _model: str = ""
    _vector_dim: int = 0

    def __init__(self, model: str, vector_dim: int, config: AppConfig = Config):
        self._model = model
        self._vector_dim = vector_dim
        self._config = config

    async def embed(self, text: str) -> list[float]:
        raise NotImplementedError(
            "Embedder is an abstract class. Please implement the embed method in a subclass."
        )

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(text) for text in texts]

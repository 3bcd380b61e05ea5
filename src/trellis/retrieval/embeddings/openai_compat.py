import httpx

from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.embeddings.base import EmbedderBase
from trellis.retrieval.exceptions import EmbeddingFailure


class Embedder(EmbedderBase):
    """Embedder for any server exposing an OpenAI-compatible /v1/embeddings route.

    Covers ollama, vLLM, LM Studio and OpenAI itself.
    """

    def __init__(
        self,
        model: str,
        vector_dim: int,
        base_url: str,
        config: AppConfig = Config,
        api_key: str | None = None,
        timeout: float = 60.0,
    ):
        super().__init__(model, vector_dim, config)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    async def embed(self, text: str) -> list[float]:
        embeddings = await self.embed_many([text])
        return embeddings[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/v1/embeddings",
                    json={"model": self._model, "input": texts},
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise EmbeddingFailure(f"Embedding request failed: {e}") from e

        data = sorted(payload.get("data", []), key=lambda item: item["index"])
        if len(data) != len(texts):
            raise EmbeddingFailure(
                f"Expected {len(texts)} embeddings, got {len(data)}"
            )

        embeddings = [list(item["embedding"]) for item in data]
        for embedding in embeddings:
            if self._vector_dim and len(embedding) != self._vector_dim:
                raise EmbeddingFailure(
                    f"Embedding dimension {len(embedding)} does not match "
                    f"configured vector_dim {self._vector_dim}"
                )
        return embeddings

import httpx

from trellis.retrieval.config import AppConfig, Config
from trellis.retrieval.exceptions import RerankFailure
from trellis.retrieval.reranking.base import CrossEncoderBase


class HTTPCrossEncoder(CrossEncoderBase):
    """Cross-encoder served behind a /v1/rerank endpoint (vLLM, TEI, Jina style)."""

    def __init__(
        self,
        base_url: str,
        config: AppConfig = Config,
        api_key: str | None = None,
    ):
        super().__init__(config)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = config.reranking.timeout

    async def score(self, query: str, candidate_text: str) -> float:
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/v1/rerank",
                    json={
                        "model": self._model,
                        "query": query,
                        "documents": [candidate_text],
                    },
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise RerankFailure(f"Rerank request failed: {e}") from e

        results = payload.get("results") or []
        if not results:
            raise RerankFailure("Rerank response contained no results")
        return float(results[0]["relevance_score"])

import logging

from pydantic_ai import Agent

from trellis.retrieval.config import AppConfig, Config, ModelConfig
from trellis.retrieval.query.prompts import QUERY_EXPANSION_PROMPT
from trellis.retrieval.utils import get_model

logger = logging.getLogger(__name__)


class QueryExpanderBase:
    async def expand(self, query: str, n: int) -> list[str]:
        """Return up to n paraphrases of query, excluding the query itself."""
        raise NotImplementedError(
            "QueryExpander is an abstract class. Please implement the expand method in a subclass."
        )


def dedupe_variants(query: str, variants: list[str], n: int) -> list[str]:
    """Drop blanks, duplicates and restatements of the original query."""
    seen = {query.strip().casefold()}
    result: list[str] = []
    for variant in variants:
        cleaned = variant.strip()
        key = cleaned.casefold()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
        if len(result) >= n:
            break
    return result


class LLMQueryExpander(QueryExpanderBase):
    """Generates query variants with an LLM."""

    def __init__(
        self,
        config: AppConfig = Config,
        model_config: ModelConfig | None = None,
    ):
        model = get_model(model_config or config.expansion.model, config)
        self._agent: Agent[None, list[str]] = Agent(model=model, output_type=list[str])

    async def expand(self, query: str, n: int) -> list[str]:
        if n <= 0 or not query.strip():
            return []
        prompt = QUERY_EXPANSION_PROMPT.format(count=n, query=query)
        result = await self._agent.run(prompt)
        variants = dedupe_variants(query, result.output, n)
        logger.debug(f"Expanded query into {len(variants)} variants")
        return variants

from pydantic_ai import Agent

from trellis.retrieval.config import AppConfig, Config, ModelConfig
from trellis.retrieval.raptor.prompts import CLUSTER_SUMMARY_PROMPT
from trellis.retrieval.utils import get_model, model_settings


class SummarizerBase:
    """Summarization capability consumed by the tree builder."""

    async def summarize(self, texts: list[str]) -> str:
        raise NotImplementedError(
            "Summarizer is an abstract class. Please implement the summarize method in a subclass."
        )


def format_cluster(texts: list[str]) -> str:
    return "\n\n".join(f"Passage {i}:\n{text}" for i, text in enumerate(texts, 1))


class ClusterSummarizer(SummarizerBase):
    """LLM summarizer for one cluster of tree nodes.

    The model is ``model_config`` when given, otherwise ``raptor.model``,
    otherwise the query expansion model.
    """

    def __init__(
        self,
        config: AppConfig = Config,
        model_config: ModelConfig | None = None,
    ):
        self._config = config
        self._model_config = model_config or config.raptor.model or config.expansion.model
        self._agent: Agent[None, str] = Agent(
            model=get_model(self._model_config, config),
            output_type=str,
            model_settings=model_settings(self._model_config),
        )

    async def summarize(self, texts: list[str]) -> str:
        if not texts:
            raise ValueError("Cannot summarize an empty cluster")

        prompt = CLUSTER_SUMMARY_PROMPT.format(chunks=format_cluster(texts))
        result = await self._agent.run(prompt)
        return result.output.strip()

from typing import Any

from pydantic_ai.settings import ModelSettings

from trellis.retrieval.config import AppConfig, Config, ModelConfig


def model_settings(model_config: ModelConfig) -> ModelSettings | None:
    """Build pydantic-ai model settings from temperature / max_tokens."""
    if model_config.temperature is None and model_config.max_tokens is None:
        return None

    settings = ModelSettings()
    if model_config.temperature is not None:
        settings["temperature"] = model_config.temperature
    if model_config.max_tokens is not None:
        settings["max_tokens"] = model_config.max_tokens
    return settings


def get_model(model_config: ModelConfig, app_config: AppConfig = Config) -> Any:
    """
    Get a pydantic-ai model instance for the specified configuration.

    Args:
        model_config: ModelConfig with provider, model, and settings
        app_config: AppConfig for provider base URLs (defaults to global Config)

    Returns:
        A configured model instance
    """
    from pydantic_ai.models.openai import OpenAIChatModel
    from pydantic_ai.providers.ollama import OllamaProvider
    from pydantic_ai.providers.openai import OpenAIProvider

    provider = model_config.provider
    model = model_config.name
    settings = model_settings(model_config)

    if provider == "ollama":
        base_url = model_config.base_url or app_config.providers.ollama.base_url
        return OpenAIChatModel(
            model_name=model,
            provider=OllamaProvider(base_url=f"{base_url}/v1"),
            settings=settings,
        )

    if provider == "openai":
        if model_config.base_url:
            return OpenAIChatModel(
                model_name=model,
                provider=OpenAIProvider(base_url=model_config.base_url),
                settings=settings,
            )
        return OpenAIChatModel(model_name=model, settings=settings)

    if provider == "vllm":
        if not model_config.base_url:
            raise ValueError("vLLM models require a base_url")
        return OpenAIChatModel(
            model_name=model,
            provider=OpenAIProvider(
                base_url=f"{model_config.base_url.rstrip('/')}/v1", api_key="none"
            ),
            settings=settings,
        )

    if provider == "anthropic":
        from pydantic_ai.models.anthropic import AnthropicModel

        return AnthropicModel(model_name=model, settings=settings)

    # Let pydantic-ai resolve "provider:model" strings for everything else
    return f"{provider}:{model}"

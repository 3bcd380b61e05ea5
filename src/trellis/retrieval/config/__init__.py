from pathlib import Path

from trellis.retrieval.config.loader import (
    find_config_file,
    generate_default_config,
    load_yaml_config,
)
from trellis.retrieval.config.models import (
    AppConfig,
    ChannelsConfig,
    ContextConfig,
    EmbeddingModelConfig,
    EmbeddingsConfig,
    ExpansionConfig,
    FusionConfig,
    ModelConfig,
    PipelineConfig,
    ProvidersConfig,
    RaptorConfig,
    RerankingConfig,
    StagesConfig,
    StorageConfig,
)

__all__ = [
    "Config",
    "AppConfig",
    "ChannelsConfig",
    "ContextConfig",
    "EmbeddingModelConfig",
    "EmbeddingsConfig",
    "ExpansionConfig",
    "FusionConfig",
    "ModelConfig",
    "PipelineConfig",
    "ProvidersConfig",
    "RaptorConfig",
    "RerankingConfig",
    "StagesConfig",
    "StorageConfig",
    "find_config_file",
    "load_config",
    "load_yaml_config",
    "generate_default_config",
    "set_config",
]


def load_config(path: Path | None = None) -> AppConfig:
    """Build an AppConfig from the discovered YAML file, or defaults if none."""
    config_path = find_config_file(path)
    if config_path is None:
        return AppConfig()
    return AppConfig.model_validate(load_yaml_config(config_path))


class ConfigProxy:
    """Module-level handle on the active configuration.

    Components keep a reference to ``Config`` and read through it, so a
    later ``set_config`` call is visible to them.
    """

    def __init__(self, config: AppConfig | None = None):
        self._config = config if config is not None else load_config()

    def __getattr__(self, name):
        return getattr(self._config, name)

    def get(self) -> AppConfig:
        return self._config

    def set(self, config: AppConfig) -> None:
        self._config = config


Config = ConfigProxy()


def set_config(config: AppConfig) -> None:
    """Replace the active configuration, e.g. ``set_config(AppConfig(fusion={"k": 30}))``."""
    Config.set(config)

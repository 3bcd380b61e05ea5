import os
from pathlib import Path

import yaml

CONFIG_PATH_ENV = "TRELLIS_CONFIG_PATH"


def find_config_file(cli_path: Path | None = None) -> Path | None:
    """Find the YAML config file using the search path.

    Search order:
    1. Explicitly provided path (if given)
    2. $TRELLIS_CONFIG_PATH
    3. ./trellis.yaml (current directory)
    4. ~/.config/trellis/config.yaml (user config)

    Returns None if no config file is found.
    """
    if cli_path:
        if cli_path.exists():
            return cli_path
        raise FileNotFoundError(f"Config file not found: {cli_path}")

    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path
        raise FileNotFoundError(f"Config file not found: {path}")

    cwd_config = Path.cwd() / "trellis.yaml"
    if cwd_config.exists():
        return cwd_config

    user_config = Path.home() / ".config" / "trellis" / "config.yaml"
    if user_config.exists():
        return user_config

    return None


def load_yaml_config(path: Path) -> dict:
    """Load and parse a YAML config file."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def generate_default_config() -> dict:
    """Generate a default YAML config structure."""
    from trellis.retrieval.config.models import AppConfig

    return AppConfig().model_dump(mode="json")

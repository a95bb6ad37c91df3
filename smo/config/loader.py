import yaml
from pathlib import Path
from typing import Any, Optional
from .models import AppConfig


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model.

    ``None`` yields the built-in defaults; an explicit path that does not
    exist is an error.
    """
    if config_path is None:
        return AppConfig()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping at the top level: {config_path}")

    return AppConfig(**data)


def apply_overrides(config: AppConfig, **overrides: Any) -> AppConfig:
    """Returns a new AppConfig with non-None general overrides applied.

    Values go through validation again; the original config is left untouched.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    if not values:
        return config

    general = config.general.model_dump()
    general.update(values)
    return AppConfig(
        general=general,
        extensions=config.extensions.model_dump(),
    )

import os
import yaml
from pathlib import Path
from typing import Mapping, Optional
from pydantic import ValidationError
from vidx.domain.errors import ConfigError
from .models import AppConfig


def load_config(config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Loads YAML config, applies environment overrides and validates it.

    ``TARGET_DIRECTORY`` sets ``library.root_dir`` and ``SMART_THUMB=1``
    enables smart thumbnails. The config file may be omitted when the root
    comes from the environment.
    """
    env = os.environ if env is None else env
    data: dict = {}

    if config_path is not None and config_path.exists():
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_path}")
    elif config_path is not None and not env.get("TARGET_DIRECTORY"):
        raise ConfigError(f"Config file not found: {config_path}")

    library = dict(data.get("library") or {})
    if env.get("TARGET_DIRECTORY"):
        library["root_dir"] = env["TARGET_DIRECTORY"]
    if not library.get("root_dir"):
        raise ConfigError("library.root_dir is not set (config file or TARGET_DIRECTORY)")
    data["library"] = library

    if "SMART_THUMB" in env:
        thumbnails = dict(data.get("thumbnails") or {})
        thumbnails["smart"] = env["SMART_THUMB"] == "1"
        data["thumbnails"] = thumbnails

    try:
        return AppConfig(**data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

"""Configuration loading utilities."""

import json
import re
from pathlib import Path
from typing import Any, Callable

from mubus.config.schema import Config


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".mubus" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """Read camelCase JSON config; defaults when the file does not exist."""
    path = config_path or get_config_path()
    if not path.exists():
        return Config()
    try:
        return Config.model_validate(convert_keys(json.loads(path.read_text(encoding="utf-8"))))
    except ValueError as e:
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
        raise ValueError(f"Failed to load config from {path}: {e}") from e


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Write config as camelCase JSON and drop the cached copy."""
    from mubus.config.access import clear_config_cache

    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(convert_to_camel(config.model_dump()), indent=2), encoding="utf-8")
    clear_config_cache(config_path=path)


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _rekey(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, dict):
        return {rename(k): _rekey(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_rekey(item, rename) for item in data]
    return data


def convert_keys(data: Any) -> Any:
    """camelCase file keys -> snake_case model fields, recursively."""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    return _rekey(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)

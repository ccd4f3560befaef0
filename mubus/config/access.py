"""Process-wide config access with a per-path cache."""

from __future__ import annotations

import os
import threading
from pathlib import Path

from mubus.config.loader import get_config_path, load_config
from mubus.config.schema import Config

CONFIG_PATH_ENV = "MUBUS_CONFIG"

_lock = threading.RLock()
_cache: dict[Path, Config] = {}


def resolve_config_path(config_path: Path | None = None) -> Path:
    """Explicit path, else $MUBUS_CONFIG, else ~/.mubus/config.json."""
    if config_path is None and os.environ.get(CONFIG_PATH_ENV):
        config_path = Path(os.environ[CONFIG_PATH_ENV])
    return Path(config_path or get_config_path()).expanduser().resolve()


def get_config(*, config_path: Path | None = None, force_reload: bool = False) -> Config:
    """Load config once per path; force_reload re-reads the file."""
    path = resolve_config_path(config_path)
    with _lock:
        if force_reload or path not in _cache:
            _cache[path] = load_config(path)
        return _cache[path]


def clear_config_cache(*, config_path: Path | None = None) -> None:
    """Drop one cached entry, or all of them when no path is given."""
    with _lock:
        if config_path is None:
            _cache.clear()
            return
        _cache.pop(resolve_config_path(config_path), None)

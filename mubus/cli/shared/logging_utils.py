"""Loguru sinks for the CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

_SINK_IDS: dict[str, int] = {}

LOG_DIR = Path.home() / ".mubus" / "logs"


def ensure_rotating_log_file(name: str, level: str = "INFO") -> Path:
    """Add (once) a rotating file sink ~/.mubus/logs/<name>.log."""
    log_path = LOG_DIR / f"{name}.log"
    if name in _SINK_IDS:
        return log_path
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    _SINK_IDS[name] = logger.add(
        str(log_path),
        level=level,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        encoding="utf-8",
        backtrace=False,
        diagnose=False,
    )
    return log_path


def configure_console_logging(verbose: bool) -> None:
    """Log to stderr when verbose, otherwise keep the package quiet on the console."""
    logger.remove()
    if verbose:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format="<dim>{time:HH:mm:ss.SSS}</dim> | <level>{level: <8}</level> | <level>{message}</level>",
        )
    logger.enable("mubus")

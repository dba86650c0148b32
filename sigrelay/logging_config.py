"""Logging setup for the relay process."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig
from .constants import LOG_COMPONENTS
from .util import expand_path


def parse_level(value: Any, default: int) -> int:
    """Accept a level name ("warn" included), a number, or nothing."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text)
    return level if isinstance(level, int) else default


def _file_handler(path: str) -> logging.Handler:
    p = Path(expand_path(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure logging for a relay process.

    The root logger gets the console and/or file handler at ``log_level``.
    ``websockets`` is held at ``log_ws_level``; each relay component listed
    in ``log_levels`` (``router = "DEBUG"``) gets its own level, and the
    rest follow the root. Safe to call more than once.
    """
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    log_file = override_file if override_file is not None else cfg.log_file
    if log_file and log_file.strip():
        handlers.append(_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=cfg.log_format.strip() or RelayRuntimeConfig.log_format,
        datefmt=cfg.log_datefmt or None,
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(parse_level(override_level or cfg.log_level, logging.INFO))

    logging.getLogger("websockets").setLevel(parse_level(cfg.log_ws_level, logging.WARNING))

    levels = dict(cfg.log_levels)
    for name in LOG_COMPONENTS:
        level = parse_level(levels.get(name), logging.NOTSET)
        logging.getLogger(f"sigrelay.{name}").setLevel(level)

    logging.captureWarnings(True)

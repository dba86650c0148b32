from __future__ import annotations

import logging
import tomllib
from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import LOG_COMPONENTS


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 5001
    identity_param: str = "userId"
    max_identity_len: int = 128
    max_frame_bytes: int = 1024 * 1024
    outbound_queue_size: int = 256
    rate_limit_msgs_per_minute: int = 240
    ping_interval_s: float = 20.0
    ping_timeout_s: float = 20.0
    accept_legacy_events: bool = True
    banned_identities: tuple[str, ...] = ()
    log_level: str = "INFO"
    log_ws_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_datefmt: str | None = None
    # (component, level) pairs from the [logging.levels] table.
    log_levels: tuple[tuple[str, str], ...] = ()


_LOGGING_KEYS = {
    "level": "log_level",
    "ws_level": "log_ws_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
    "levels": "log_levels",
}

_INT_KEYS = (
    "port",
    "max_identity_len",
    "max_frame_bytes",
    "outbound_queue_size",
    "rate_limit_msgs_per_minute",
)
_FLOAT_KEYS = ("ping_interval_s", "ping_timeout_s")


def load_toml(path: str) -> dict:
    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: RelayRuntimeConfig, data: dict[str, Any]) -> RelayRuntimeConfig:
    """Overlay a parsed TOML document onto ``cfg``.

    Keys may live at top level or under ``[relay]``; ``[logging]`` keys are
    mapped onto the ``log_*`` fields. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return cfg

    relay = data.get("relay")
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped = {_LOGGING_KEYS[k]: v for k, v in log_table.items() if k in _LOGGING_KEYS}
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where to reload from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    if "banned_identities" in updates:
        raw = updates["banned_identities"]
        if not isinstance(raw, (list, tuple)):
            raise ValueError("banned_identities must be a list")
        updates["banned_identities"] = tuple(str(x).strip() for x in raw if str(x).strip())

    for key in _INT_KEYS:
        if key in updates:
            updates[key] = int(updates[key])
    for key in _FLOAT_KEYS:
        if key in updates:
            updates[key] = float(updates[key])
    for key in ("accept_legacy_events", "log_console"):
        if key in updates and not isinstance(updates[key], bool):
            raise ValueError(f"{key} must be a boolean")

    if "log_levels" in updates:
        raw = updates["log_levels"]
        if not isinstance(raw, dict):
            raise ValueError("[logging.levels] must be a table")
        updates["log_levels"] = tuple(sorted((str(k), str(v)) for k, v in raw.items()))

    for key in ("log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None

    new_cfg = replace(cfg, **updates) if updates else cfg
    validate_config(new_cfg)
    return new_cfg


def load_config(path: str, base: RelayRuntimeConfig | None = None) -> RelayRuntimeConfig:
    cfg = base or RelayRuntimeConfig()
    cfg = replace(cfg, config_path=path)
    return apply_config_data(cfg, load_toml(path))


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if not (0 <= int(cfg.port) <= 65535):
        raise ValueError(f"port out of range: {cfg.port}")
    if not str(cfg.identity_param).strip():
        raise ValueError("identity_param must not be empty")
    if int(cfg.outbound_queue_size) < 1:
        raise ValueError("outbound_queue_size must be at least 1")
    if int(cfg.max_frame_bytes) < 1:
        raise ValueError("max_frame_bytes must be at least 1")
    if int(cfg.rate_limit_msgs_per_minute) < 0:
        raise ValueError("rate_limit_msgs_per_minute must not be negative")
    for name, level in cfg.log_levels:
        if name not in LOG_COMPONENTS:
            raise ValueError(f"unknown log component {name!r}")
        text = str(level).strip().upper()
        if not text.isdigit() and not isinstance(logging.getLevelName(text), int):
            raise ValueError(f"unknown log level {level!r} for {name}")

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import RelayRuntimeConfig, load_config, validate_config
from .constants import LOG_COMPONENTS
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .server import RelayServer
from .util import expand_path


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    d = RelayRuntimeConfig()
    content = f"""# sigrelay configuration (TOML)
#
# This file was created on first run.
# Edit it, then start sigrelay again.

[relay]

# Address and port to accept WebSocket connections on.
host = {d.host!r}
port = {d.port}

# Query parameter carrying the client's identity, e.g. ws://host:port/?userId=alice
# Connections without it are closed with code 1008.
identity_param = {d.identity_param!r}
max_identity_len = {d.max_identity_len}

# Accept the original browser client's event names
# (videoCallRequest, offer, iceCandidate, ...) as aliases.
accept_legacy_events = true

# Identities refused at handshake.
banned_identities = []

# Limits.
# max_frame_bytes: largest inbound frame accepted.
# outbound_queue_size: events buffered per connection before further sends are dropped.
# rate_limit_msgs_per_minute: per-connection token bucket (0 disables).
max_frame_bytes = {d.max_frame_bytes}
outbound_queue_size = {d.outbound_queue_size}
rate_limit_msgs_per_minute = {d.rate_limit_msgs_per_minute}

# WebSocket keepalive (0 disables).
ping_interval_s = {d.ping_interval_s}
ping_timeout_s = {d.ping_timeout_s}

[logging]

# Log level for sigrelay itself.
level = "INFO"

# Log level for the websockets library.
ws_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = {d.log_format!r}
datefmt = ""

# Per-component levels, e.g. router = "DEBUG". Components: {', '.join(LOG_COMPONENTS)}.
[logging.levels]
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sigrelay", description="Run a presence and call-signaling relay"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument(
        "--identity-param",
        default=None,
        help="Handshake query parameter carrying the identity (default: userId)",
    )
    p.add_argument(
        "--no-legacy-events",
        action="store_true",
        help="Reject the original client's event names",
    )
    p.add_argument(
        "--rate-limit-msgs-per-minute",
        type=int,
        default=None,
        help="Per-connection message rate limit (0 disables)",
    )
    p.add_argument(
        "--outbound-queue-size",
        type=int,
        default=None,
        help="Events buffered per connection before sends are dropped",
    )
    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="WebSocket keepalive ping interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Close connection if a ping is not answered within this many seconds",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    cfg = load_config(str(args.config))

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.identity_param is not None:
        cfg = replace(cfg, identity_param=str(args.identity_param))
    if args.no_legacy_events:
        cfg = replace(cfg, accept_legacy_events=False)
    if args.rate_limit_msgs_per_minute is not None:
        cfg = replace(cfg, rate_limit_msgs_per_minute=int(args.rate_limit_msgs_per_minute))
    if args.outbound_queue_size is not None:
        cfg = replace(cfg, outbound_queue_size=int(args.outbound_queue_size))
    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    validate_config(cfg)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    args.config = expand_path(str(args.config))
    config_path = args.config
    if not os.path.exists(config_path):
        _write_default_config(config_path)
        print(
            "Created default sigrelay config. Edit it before starting:\n"
            f"- Config: {config_path}\n"
            "\nThen re-run sigrelay.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)
    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    RelayServer(cfg).run_forever()


if __name__ == "__main__":
    main()

"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Lifetime counters for the relay.

    Tracks:
    - Frames and bytes in/out
    - Handshakes accepted/rejected
    - Routed envelopes and unreachable notices
    - Presence announces and out-of-band pushes
    - Dropped sends, errors sent, rate limiting
    """

    COUNTERS = (
        "bytes_in",
        "bytes_out",
        "frames_in",
        "frames_bad",
        "handshakes_accepted",
        "handshakes_rejected",
        "rate_limited",
        "errors_sent",
        "envelopes_routed",
        "unreachable_sent",
        "announces",
        "pushes",
        "sends_dropped",
    )

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {k: 0 for k in self.COUNTERS}

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0

        c = self.snapshot()
        online = len(self.hub.registry)
        live = self.hub.lifecycle.live_count()
        banned = self.hub.trust_manager.get_stats()["banned_count"]

        lines: list[str] = []
        lines.append(f"sigrelay {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(f"connections_live={live} identities_online={online} banned={banned}")
        lines.append(
            f"limits: rate_limit_msgs_per_minute={self.hub.config.rate_limit_msgs_per_minute} "
            f"outbound_queue_size={self.hub.config.outbound_queue_size} "
            f"max_frame_bytes={self.hub.config.max_frame_bytes}"
        )
        lines.append(
            "io: frames_in={} frames_bad={} bytes_in={} bytes_out={}".format(
                c["frames_in"], c["frames_bad"], c["bytes_in"], c["bytes_out"]
            )
        )
        lines.append(
            "handshakes: accepted={} rejected={}".format(
                c["handshakes_accepted"], c["handshakes_rejected"]
            )
        )
        lines.append(
            "events: routed={} unreachable={} announces={} pushes={} "
            "errors_sent={} rate_limited={} sends_dropped={}".format(
                c["envelopes_routed"],
                c["unreachable_sent"],
                c["announces"],
                c["pushes"],
                c["errors_sent"],
                c["rate_limited"],
                c["sends_dropped"],
            )
        )

        return "\n".join(lines)

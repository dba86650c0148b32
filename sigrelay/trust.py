"""Ban management for the relay."""

from __future__ import annotations

import logging
import threading


class TrustManager:
    """
    Holds the banned-identity list consulted at handshake time.

    Handles:
    - Loading the list from config
    - Runtime add/remove
    - Ban checks
    """

    def __init__(self, lock: threading.RLock | None = None) -> None:
        self.log = logging.getLogger("sigrelay.trust")
        self._lock = lock or threading.RLock()
        self._banned: set[str] = set()

    def load_from_config(self, banned_list) -> None:
        with self._lock:
            self._banned = {str(h).strip() for h in (banned_list or ()) if str(h).strip()}
        self.log.debug("Loaded %d banned identities", len(self._banned))

    def is_banned(self, identity: str | None) -> bool:
        if not identity:
            return False
        with self._lock:
            return identity in self._banned

    def add_ban(self, identity: str) -> None:
        with self._lock:
            self._banned.add(identity)

    def remove_ban(self, identity: str) -> None:
        with self._lock:
            self._banned.discard(identity)

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return {"banned_count": len(self._banned)}

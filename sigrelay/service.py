from __future__ import annotations

import logging
import threading
from typing import Any

from .config import RelayRuntimeConfig
from .connection import Connection, Outgoing
from .constants import K_EVENT, K_TO
from .envelope import make_unreachable, resolve_kind
from .lifecycle import HandshakeRejected, LifecycleHandler
from .presence import PresenceBroadcaster
from .registry import ConnectionRegistry
from .router import SignalingRouter
from .stats import StatsManager
from .trust import TrustManager


class RelayService:
    """
    The presence and signaling relay, independent of any transport.

    Transports report open/frame/close on their connections; every state
    change runs under one re-entrant lock and produces a list of outbound
    events. Routed envelopes are handed to connections after the lock is
    released. Presence snapshots are handed over while it is still held, so
    every connection sees them in the order they were taken. Connection
    sends never block, which keeps that cheap.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("sigrelay.relay")

        # Transport callbacks may arrive on several threads. Guard the
        # registry and session table with a single re-entrant lock.
        self._state_lock = threading.RLock()

        self.registry: ConnectionRegistry[Connection] = ConnectionRegistry(self._state_lock)
        self.trust_manager = TrustManager(self._state_lock)
        self.stats_manager = StatsManager(self)
        self.lifecycle = LifecycleHandler(self)
        self.presence = PresenceBroadcaster(self)
        self.router = SignalingRouter(self)

        self.trust_manager.load_from_config(config.banned_identities)

    def start(self) -> None:
        self.stats_manager.set_start_time()
        self.log.info(
            "Relay ready identity_param=%s rate_limit_msgs_per_minute=%s legacy_events=%s",
            self.config.identity_param,
            self.config.rate_limit_msgs_per_minute,
            self.config.accept_legacy_events,
        )

    def stop(self) -> None:
        with self._state_lock:
            conns = self.lifecycle.clear_all()
            self.registry.clear_all()
            self.registry.consume_dirty()

        for conn in conns:
            conn.close()

        self.log.info("Relay stopped\n%s", self.stats_manager.format_stats())

    def open_connection(self, conn: Connection, raw_identity: Any) -> str | None:
        """
        Bind a freshly opened connection.

        Returns None on success, or the rejection reason; a rejected
        connection is never registered and should be closed by the caller.
        """
        outgoing: Outgoing = []
        try:
            with self._state_lock:
                self.lifecycle.on_open(conn, raw_identity, outgoing)
                self.flush(outgoing)
        except HandshakeRejected as e:
            return e.reason
        return None

    def close_connection(self, conn: Connection) -> None:
        outgoing: Outgoing = []
        with self._state_lock:
            self.lifecycle.on_close(conn, outgoing)
            conn.close()
            self.flush(outgoing)

    def handle_frame(self, conn: Connection, data: str | bytes) -> None:
        # Keep state reads under the shared lock, but hand events to
        # connections outside it.
        outgoing: Outgoing = []
        with self._state_lock:
            self.router.route_frame(conn, data, outgoing)

        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug("Sending %d event(s) for conn=%s", len(outgoing), conn.conn_id)

        self.flush(outgoing)

    def push(self, identity: str, event: str, fields: dict[str, Any] | None = None) -> bool:
        """
        Deliver a server-originated event to ``identity``'s current connection.

        Used by collaborators such as a message store announcing a new
        message. Returns False if the identity is offline or the send was
        dropped.
        """
        with self._state_lock:
            conn = self.registry.lookup(identity)
        if conn is None or conn.closed:
            return False

        payload: dict[str, Any] = dict(fields or {})
        payload[K_EVENT] = str(event)
        self.stats_manager.inc("pushes")
        if conn.send(payload):
            return True
        self.stats_manager.inc("sends_dropped")
        return False

    def online_identities(self) -> list[str]:
        with self._state_lock:
            return self.presence.snapshot()

    def flush(self, outgoing: Outgoing) -> None:
        for out in outgoing:
            if out.conn.send(out.event):
                continue

            self.stats_manager.inc("sends_dropped")
            self.log.warning(
                "Send dropped conn=%s event=%r", out.conn.conn_id, out.event.get(K_EVENT)
            )
            if out.bounce_to is None:
                continue

            kind = resolve_kind(out.event.get(K_EVENT), accept_legacy=False)
            notice = make_unreachable(str(out.event.get(K_TO)), kind)
            if out.bounce_to.send(notice):
                self.stats_manager.inc("unreachable_sent")
            else:
                self.stats_manager.inc("sends_dropped")


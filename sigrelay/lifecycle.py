from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .connection import Connection, Outgoing
from .constants import REJECT_BANNED, REJECT_INVALID_IDENTITY, REJECT_MISSING_IDENTITY
from .util import normalize_identity

if TYPE_CHECKING:
    from .service import RelayService


class ConnState(enum.Enum):
    HANDSHAKING = "handshaking"
    BOUND = "bound"
    CLOSED = "closed"


@dataclass
class _RateState:
    """Token bucket state for rate limiting."""

    tokens: float
    last_refill: float


@dataclass
class Session:
    conn: Connection
    state: ConnState = ConnState.HANDSHAKING
    identity: str | None = None
    session_id: int | None = None


class HandshakeRejected(Exception):
    """Raised internally when a connection cannot be bound to an identity."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class LifecycleHandler:
    """
    Drives each connection through HANDSHAKING -> BOUND -> CLOSED.

    This class is responsible for:
    - Binding an identity to a connection at open time (or refusing it)
    - Removing the registry entry at close, guarded by session id
    - Triggering a presence announce after either transition
    - Per-connection token bucket rate limiting

    Methods here expect the hub state lock to be held.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.lifecycle")
        self.sessions: dict[Connection, Session] = {}
        self._rate: dict[Connection, _RateState] = {}

    def _check_identity(self, raw: Any) -> str:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raise HandshakeRejected(REJECT_MISSING_IDENTITY)
        identity = normalize_identity(raw, int(self.hub.config.max_identity_len))
        if identity is None:
            raise HandshakeRejected(REJECT_INVALID_IDENTITY)
        if self.hub.trust_manager.is_banned(identity):
            raise HandshakeRejected(REJECT_BANNED)
        return identity

    def on_open(self, conn: Connection, raw_identity: Any, outgoing: Outgoing) -> Session:
        """
        Bind ``conn`` to the identity it presented.

        Raises HandshakeRejected (leaving the registry untouched) if the
        identity is missing, malformed or banned.
        """
        sess = Session(conn=conn)
        try:
            identity = self._check_identity(raw_identity)
        except HandshakeRejected as e:
            sess.state = ConnState.CLOSED
            self.hub.stats_manager.inc("handshakes_rejected")
            self.log.warning(
                "Handshake rejected conn=%s reason=%s identity=%r",
                conn.conn_id,
                e.reason,
                raw_identity,
            )
            raise

        binding = self.hub.registry.register(identity, conn)
        sess.identity = identity
        sess.session_id = binding.session_id
        sess.state = ConnState.BOUND
        self.sessions[conn] = sess
        self._rate[conn] = _RateState(
            tokens=float(self.hub.config.rate_limit_msgs_per_minute),
            last_refill=time.monotonic(),
        )
        self.hub.stats_manager.inc("handshakes_accepted")

        self.log.info(
            "Connection bound identity=%s conn=%s session=%s",
            identity,
            conn.conn_id,
            binding.session_id,
        )

        self.hub.presence.announce(outgoing)
        return sess

    def on_close(self, conn: Connection, outgoing: Outgoing) -> Session | None:
        """
        Tear down ``conn``. A superseded connection's close leaves the newer
        binding in place and announces nothing.
        """
        sess = self.sessions.pop(conn, None)
        self._rate.pop(conn, None)
        if sess is None:
            return None

        sess.state = ConnState.CLOSED
        removed = False
        if sess.identity is not None and sess.session_id is not None:
            removed = self.hub.registry.unregister(sess.identity, sess.session_id)

        self.log.info(
            "Connection closed identity=%s conn=%s session=%s removed=%s",
            sess.identity,
            conn.conn_id,
            sess.session_id,
            removed,
        )

        # No-op when unregister was stale.
        self.hub.presence.announce(outgoing)
        return sess

    def refill_and_take(self, conn: Connection, cost: float = 1.0) -> bool:
        """
        Token bucket rate limiting.

        Returns True if tokens were available and taken, False if rate limited.
        A limit of 0 disables limiting.
        """
        state = self._rate.get(conn)
        if state is None:
            return True

        limit = int(self.hub.config.rate_limit_msgs_per_minute)
        if limit <= 0:
            return True

        now = time.monotonic()
        per_min = float(limit)
        rate_per_s = per_min / 60.0
        elapsed = max(0.0, now - state.last_refill)
        state.tokens = min(per_min, state.tokens + elapsed * rate_per_s)
        state.last_refill = now

        if state.tokens < cost:
            return False

        state.tokens -= cost
        return True

    def get_session(self, conn: Connection) -> Session | None:
        return self.sessions.get(conn)

    def live_connections(self) -> list[Connection]:
        return [c for c in self.sessions if not c.closed]

    def live_count(self) -> int:
        return len(self.sessions)

    def clear_all(self) -> list[Connection]:
        """Forget every session and return the connections for teardown."""
        conns = list(self.sessions.keys())
        self.sessions.clear()
        self._rate.clear()
        return conns

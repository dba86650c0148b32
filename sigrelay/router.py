from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import decode, frame_size
from .connection import Connection, Outbound, Outgoing
from .envelope import Envelope, make_error, make_unreachable, parse_envelope
from .lifecycle import ConnState

if TYPE_CHECKING:
    from .service import RelayService


class SignalingRouter:
    """
    Routes signaling envelopes from one identity to another.

    This class is responsible for:
    - Decoding and validating inbound frames
    - Rate limiting per connection
    - Stamping the sender identity from the connection binding
    - Forwarding to the target's current connection, or reporting it
      unreachable to the sender

    Every signaling kind goes through the same :meth:`route` path; the kind
    is carried through untouched.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.router")

    def route_frame(self, conn: Connection, data: str | bytes, outgoing: Outgoing) -> None:
        """
        Main entry point for an inbound frame.

        This method should be called with the state lock held.
        """
        sess = self.hub.lifecycle.get_session(conn)
        if sess is None or sess.state is not ConnState.BOUND or sess.identity is None:
            # Only bound connections may signal.
            return

        size = frame_size(data)
        self.hub.stats_manager.inc("frames_in")
        self.hub.stats_manager.inc("bytes_in", size)

        if size > int(self.hub.config.max_frame_bytes):
            self.hub.stats_manager.inc("frames_bad")
            self._emit_error(outgoing, conn, "frame too large")
            return

        if not self.hub.lifecycle.refill_and_take(conn, 1.0):
            self.hub.stats_manager.inc("rate_limited")
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug("Rate limited identity=%s conn=%s", sess.identity, conn.conn_id)
            self._emit_error(outgoing, conn, "rate limited")
            return

        try:
            env = parse_envelope(
                decode(data), accept_legacy=bool(self.hub.config.accept_legacy_events)
            )
        except (TypeError, ValueError) as e:
            # json.JSONDecodeError and the cbor2 decode errors are ValueErrors.
            self.hub.stats_manager.inc("frames_bad")
            self.log.debug(
                "Bad frame identity=%s conn=%s bytes=%s err=%s",
                sess.identity,
                conn.conn_id,
                size,
                e,
            )
            self._emit_error(outgoing, conn, f"bad message: {e}")
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX identity=%s conn=%s kind=%s to=%s bytes=%s",
                sess.identity,
                conn.conn_id,
                env.kind.value,
                env.target,
                size,
            )

        self.route(conn, sess.identity, env, outgoing)

    def route(
        self,
        conn: Connection,
        sender: str,
        envelope: Envelope,
        outgoing: Outgoing,
    ) -> bool:
        """
        Forward ``envelope`` to its target as ``sender``.

        Returns True if the envelope was queued for the target, False if the
        sender was told the target is unreachable.
        """
        env = envelope.with_sender(sender)
        target = self.hub.registry.lookup(env.target)

        if target is None or target.closed:
            outgoing.append(Outbound(conn, make_unreachable(env.target, env.kind)))
            self.hub.stats_manager.inc("unreachable_sent")
            self.log.info(
                "Unreachable kind=%s from=%s to=%s", env.kind.value, sender, env.target
            )
            return False

        outgoing.append(Outbound(target, env.to_event(), bounce_to=conn))
        self.hub.stats_manager.inc("envelopes_routed")
        self.log.debug(
            "Routed kind=%s from=%s to=%s conn=%s",
            env.kind.value,
            sender,
            env.target,
            target.conn_id,
        )
        return True

    def _emit_error(self, outgoing: Outgoing, conn: Connection, reason: str) -> None:
        self.hub.stats_manager.inc("errors_sent")
        outgoing.append(Outbound(conn, make_error(reason)))

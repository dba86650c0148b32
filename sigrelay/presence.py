"""Presence snapshot broadcasting."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .connection import Outbound, Outgoing
from .envelope import make_online_users

if TYPE_CHECKING:
    from .service import RelayService


class PresenceBroadcaster:
    """
    Pushes the online-identity set to every live connection.

    Announces only when the registry reports a membership change since the
    previous announce, so close events that did not remove anything stay
    silent. Presence is advisory; there is no ordering relative to routed
    envelopes.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.presence")

    def snapshot(self) -> list[str]:
        return sorted(self.hub.registry.snapshot_identities())

    def announce(self, outgoing: Outgoing) -> bool:
        """
        Queue an ``online-users`` event for every live connection.

        Must be called with the state lock held. Returns False when nothing
        changed and no event was queued.
        """
        if not self.hub.registry.consume_dirty():
            return False

        identities = self.snapshot()
        event = make_online_users(identities)
        targets = self.hub.lifecycle.live_connections()
        for conn in targets:
            outgoing.append(Outbound(conn, event))

        self.hub.stats_manager.inc("announces")
        self.log.debug(
            "Presence announce online=%d recipients=%d", len(identities), len(targets)
        )
        return True

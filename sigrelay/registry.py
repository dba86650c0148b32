from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Generic, TypeVar

C = TypeVar("C")


@dataclass(frozen=True)
class Binding(Generic[C]):
    """One registry entry: the connection currently on file for an identity."""

    identity: str
    session_id: int
    connection: C


class ConnectionRegistry(Generic[C]):
    """
    Live mapping from identity to its current connection.

    - At most one binding per identity; a later register wins.
    - Every binding gets a fresh, monotonically increasing session id.
      Unregister compares session ids, so a late close from a superseded
      connection cannot evict the newer binding.
    - Mutations mark the presence snapshot dirty; the broadcaster consumes
      the flag.

    All operations take the registry lock and are safe to call from any
    thread.
    """

    def __init__(self, lock: threading.RLock | None = None) -> None:
        self.log = logging.getLogger("sigrelay.registry")
        self._lock = lock or threading.RLock()
        self._bindings: dict[str, Binding[C]] = {}
        self._session_ids = itertools.count(1)
        self._dirty = False

    def register(self, identity: str, connection: C) -> Binding[C]:
        """Bind ``identity`` to ``connection``, replacing any earlier binding."""
        with self._lock:
            binding = Binding(identity, next(self._session_ids), connection)
            previous = self._bindings.get(identity)
            self._bindings[identity] = binding
            self._dirty = True

        if previous is not None:
            self.log.info(
                "Identity rebound identity=%s session=%s supersedes=%s",
                identity,
                binding.session_id,
                previous.session_id,
            )
        return binding

    def unregister(self, identity: str, session_id: int) -> bool:
        """
        Remove the binding for ``identity`` if it still belongs to ``session_id``.

        Returns True when an entry was removed. A stale session id is a no-op.
        """
        with self._lock:
            current = self._bindings.get(identity)
            if current is None or current.session_id != session_id:
                stale = True
            else:
                del self._bindings[identity]
                self._dirty = True
                stale = False

        if stale:
            self.log.debug(
                "Ignoring stale unregister identity=%s session=%s", identity, session_id
            )
            return False
        return True

    def unregister_connection(self, identity: str, connection: C) -> bool:
        """Like :meth:`unregister`, keyed on the connection object itself."""
        with self._lock:
            current = self._bindings.get(identity)
            if current is None or current.connection is not connection:
                return False
            return self.unregister(identity, current.session_id)

    def lookup(self, identity: str) -> C | None:
        with self._lock:
            binding = self._bindings.get(identity)
        return binding.connection if binding is not None else None

    def binding(self, identity: str) -> Binding[C] | None:
        with self._lock:
            return self._bindings.get(identity)

    def snapshot_identities(self) -> set[str]:
        with self._lock:
            return set(self._bindings)

    def consume_dirty(self) -> bool:
        """Return whether membership changed since the last call, and reset."""
        with self._lock:
            dirty = self._dirty
            self._dirty = False
            return dirty

    def clear_all(self) -> list[C]:
        with self._lock:
            conns = [b.connection for b in self._bindings.values()]
            self._bindings.clear()
            self._dirty = bool(conns)
            return conns

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._bindings

"""Transport-independent connection handles."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, NamedTuple

import cbor2

from .codec import encode, frame_size
from .constants import ENCODING_JSON

_conn_counter = itertools.count(1)


class Outbound(NamedTuple):
    """An event waiting to be handed to a connection once the state lock is released.

    ``bounce_to`` names the sender of a routed envelope; if the hand-off
    fails, that sender is told the target is unreachable.
    """

    conn: Connection
    event: dict[str, Any]
    bounce_to: Connection | None = None


Outgoing = list[Outbound]


def next_connection_id() -> str:
    return f"conn-{next(_conn_counter)}"


class Connection:
    """
    One live transport session as seen by the relay core.

    The core only ever calls :meth:`send`, which must not block. Subclasses
    decide how events reach the wire.
    """

    def __init__(self, conn_id: str | None = None, *, encoding: str = ENCODING_JSON) -> None:
        self.conn_id = conn_id or next_connection_id()
        self.encoding = encoding
        self.closed = False

    def send(self, event: dict[str, Any]) -> bool:
        """Hand an event to the transport. Returns False if it was dropped."""
        raise NotImplementedError

    def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.conn_id}>"


class QueuedConnection(Connection):
    """
    Connection with a bounded outbound buffer drained by its own task.

    A slow peer fills its own queue and starts losing events; it never holds
    up sends to anyone else. Events are encoded as they are handed over, so
    one that cannot be expressed in this connection's encoding is refused
    without touching the writer.

    ``send`` may be called from any thread: puts from outside the loop that
    owns the queue are handed to it with ``call_soon_threadsafe``.
    ``close`` must be called on that loop.
    """

    def __init__(
        self,
        conn_id: str | None = None,
        *,
        encoding: str = ENCODING_JSON,
        max_queue: int = 256,
    ) -> None:
        super().__init__(conn_id, encoding=encoding)
        self.log = logging.getLogger("sigrelay.connection")
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[str | bytes | None] = asyncio.Queue(
            maxsize=max(1, int(max_queue))
        )

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def send(self, event: dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            data = encode(event, self.encoding)
        except (TypeError, ValueError, cbor2.CBOREncodeError) as e:
            self.log.warning(
                "Cannot encode event=%r for conn=%s encoding=%s: %s",
                event.get("event"),
                self.conn_id,
                self.encoding,
                e,
            )
            return False

        if self._on_loop():
            return self._put(data)

        # full() is only a hint off the loop; _put re-checks there.
        if self._queue.full():
            self._log_full(event.get("event"))
            return False
        self._loop.call_soon_threadsafe(self._put, data)
        return True

    def _put(self, data: str | bytes) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            self._log_full(None)
            return False
        return True

    def _log_full(self, name: Any) -> None:
        self.log.debug(
            "Outbound queue full conn=%s size=%s; dropping event=%r",
            self.conn_id,
            self._queue.qsize(),
            name,
        )

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake the writer so it can exit; make room for the sentinel if needed.
        while True:
            try:
                self._queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass

    async def drain(
        self,
        write: Callable[[str | bytes], Awaitable[None]],
        on_sent: Callable[[int], None] | None = None,
    ) -> None:
        """Write queued frames until the connection is closed."""
        while True:
            data = await self._queue.get()
            if data is None:
                return
            await write(data)
            if on_sent is not None:
                on_sent(frame_size(data))

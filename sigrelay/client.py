"""Client side of the signaling contract.

Usage:
    client = SignalingClient("ws://localhost:5001/", identity="alice")
    client.on("call-accept", on_accepted)
    await client.connect()
    await client.request_call("bob", type="video")
    await client.run()          # dispatches events to listeners until closed
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable
from urllib.parse import urlencode, urlsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from .codec import decode, encode
from .constants import (
    B_IDENTITIES,
    E_ERROR,
    E_ONLINE_USERS,
    E_UNREACHABLE,
    ENCODING_JSON,
    F_ANSWER,
    F_CALL_ID,
    F_CALL_TYPE,
    F_CANDIDATE,
    F_OFFER,
    K_EVENT,
    Q_ENCODING,
)
from .envelope import SignalKind, make_request

Listener = Callable[[dict[str, Any]], None]


class SignalingClient:
    EVENTS = tuple(k.value for k in SignalKind) + (E_ONLINE_USERS, E_UNREACHABLE, E_ERROR)

    def __init__(
        self,
        url: str,
        identity: str,
        *,
        identity_param: str = "userId",
        encoding: str = ENCODING_JSON,
    ) -> None:
        self.url = url
        self.identity = identity
        self.identity_param = identity_param
        self.encoding = encoding
        self.log = logging.getLogger("sigrelay.client")
        self.listeners: dict[str, list[Listener]] = {e: [] for e in self.EVENTS}
        self.online_users: list[str] = []
        self._ws: ClientConnection | None = None

    def connect_url(self) -> str:
        query = urlencode({self.identity_param: self.identity, Q_ENCODING: self.encoding})
        sep = "&" if urlsplit(self.url).query else "?"
        return f"{self.url}{sep}{query}"

    async def connect(self) -> None:
        self._ws = await connect(self.connect_url())
        self.log.info("Connected identity=%s url=%s", self.identity, self.url)

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    def is_ready(self) -> bool:
        return self._ws is not None and self._ws.close_code is None

    def on(self, event: str, callback: Listener | None) -> None:
        """Add a listener for ``event``; passing None removes all of them."""
        if event not in self.listeners:
            raise ValueError(f"unknown event {event!r}")
        if callback is None:
            self.listeners[event] = []
            return
        self.listeners[event].append(callback)

    def dispatch(self, event: dict[str, Any]) -> None:
        name = event.get(K_EVENT)
        if name == E_ONLINE_USERS:
            identities = event.get(B_IDENTITIES)
            self.online_users = list(identities) if isinstance(identities, list) else []

        for cb in list(self.listeners.get(name, ())):
            try:
                cb(event)
            except Exception:
                self.log.exception("Listener for %s failed", name)

    async def recv_event(self) -> dict[str, Any]:
        """Receive one event, dispatch it, and return it."""
        if self._ws is None:
            raise RuntimeError("not connected")
        event = decode(await self._ws.recv())
        if not isinstance(event, dict):
            raise ValueError("server sent a non-map frame")
        self.dispatch(event)
        return event

    async def run(self) -> None:
        try:
            while self._ws is not None:
                await self.recv_event()
        except ConnectionClosed:
            self.log.info("Disconnected identity=%s", self.identity)

    async def send_event(self, kind: SignalKind, to: str, **payload: Any) -> dict[str, Any]:
        if self._ws is None:
            raise RuntimeError("not connected")
        frame = make_request(kind, to=to, **payload)
        await self._ws.send(encode(frame, self.encoding))
        return frame

    async def request_call(self, to: str, type: str = "video") -> dict[str, Any]:
        return await self.send_event(
            SignalKind.CALL_REQUEST,
            to,
            **{F_CALL_TYPE: type, "timestamp": int(time.time() * 1000)},
        )

    async def accept_call(self, to: str, call_id: str | None = None) -> dict[str, Any]:
        extra = {F_CALL_ID: call_id} if call_id is not None else {}
        return await self.send_event(SignalKind.CALL_ACCEPT, to, **extra)

    async def reject_call(self, to: str, call_id: str | None = None) -> dict[str, Any]:
        extra = {F_CALL_ID: call_id} if call_id is not None else {}
        return await self.send_event(SignalKind.CALL_REJECT, to, **extra)

    async def end_call(self, to: str) -> dict[str, Any]:
        return await self.send_event(SignalKind.CALL_END, to)

    async def send_offer(self, to: str, offer: Any) -> dict[str, Any]:
        return await self.send_event(SignalKind.NEGOTIATION_OFFER, to, **{F_OFFER: offer})

    async def send_answer(self, to: str, answer: Any) -> dict[str, Any]:
        return await self.send_event(SignalKind.NEGOTIATION_ANSWER, to, **{F_ANSWER: answer})

    async def send_candidate(self, to: str, candidate: Any) -> dict[str, Any]:
        return await self.send_event(
            SignalKind.CONNECTIVITY_CANDIDATE, to, **{F_CANDIDATE: candidate}
        )

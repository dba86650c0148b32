from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import (
    B_IDENTITIES,
    B_IDENTITY,
    B_KIND,
    B_REASON,
    DEFAULT_CALL_TYPE,
    E_CALL_ACCEPT,
    E_CALL_END,
    E_CALL_REJECT,
    E_CALL_REQUEST,
    E_CONNECTIVITY_CANDIDATE,
    E_ERROR,
    E_NEGOTIATION_ANSWER,
    E_NEGOTIATION_OFFER,
    E_ONLINE_USERS,
    E_UNREACHABLE,
    F_ANSWER,
    F_CALL_ID,
    F_CALL_TYPE,
    F_CANDIDATE,
    F_OFFER,
    K_EVENT,
    K_FROM,
    K_TO,
    LEGACY_EVENT_ALIASES,
)


class SignalKind(str, Enum):
    CALL_REQUEST = E_CALL_REQUEST
    CALL_ACCEPT = E_CALL_ACCEPT
    CALL_REJECT = E_CALL_REJECT
    CALL_END = E_CALL_END
    NEGOTIATION_OFFER = E_NEGOTIATION_OFFER
    NEGOTIATION_ANSWER = E_NEGOTIATION_ANSWER
    CONNECTIVITY_CANDIDATE = E_CONNECTIVITY_CANDIDATE


# Payload fields the relay knows about, per kind: name -> required.
# Unknown fields are carried along untouched.
PAYLOAD_FIELDS: dict[SignalKind, dict[str, bool]] = {
    SignalKind.CALL_REQUEST: {F_CALL_TYPE: False},
    SignalKind.CALL_ACCEPT: {F_CALL_ID: False},
    SignalKind.CALL_REJECT: {F_CALL_ID: False},
    SignalKind.CALL_END: {},
    SignalKind.NEGOTIATION_OFFER: {F_OFFER: True},
    SignalKind.NEGOTIATION_ANSWER: {F_ANSWER: True},
    # A null candidate marks end-of-candidates, so only presence is checked.
    SignalKind.CONNECTIVITY_CANDIDATE: {F_CANDIDATE: True},
}

_RESERVED_KEYS = frozenset({K_EVENT, K_FROM, K_TO})


@dataclass(frozen=True)
class Envelope:
    """An addressed signaling message.

    ``sender`` is always the identity bound to the originating connection;
    whatever the client put in ``from`` is discarded during parsing.
    """

    kind: SignalKind
    target: str
    sender: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def with_sender(self, sender: str) -> Envelope:
        return Envelope(
            kind=self.kind,
            target=self.target,
            sender=sender,
            payload=dict(self.payload),
        )

    def to_event(self) -> dict[str, Any]:
        if self.sender is None:
            raise ValueError("envelope has no sender")
        event: dict[str, Any] = {
            K_EVENT: self.kind.value,
            K_FROM: self.sender,
            K_TO: self.target,
        }
        event.update(self.payload)
        return event


def resolve_kind(name: Any, *, accept_legacy: bool = True) -> SignalKind | None:
    if not isinstance(name, str):
        return None
    if accept_legacy and name in LEGACY_EVENT_ALIASES:
        name = LEGACY_EVENT_ALIASES[name]
    try:
        return SignalKind(name)
    except ValueError:
        return None


def validate_frame(frame: Any) -> None:
    if not isinstance(frame, dict):
        raise TypeError("frame must be a map")

    for k in frame.keys():
        if not isinstance(k, str):
            raise TypeError("frame keys must be strings")

    if K_EVENT not in frame:
        raise ValueError(f"missing frame key {K_EVENT!r}")
    if not isinstance(frame[K_EVENT], str):
        raise TypeError("event name must be a string")


def parse_envelope(frame: Any, *, accept_legacy: bool = True) -> Envelope:
    """Turn a decoded inbound frame into an :class:`Envelope`.

    Raises TypeError/ValueError for anything that is not a routable signaling
    message.
    """
    validate_frame(frame)

    kind = resolve_kind(frame[K_EVENT], accept_legacy=accept_legacy)
    if kind is None:
        raise ValueError(f"unknown event {frame[K_EVENT]!r}")

    target = frame.get(K_TO)
    if target is None:
        raise ValueError(f"missing frame key {K_TO!r}")
    if not isinstance(target, str):
        raise TypeError("target identity must be a string")
    if not target.strip():
        raise ValueError("target identity must not be empty")

    payload = {k: v for k, v in frame.items() if k not in _RESERVED_KEYS}

    for name, required in PAYLOAD_FIELDS[kind].items():
        if required and name not in payload:
            raise ValueError(f"{kind.value} requires {name!r}")

    if kind is SignalKind.CALL_REQUEST:
        call_type = payload.get(F_CALL_TYPE)
        if call_type is None:
            payload[F_CALL_TYPE] = DEFAULT_CALL_TYPE
        elif not isinstance(call_type, str):
            raise TypeError("call type must be a string")

    return Envelope(kind=kind, target=target, payload=payload)


def make_request(kind: SignalKind, *, to: str, **payload: Any) -> dict[str, Any]:
    frame: dict[str, Any] = {K_EVENT: SignalKind(kind).value, K_TO: to}
    for k, v in payload.items():
        if k in _RESERVED_KEYS:
            raise ValueError(f"{k!r} is reserved")
        frame[k] = v
    return frame


def make_online_users(identities) -> dict[str, Any]:
    return {K_EVENT: E_ONLINE_USERS, B_IDENTITIES: sorted(identities)}


def make_unreachable(identity: str, kind: SignalKind | None = None) -> dict[str, Any]:
    event: dict[str, Any] = {K_EVENT: E_UNREACHABLE, B_IDENTITY: identity}
    if kind is not None:
        event[B_KIND] = kind.value
    return event


def make_error(reason: str) -> dict[str, Any]:
    return {K_EVENT: E_ERROR, B_REASON: str(reason)}

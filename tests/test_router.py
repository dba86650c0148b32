import json

import cbor2
import pytest

from sigrelay.envelope import SignalKind

from conftest import RecordingConnection, make_service

PAYLOADS = {
    SignalKind.CALL_REQUEST: {"type": "video"},
    SignalKind.CALL_ACCEPT: {"callId": "c-1"},
    SignalKind.CALL_REJECT: {"callId": "c-1"},
    SignalKind.CALL_END: {},
    SignalKind.NEGOTIATION_OFFER: {"offer": {"type": "offer", "sdp": "v=0\r\n"}},
    SignalKind.NEGOTIATION_ANSWER: {"answer": {"type": "answer", "sdp": "v=0\r\n"}},
    SignalKind.CONNECTIVITY_CANDIDATE: {"candidate": {"candidate": "a=candidate:1", "sdpMid": "0"}},
}


def _frame(kind: SignalKind, to: str, **extra) -> str:
    return json.dumps({"event": kind.value, "to": to, **PAYLOADS[kind], **extra})


@pytest.mark.parametrize("kind", list(SignalKind))
def test_every_kind_is_forwarded_once_to_the_target(hub, connect, kind) -> None:
    alice = connect("alice")
    bob = connect("bob")
    carol = connect("carol")
    for c in (alice, bob, carol):
        c.events.clear()

    hub.handle_frame(alice, _frame(kind, "bob", **{"from": "mallory"}))

    assert bob.events == [{"event": kind.value, "from": "alice", "to": "bob", **PAYLOADS[kind]}]
    assert alice.events == []
    assert carol.events == []


@pytest.mark.parametrize("kind", list(SignalKind))
def test_every_kind_reports_unreachable_target(hub, connect, kind) -> None:
    alice = connect("alice")
    bob = connect("bob")
    for c in (alice, bob):
        c.events.clear()

    hub.handle_frame(alice, _frame(kind, "dave"))

    assert alice.events == [{"event": "unreachable", "identity": "dave", "kind": kind.value}]
    assert bob.events == []
    assert hub.stats_manager.get("unreachable_sent") == 1


def test_forward_goes_to_latest_connection_only(hub, connect) -> None:
    alice = connect("alice")
    bob_old = connect("bob", "bob-old")
    bob_new = connect("bob", "bob-new")
    for c in (alice, bob_old, bob_new):
        c.events.clear()

    hub.handle_frame(alice, _frame(SignalKind.CALL_REQUEST, "bob"))

    assert len(bob_new.of("call-request")) == 1
    assert bob_old.of("call-request") == []


def test_superseded_connection_still_signals_as_its_identity(hub, connect) -> None:
    alice_old = connect("alice")
    connect("alice")
    bob = connect("bob")
    bob.events.clear()

    hub.handle_frame(alice_old, _frame(SignalKind.CALL_END, "bob"))
    assert bob.of("call-end")[0]["from"] == "alice"


def test_legacy_event_names_route_as_canonical_kinds(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    bob.events.clear()

    hub.handle_frame(alice, json.dumps({"event": "iceCandidate", "to": "bob", "candidate": None}))
    assert bob.events == [
        {"event": "connectivity-candidate", "from": "alice", "to": "bob", "candidate": None}
    ]


def test_legacy_event_names_can_be_disabled() -> None:
    hub = make_service(accept_legacy_events=False)
    alice = RecordingConnection()
    bob = RecordingConnection()
    hub.open_connection(alice, "alice")
    hub.open_connection(bob, "bob")
    alice.events.clear()
    bob.events.clear()

    hub.handle_frame(alice, json.dumps({"event": "videoCallRequest", "to": "bob"}))
    assert bob.events == []
    assert alice.last()["event"] == "error"


def test_cbor_frames_are_accepted(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    bob.events.clear()

    hub.handle_frame(alice, cbor2.dumps({"event": "call-end", "to": "bob"}))
    assert bob.events == [{"event": "call-end", "from": "alice", "to": "bob"}]


@pytest.mark.parametrize(
    "data",
    [
        "{broken",
        "[1, 2]",
        json.dumps({"to": "bob"}),
        json.dumps({"event": "call-end"}),
        json.dumps({"event": "negotiation-offer", "to": "bob"}),
        json.dumps({"event": "shutdown", "to": "bob"}),
    ],
)
def test_bad_frames_get_an_error_and_keep_the_connection(hub, connect, data) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.events.clear()
    bob.events.clear()

    hub.handle_frame(alice, data)

    assert len(alice.events) == 1
    assert alice.last()["event"] == "error"
    assert alice.last()["reason"].startswith("bad message")
    assert bob.events == []
    assert hub.registry.lookup("alice") is alice
    assert hub.stats_manager.get("frames_bad") == 1


def test_oversized_frame_is_refused() -> None:
    hub = make_service(max_frame_bytes=64)
    alice = RecordingConnection()
    hub.open_connection(alice, "alice")
    alice.events.clear()

    hub.handle_frame(alice, json.dumps({"event": "call-end", "to": "x" * 100}))
    assert alice.events == [{"event": "error", "reason": "frame too large"}]


def test_frame_size_limit_counts_utf8_bytes() -> None:
    hub = make_service(max_frame_bytes=64)
    alice = RecordingConnection()
    hub.open_connection(alice, "alice")
    alice.events.clear()

    # Under the limit in characters, over it in bytes.
    frame = json.dumps({"event": "call-end", "to": "\u00e9" * 30}, ensure_ascii=False)
    assert len(frame) <= 64 < len(frame.encode("utf-8"))

    hub.handle_frame(alice, frame)
    assert alice.events == [{"event": "error", "reason": "frame too large"}]
    assert hub.stats_manager.get("bytes_in") == len(frame.encode("utf-8"))


def test_rate_limit() -> None:
    hub = make_service(rate_limit_msgs_per_minute=3)
    alice = RecordingConnection()
    bob = RecordingConnection()
    hub.open_connection(alice, "alice")
    hub.open_connection(bob, "bob")
    alice.events.clear()
    bob.events.clear()

    for _ in range(5):
        hub.handle_frame(alice, json.dumps({"event": "call-end", "to": "bob"}))

    assert len(bob.of("call-end")) == 3
    assert alice.of("error") == [{"event": "error", "reason": "rate limited"}] * 2
    assert hub.stats_manager.get("rate_limited") == 2


def test_frames_from_unbound_connections_are_ignored(hub, connect) -> None:
    bob = connect("bob")
    bob.events.clear()
    stranger = RecordingConnection()

    hub.handle_frame(stranger, json.dumps({"event": "call-end", "to": "bob"}))
    assert bob.events == []
    assert stranger.events == []


def test_failed_delivery_is_reported_as_unreachable(hub, connect) -> None:
    alice = connect("alice")
    bob = RecordingConnection()
    hub.open_connection(bob, "bob")
    alice.events.clear()
    bob.accept = False

    hub.handle_frame(alice, _frame(SignalKind.NEGOTIATION_ANSWER, "bob"))

    assert alice.events == [
        {"event": "unreachable", "identity": "bob", "kind": "negotiation-answer"}
    ]
    assert hub.stats_manager.get("sends_dropped") == 1


def test_route_to_closed_target_is_unreachable(hub, connect) -> None:
    alice = connect("alice")
    bob = connect("bob")
    alice.events.clear()
    bob.closed = True

    hub.handle_frame(alice, _frame(SignalKind.CALL_REQUEST, "bob"))
    assert alice.events == [{"event": "unreachable", "identity": "bob", "kind": "call-request"}]

from __future__ import annotations

from dataclasses import replace
from typing import Any

import pytest

from sigrelay.config import RelayRuntimeConfig
from sigrelay.connection import Connection
from sigrelay.service import RelayService


class RecordingConnection(Connection):
    """Connection that keeps every event it is handed."""

    def __init__(self, conn_id: str | None = None, *, accept: bool = True) -> None:
        super().__init__(conn_id)
        self.events: list[dict[str, Any]] = []
        self.accept = accept

    def send(self, event: dict[str, Any]) -> bool:
        if self.closed or not self.accept:
            return False
        self.events.append(event)
        return True

    def of(self, name: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e.get("event") == name]

    def last(self) -> dict[str, Any]:
        return self.events[-1]


def make_service(**overrides: Any) -> RelayService:
    cfg = replace(RelayRuntimeConfig(), **overrides)
    svc = RelayService(cfg)
    svc.start()
    return svc


@pytest.fixture
def hub() -> RelayService:
    return make_service()


@pytest.fixture
def connect(hub: RelayService):
    def _connect(identity: str, conn_id: str | None = None) -> RecordingConnection:
        conn = RecordingConnection(conn_id)
        assert hub.open_connection(conn, identity) is None
        return conn

    return _connect

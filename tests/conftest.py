"""Shared test fixtures: in-memory connections, a controllable clock, a hub."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from signalmesh.errors import DeliveryError
from signalmesh.services import SignalingHub
from signalmesh.signaling.connection import ConnectionManager


class FakeConnection:
    """In-memory stand-in for a peer WebSocket."""

    def __init__(self, connection_id: str, *, broken: bool = False) -> None:
        self.connection_id = connection_id
        self.broken = broken
        self.sent: list[dict[str, Any]] = []

    async def send(self, message: dict[str, Any]) -> None:
        if self.broken:
            raise DeliveryError(self.connection_id, "link down")
        # Round-trip through JSON like the real transport does
        self.sent.append(json.loads(json.dumps(message)))

    def received(self, kind: str) -> list[dict[str, Any]]:
        """``data`` of every message of *kind* sent to this connection."""
        return [m["data"] for m in self.sent if m["type"] == kind]

    def clear(self) -> None:
        self.sent.clear()


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Peer:
    """A fake connection plus its manager, driven with JSON frames."""

    conn: FakeConnection
    manager: ConnectionManager

    async def send(self, kind: str, **data: Any) -> None:
        await self.manager.handle_text(json.dumps({"type": kind, "data": data}))

    async def register(
        self,
        device_id: str,
        *,
        capabilities: tuple[str, ...] = (),
        specializations: tuple[str, ...] = (),
        **extra: Any,
    ) -> None:
        await self.send(
            "register",
            device_id=device_id,
            peer_info={
                "capabilities": list(capabilities),
                "cluster_specializations": list(specializations),
                **extra,
            },
        )

    def errors(self) -> list[dict[str, Any]]:
        return self.conn.received("error")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hub(clock: FakeClock) -> SignalingHub:
    return SignalingHub(clock=clock)


@pytest.fixture
def connect(hub: SignalingHub) -> Callable[..., Peer]:
    """Factory: ``connect("a")`` opens a new fake session on the hub."""

    def _connect(name: str, *, broken: bool = False) -> Peer:
        conn = FakeConnection(name, broken=broken)
        return Peer(conn=conn, manager=hub.connect(conn))

    return _connect

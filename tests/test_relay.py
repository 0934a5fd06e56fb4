"""Tests for SignalRelay — addressed handshake forwarding."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from structlog.testing import capture_logs

from signalmesh.errors import NotRegistered, TargetUnreachable
from signalmesh.services import SignalingHub
from signalmesh.signaling.models import PeerStatus, SignalEnvelope
from tests.conftest import Peer

OFFER = {"type": "offer", "sdp": "v=0\r\no=- 4611731400430051336 2 IN IP4 127.0.0.1"}


class TestRelay:
    @pytest.mark.asyncio
    async def test_payload_delivered_unchanged(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        a = connect("a")
        b = connect("b")
        await a.register("A")
        await b.register("B")

        ok = await hub.relay.relay(SignalEnvelope("A", "B", OFFER))
        assert ok is True
        (signal,) = b.conn.received("webrtc_signal")
        assert signal["from_device_id"] == "A"
        assert signal["signaling_data"] == OFFER
        assert signal["payload"] == OFFER
        assert a.conn.received("webrtc_signal") == []

    @pytest.mark.asyncio
    async def test_unregistered_sender(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        await connect("b").register("B")
        with pytest.raises(NotRegistered):
            await hub.relay.relay(SignalEnvelope("A", "B", OFFER))

    @pytest.mark.asyncio
    async def test_unknown_target(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        await connect("a").register("A")
        with pytest.raises(TargetUnreachable):
            await hub.relay.relay(SignalEnvelope("A", "nobody", OFFER))

    @pytest.mark.asyncio
    async def test_offline_target(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        await connect("a").register("A")
        b = connect("b")
        await b.register("B")
        await b.manager.close()
        with pytest.raises(TargetUnreachable):
            await hub.relay.relay(SignalEnvelope("A", "B", OFFER))

    @pytest.mark.asyncio
    async def test_offline_target_status_logged(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        await connect("a").register("A")
        b = connect("b")
        await b.register("B")
        await b.manager.close()
        with capture_logs() as logs, pytest.raises(TargetUnreachable):
            await hub.relay.relay(SignalEnvelope("A", "B", OFFER))
        [entry] = [e for e in logs if e["event"] == "signal_target_unreachable"]
        assert entry["status"] == "offline"
        assert entry["target"] == "B"

    @pytest.mark.asyncio
    async def test_broken_target_is_demoted_silently(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        a = connect("a")
        b = connect("b")
        c = connect("c")
        await a.register("A")
        await b.register("B")
        await c.register("C")
        b.conn.broken = True
        a.conn.clear()

        ok = await hub.relay.relay(SignalEnvelope("A", "B", OFFER))
        assert ok is False
        assert await hub.registry.status_of("B") is PeerStatus.OFFLINE
        left = c.conn.received("peer_left")
        assert left == [{"device_id": "B", "total_peers": 2, "reason": "unreachable"}]
        # The sender learns about it only through the broadcast
        assert a.errors() == []
        assert a.conn.received("peer_left")[0]["device_id"] == "B"

    @pytest.mark.asyncio
    async def test_relay_counts_metric(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        await connect("a").register("A")
        await connect("b").register("B")
        await hub.relay.relay(SignalEnvelope("A", "B", {"type": "candidate"}))
        assert hub.metrics.counter("signals_relayed_total") == 1.0

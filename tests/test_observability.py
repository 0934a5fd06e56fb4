"""Tests for signalmesh.observability.metrics — metrics collection."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from signalmesh.observability.metrics import MetricsCollector
from signalmesh.services import SignalingHub
from tests.conftest import Peer


class TestMetricsCollector:
    def test_inc(self) -> None:
        mc = MetricsCollector()
        mc.inc("test_counter", 1.0)
        mc.inc("test_counter", 2.0)
        assert mc.counter("test_counter") == 3.0
        assert mc.counter("missing") == 0.0

    def test_set_gauge(self) -> None:
        mc = MetricsCollector()
        mc.set_gauge("peers_online", 4.0)
        d = mc.to_dict()
        assert d["gauges"] == {"peers_online": 4.0}

    def test_prometheus_format(self) -> None:
        mc = MetricsCollector()
        mc.inc("signals_relayed_total", 100.0)
        mc.inc("errors_SIG-E001_total")
        mc.set_gauge("peers_online", 5.0)
        text = mc.format_prometheus()
        assert "# TYPE signalmesh_signals_relayed_total counter" in text
        assert "signalmesh_signals_relayed_total 100.0" in text
        assert "signalmesh_errors_SIG_E001_total 1.0" in text
        assert "# TYPE signalmesh_peers_online gauge" in text
        assert text.endswith("\n")

    def test_to_dict(self) -> None:
        mc = MetricsCollector()
        mc.inc("a", 1.0)
        d = mc.to_dict()
        assert "counters" in d
        assert "gauges" in d
        assert "uptime_seconds" in d


class TestHubMetrics:
    @pytest.mark.asyncio
    async def test_traffic_is_counted(
        self, hub: SignalingHub, connect: Callable[..., Peer]
    ) -> None:
        a, b = connect("a"), connect("b")
        await a.register("A")
        await b.register("B")
        await a.send("heartbeat")
        await a.send("nonsense")
        await b.manager.close()

        m = hub.metrics
        assert m.counter("connections_total") == 2.0
        assert m.counter("messages_register_total") == 2.0
        assert m.counter("messages_heartbeat_total") == 1.0
        assert m.counter("errors_SIG_E002_total") == 1.0
        assert m.counter("peers_disconnected_total") == 1.0

        text = await hub.metrics_text()
        assert "signalmesh_peers_total 2.0" in text
        assert "signalmesh_peers_online 1.0" in text

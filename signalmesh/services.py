"""Service layer — wires the signaling components into one hub.

The API layer and the CLI only ever talk to :class:`SignalingHub`; the
hub owns the single :class:`PeerRegistry` every component shares.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from typing import Any

import psutil
import structlog

from signalmesh.config import Config
from signalmesh.observability.metrics import MetricsCollector
from signalmesh.signaling.broadcast import EventBroadcaster
from signalmesh.signaling.connection import ConnectionManager
from signalmesh.signaling.discovery import DiscoveryEngine
from signalmesh.signaling.heartbeat import HeartbeatMonitor
from signalmesh.signaling.registry import PeerRegistry
from signalmesh.signaling.relay import SignalRelay
from signalmesh.types import ConnectionLike

logger = structlog.get_logger()


class SignalingHub:
    """Shared state and components of one signaling server process."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or Config()
        self.metrics = MetricsCollector()
        self.registry = PeerRegistry(clock=clock)
        self.broadcaster = EventBroadcaster(self.registry, metrics=self.metrics)
        self.discovery = DiscoveryEngine(self.registry)
        self.relay = SignalRelay(self.registry, self.broadcaster, metrics=self.metrics)
        self.heartbeat = HeartbeatMonitor(
            self.registry,
            self.broadcaster,
            interval=self.config.heartbeat.sweep_interval,
            stale_after=self.config.heartbeat.stale_after,
            metrics=self.metrics,
        )
        self._started = time.monotonic()

    def connect(self, connection: ConnectionLike) -> ConnectionManager:
        """Create the manager for a freshly accepted connection."""
        self.metrics.inc("connections_total")
        return ConnectionManager(self, connection)

    async def start(self) -> None:
        self.heartbeat.start()

    async def stop(self) -> None:
        await self.heartbeat.stop()

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    async def stats(self) -> dict[str, Any]:
        """Aggregate status for the monitoring surface."""
        snapshot = await self.registry.stats()
        return {
            "total_peers": snapshot.total_peers,
            "online_peers": snapshot.online_peers,
            "server_uptime": round(self.uptime, 3),
            "memory_usage": _memory_usage(),
            "metrics": self.metrics.to_dict(),
            "peers": snapshot.peers,
        }

    async def metrics_text(self) -> str:
        total, online = await self.registry.counts()
        self.metrics.set_gauge("peers_total", float(total))
        self.metrics.set_gauge("peers_online", float(online))
        return self.metrics.format_prometheus()


def _memory_usage() -> dict[str, int]:
    """Resident and virtual memory of this process, in bytes."""
    mem = psutil.Process(os.getpid()).memory_info()
    return {"rss": mem.rss, "vms": mem.vms}

"""Periodic liveness sweep.

Runs independently of inbound traffic.  Each sweep demotes every online
peer whose ``last_seen`` is older than ``stale_after`` and tells the
remaining peers with ``peer_left(reason=timeout)`` before returning.
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog

from signalmesh.observability.metrics import MetricsCollector
from signalmesh.signaling.broadcast import EventBroadcaster, LeaveReason
from signalmesh.signaling.registry import PeerRegistry

logger = structlog.get_logger()

# ── Defaults ────────────────────────────────────────────────────────────

SWEEP_INTERVAL = 30.0  # seconds between sweeps
STALE_AFTER = 60.0  # two intervals: one missed heartbeat is tolerated


class HeartbeatMonitor:
    """Background task that evicts stale peers.

    Usage::

        monitor = HeartbeatMonitor(registry, broadcaster)
        monitor.start()
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        registry: PeerRegistry,
        broadcaster: EventBroadcaster,
        *,
        interval: float = SWEEP_INTERVAL,
        stale_after: float = STALE_AFTER,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._interval = interval
        self._stale_after = stale_after
        self._metrics = metrics
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> list[str]:
        """Run one sweep; return the ids demoted for timing out."""
        demotions = await self._registry.sweep(self._stale_after)
        for demotion in demotions:
            logger.info(
                "peer_timed_out",
                device_id=demotion.device_id,
                online=demotion.online_peers,
            )
            if self._metrics is not None:
                self._metrics.inc("peers_demoted_timeout_total")
            await self._broadcaster.announce_departure(demotion, LeaveReason.TIMEOUT)
        return [d.device_id for d in demotions]

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="heartbeat-monitor")
        logger.info(
            "heartbeat_monitor_started",
            interval=self._interval,
            stale_after=self._stale_after,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("heartbeat_monitor_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("heartbeat_sweep_failed")

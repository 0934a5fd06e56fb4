"""Event fan-out to every online peer.

Each pass is two-phase: the recipient list is snapshotted from the
registry, then delivered to outside the registry lock.  Recipients whose
send fails are demoted as a batch once the pass is over, and each
demotion queues one follow-up ``peer_left`` pass.  A follow-up never
includes a peer that is already offline, and every follow-up shrinks
the online set, so the queue always drains.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from signalmesh.errors import DeliveryError
from signalmesh.observability.metrics import MetricsCollector
from signalmesh.signaling.protocol import EventKind, make_message
from signalmesh.signaling.registry import Demotion, PeerRegistry
from signalmesh.types import ConnectionLike

logger = structlog.get_logger()


class LeaveReason(StrEnum):
    """Why a peer went offline, as reported in ``peer_left``."""

    DISCONNECT = "disconnect"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    REPLACED = "replaced"


# ── Event builders ──────────────────────────────────────────────────


def peer_joined_event(record: dict[str, Any], total_peers: int) -> dict[str, Any]:
    return make_message(
        EventKind.PEER_JOINED,
        {
            "device_id": record["device_id"],
            "peer_info": record,
            "total_peers": total_peers,
        },
    )


def peer_left_event(
    device_id: str,
    online_peers: int,
    reason: LeaveReason | None = None,
) -> dict[str, Any]:
    data: dict[str, Any] = {"device_id": device_id, "total_peers": online_peers}
    if reason is not None:
        data["reason"] = reason.value
    return make_message(EventKind.PEER_LEFT, data)


def peer_updated_event(record: dict[str, Any]) -> dict[str, Any]:
    return make_message(
        EventKind.PEER_UPDATED,
        {
            "device_id": record["device_id"],
            "capabilities": record["capabilities"],
            "specializations": record["specializations"],
            "resources": record["resources"],
        },
    )


@dataclass(frozen=True)
class BroadcastResult:
    delivered: int
    demoted: tuple[str, ...] = ()


class EventBroadcaster:
    """Delivers events to all online peers except an excluded connection."""

    def __init__(
        self,
        registry: PeerRegistry,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._registry = registry
        self._metrics = metrics

    async def broadcast(
        self,
        excluded: ConnectionLike | None,
        event: dict[str, Any],
    ) -> BroadcastResult:
        """Send *event* to every online peer whose connection is not *excluded*.

        A failed delivery never stops delivery to the remaining
        recipients; it demotes the failing peer instead.
        """
        pending: deque[tuple[ConnectionLike | None, dict[str, Any]]] = deque(
            [(excluded, event)]
        )
        delivered = 0
        demoted: list[str] = []

        while pending:
            exclude, message = pending.popleft()
            recipients = await self._registry.online_snapshot(exclude=exclude)

            failed: list[tuple[str, ConnectionLike]] = []
            for device_id, conn in recipients:
                try:
                    await conn.send(message)
                except DeliveryError as exc:
                    logger.warning(
                        "broadcast_delivery_failed",
                        device_id=device_id,
                        event=message.get("type"),
                        reason=exc.reason,
                    )
                    failed.append((device_id, conn))
                else:
                    delivered += 1

            batch: list[Demotion] = []
            for device_id, conn in failed:
                demotion = await self._registry.deregister(device_id, connection=conn)
                if demotion is None:
                    continue
                demoted.append(device_id)
                batch.append(demotion)
                self._count("peers_demoted_unreachable_total")
            if batch:
                _, online = await self._registry.counts()
                pending.extend(
                    (
                        demotion.connection,
                        peer_left_event(
                            demotion.device_id, online, LeaveReason.UNREACHABLE
                        ),
                    )
                    for demotion in batch
                )

        self._count("broadcast_deliveries_total", delivered)
        return BroadcastResult(delivered=delivered, demoted=tuple(demoted))

    async def announce_departure(
        self,
        demotion: Demotion,
        reason: LeaveReason,
    ) -> BroadcastResult:
        """Broadcast ``peer_left`` for a demotion that already happened."""
        return await self.broadcast(
            demotion.connection,
            peer_left_event(demotion.device_id, demotion.online_peers, reason),
        )

    def _count(self, name: str, value: float = 1.0) -> None:
        if self._metrics is not None and value:
            self._metrics.inc(name, value)

"""Single-hop relay of WebRTC handshake envelopes.

The relay resolves the target's live connection and forwards the payload
untouched.  It does not wait for the target to acknowledge anything: if
the send itself fails, the target is demoted and announced as gone, but
the sender has already been told the relay succeeded.
"""

from __future__ import annotations

from typing import Any

import structlog

from signalmesh.errors import DeliveryError, NotRegistered, TargetUnreachable
from signalmesh.observability.metrics import MetricsCollector
from signalmesh.signaling.broadcast import EventBroadcaster, LeaveReason
from signalmesh.signaling.models import SignalEnvelope
from signalmesh.signaling.protocol import EventKind, make_message
from signalmesh.signaling.registry import PeerRegistry

logger = structlog.get_logger()


def _signal_kind(payload: Any) -> str:
    """Best-effort label (offer/answer/candidate) for logs only."""
    if isinstance(payload, dict):
        kind = payload.get("type")
        if isinstance(kind, str):
            return kind[:32]
    return "unknown"


class SignalRelay:
    """Forwards :class:`SignalEnvelope` objects between online peers."""

    def __init__(
        self,
        registry: PeerRegistry,
        broadcaster: EventBroadcaster,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._metrics = metrics

    async def relay(self, envelope: SignalEnvelope) -> bool:
        """Deliver *envelope* to its target as a ``webrtc_signal``.

        Returns:
            ``True`` if the frame reached the target's transport,
            ``False`` if the target turned out to be dead (and was demoted).

        Raises:
            NotRegistered: the sender has no live binding.
            TargetUnreachable: the target has no record or is offline.
        """
        if await self._registry.resolve(envelope.from_device_id) is None:
            raise NotRegistered()
        target = await self._registry.resolve(envelope.to_device_id)
        if target is None:
            status = await self._registry.status_of(envelope.to_device_id)
            logger.info(
                "signal_target_unreachable",
                source=envelope.from_device_id,
                target=envelope.to_device_id,
                status=status.value if status is not None else "unknown",
            )
            raise TargetUnreachable(envelope.to_device_id)

        message = make_message(
            EventKind.WEBRTC_SIGNAL,
            {
                "from_device_id": envelope.from_device_id,
                "signaling_data": envelope.payload,
                "payload": envelope.payload,
            },
        )

        try:
            await target.send(message)
        except DeliveryError as exc:
            logger.warning(
                "signal_delivery_failed",
                source=envelope.from_device_id,
                target=envelope.to_device_id,
                reason=exc.reason,
            )
            demotion = await self._registry.deregister(
                envelope.to_device_id, connection=target
            )
            if demotion is not None:
                if self._metrics is not None:
                    self._metrics.inc("peers_demoted_unreachable_total")
                await self._broadcaster.announce_departure(
                    demotion, LeaveReason.UNREACHABLE
                )
            return False

        if self._metrics is not None:
            self._metrics.inc("signals_relayed_total")
        logger.info(
            "signal_relayed",
            kind=_signal_kind(envelope.payload),
            source=envelope.from_device_id,
            target=envelope.to_device_id,
        )
        return True

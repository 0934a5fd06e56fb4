"""Peer records, discovery filters and signal envelopes.

A :class:`PeerRecord` moves between exactly two states::

    ONLINE  --(disconnect | timeout | delivery failure)-->  OFFLINE
    OFFLINE --(re-register | heartbeat after timeout)-->     ONLINE

Records are never deleted while the server runs, so a peer that drops
off keeps its history and can come back under the same ``device_id``.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from signalmesh.errors import InvalidTransition, MalformedMessage


class PeerStatus(StrEnum):
    """Liveness state of a registered peer."""

    ONLINE = "online"
    OFFLINE = "offline"


_TRANSITIONS: frozenset[tuple[PeerStatus, PeerStatus]] = frozenset(
    {
        (PeerStatus.ONLINE, PeerStatus.OFFLINE),
        (PeerStatus.OFFLINE, PeerStatus.ONLINE),
    }
)


def check_transition(current: PeerStatus, target: PeerStatus) -> None:
    """Raise :class:`InvalidTransition` unless *current* → *target* is allowed."""
    if (current, target) not in _TRANSITIONS:
        raise InvalidTransition(f"{current.value} -> {target.value}")


def to_millis(ts: float) -> int:
    """Convert an epoch timestamp in seconds to integer milliseconds."""
    return int(ts * 1000)


def now_millis() -> int:
    return to_millis(time.time())


# Keys a peer may use in ``peer_info`` for its declared fields.  The
# ``cluster_*`` / ``available_*`` spellings come from the browser client.
_CAPABILITY_KEYS = ("capabilities",)
_SPECIALIZATION_KEYS = ("specializations", "cluster_specializations")
_RESOURCE_KEYS = ("resources", "available_resources")
_RESERVED_KEYS = frozenset(
    {
        "device_id",
        "status",
        "registered_at",
        "last_seen",
        *_CAPABILITY_KEYS,
        *_SPECIALIZATION_KEYS,
        *_RESOURCE_KEYS,
    }
)


def parse_string_set(value: object, name: str) -> frozenset[str]:
    """Parse a JSON list of strings into a frozenset.

    ``None`` yields an empty set; anything else that is not a list of
    strings is a :class:`MalformedMessage`.
    """
    if value is None:
        return frozenset()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedMessage(f"{name} must be a list of strings")
    return frozenset(value)


def parse_resources(value: object) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedMessage("resources must be an object")
    return dict(value)


def _first_present(info: Mapping[str, Any], keys: Iterable[str]) -> object:
    for key in keys:
        if key in info:
            return info[key]
    return None


@dataclass(frozen=True)
class PeerInfo:
    """What a peer declares about itself when registering."""

    capabilities: frozenset[str] = frozenset()
    specializations: frozenset[str] = frozenset()
    resources: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, peer_info: object) -> PeerInfo:
        """Parse the ``peer_info`` object of a ``register`` message."""
        if not isinstance(peer_info, dict):
            raise MalformedMessage("peer_info must be an object")
        return cls(
            capabilities=parse_string_set(
                _first_present(peer_info, _CAPABILITY_KEYS), "capabilities"
            ),
            specializations=parse_string_set(
                _first_present(peer_info, _SPECIALIZATION_KEYS), "specializations"
            ),
            resources=parse_resources(_first_present(peer_info, _RESOURCE_KEYS)),
            extra={k: v for k, v in peer_info.items() if k not in _RESERVED_KEYS},
        )


@dataclass
class PeerRecord:
    """Registry entry for one ``device_id``.

    Mutated only by :class:`~signalmesh.signaling.registry.PeerRegistry`;
    everything else works on :meth:`public_fields` snapshots.
    """

    device_id: str
    capabilities: frozenset[str]
    specializations: frozenset[str]
    resources: dict[str, Any]
    info: dict[str, Any]
    registered_at: float
    last_seen: float
    status: PeerStatus = PeerStatus.ONLINE

    @property
    def is_online(self) -> bool:
        return self.status is PeerStatus.ONLINE

    def transition(self, target: PeerStatus) -> None:
        check_transition(self.status, target)
        self.status = target

    def public_fields(self) -> dict[str, Any]:
        """Fields safe to share with other peers (never the connection)."""
        specializations = sorted(self.specializations)
        return {
            **self.info,
            "device_id": self.device_id,
            "capabilities": sorted(self.capabilities),
            "specializations": specializations,
            "cluster_specializations": specializations,
            "resources": dict(self.resources),
            "available_resources": dict(self.resources),
            "registered_at": to_millis(self.registered_at),
            "last_seen": to_millis(self.last_seen),
            "status": self.status.value,
        }

    def summary(self) -> dict[str, Any]:
        """Compact view for the monitoring surface."""
        return {
            "device_id": self.device_id,
            "capabilities": sorted(self.capabilities),
            "specializations": sorted(self.specializations),
            "last_seen": to_millis(self.last_seen),
        }


@dataclass(frozen=True)
class DiscoveryFilter:
    """Requester-supplied discovery constraints.

    ``required_capabilities`` are AND-ed, ``specializations`` are OR-ed.
    ``min_reputation`` is accepted for wire compatibility but not enforced:
    there is no reputation score in the registry to compare against.
    """

    required_capabilities: frozenset[str] = frozenset()
    specializations: frozenset[str] = frozenset()
    min_reputation: float | None = None

    @classmethod
    def from_payload(cls, filters: object) -> DiscoveryFilter:
        if filters is None:
            return cls()
        if not isinstance(filters, dict):
            raise MalformedMessage("filters must be an object")
        min_rep = filters.get("min_reputation")
        if min_rep is not None and (
            isinstance(min_rep, bool) or not isinstance(min_rep, (int, float))
        ):
            raise MalformedMessage("min_reputation must be a number")
        return cls(
            required_capabilities=parse_string_set(
                filters.get("required_capabilities"), "required_capabilities"
            ),
            specializations=parse_string_set(
                filters.get("specializations"), "specializations"
            ),
            min_reputation=float(min_rep) if min_rep is not None else None,
        )

    def matches(self, record: PeerRecord) -> bool:
        if not self.required_capabilities <= record.capabilities:
            return False
        if self.specializations and not (
            self.specializations & record.specializations
        ):
            return False
        return True


@dataclass(frozen=True)
class SignalEnvelope:
    """One addressed handshake message; ``payload`` is never inspected."""

    from_device_id: str
    to_device_id: str
    payload: Any

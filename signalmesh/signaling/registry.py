"""Peer registry — the single source of truth for peer liveness.

Maps ``device_id`` → :class:`PeerRecord` plus the live connection bound to
each online record.  Every operation that reads or writes more than one
field runs under one ``asyncio.Lock``, so request handlers and the
heartbeat sweep never observe a record mid-transition.

Only this module changes a record's status or connection binding.
Callers get copies or public-field snapshots, never the underlying dicts.

Usage::

    registry = PeerRegistry()
    reg = await registry.register(conn, "device-a", PeerInfo())
    await registry.touch("device-a", conn)
    demotion = await registry.release(conn)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import replace as dc_replace
from typing import Any

import structlog

from signalmesh.errors import MalformedMessage, NotRegistered
from signalmesh.signaling.models import PeerInfo, PeerRecord, PeerStatus
from signalmesh.types import ConnectionLike

logger = structlog.get_logger()


@dataclass(frozen=True)
class Demotion:
    """An Online → Offline transition that just happened."""

    device_id: str
    connection: ConnectionLike
    online_peers: int  # online count after the demotion


@dataclass(frozen=True)
class Registration:
    """Outcome of :meth:`PeerRegistry.register`."""

    record: dict[str, Any]  # public fields
    total_peers: int
    online_peers: int
    created: bool
    # Identity this connection held before switching to a new device_id
    released: Demotion | None = None
    # Older connection that was bound to the same device_id
    displaced: ConnectionLike | None = None


@dataclass(frozen=True)
class RegistryStats:
    total_peers: int
    online_peers: int
    peers: list[dict[str, Any]]


class PeerRegistry:
    """Lock-serialised ``device_id`` → record table with connection bindings."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._records: dict[str, PeerRecord] = {}
        self._bindings: dict[str, ConnectionLike] = {}
        self._identities: dict[ConnectionLike, str] = {}
        # Links whose identity was timed out by a sweep but are still open
        self._lapsed: dict[ConnectionLike, str] = {}

    def now(self) -> float:
        return self._clock()

    # ── Mutations ───────────────────────────────────────────────────

    async def register(
        self,
        connection: ConnectionLike,
        device_id: str,
        info: PeerInfo,
    ) -> Registration:
        """Create or reactivate *device_id* and bind it to *connection*.

        Raises:
            MalformedMessage: *device_id* is not a non-empty string.
        """
        if not isinstance(device_id, str) or not device_id:
            raise MalformedMessage("device_id must be a non-empty string")

        async with self._lock:
            now = self._clock()

            self._forget_lapsed(device_id)
            self._lapsed.pop(connection, None)

            released: Demotion | None = None
            previous_id = self._identities.get(connection)
            if previous_id is not None and previous_id != device_id:
                released = self._demote(previous_id)

            displaced = self._bindings.get(device_id)
            if displaced is connection:
                displaced = None
            elif displaced is not None:
                self._identities.pop(displaced, None)

            record = self._records.get(device_id)
            created = record is None
            if record is None:
                record = PeerRecord(
                    device_id=device_id,
                    capabilities=info.capabilities,
                    specializations=info.specializations,
                    resources=dict(info.resources),
                    info=dict(info.extra),
                    registered_at=now,
                    last_seen=now,
                )
                self._records[device_id] = record
            else:
                if not record.is_online:
                    record.transition(PeerStatus.ONLINE)
                record.capabilities = info.capabilities
                record.specializations = info.specializations
                record.resources = dict(info.resources)
                record.info = dict(info.extra)
                record.last_seen = now

            self._bindings[device_id] = connection
            self._identities[connection] = device_id

            return Registration(
                record=record.public_fields(),
                total_peers=len(self._records),
                online_peers=len(self._bindings),
                created=created,
                released=released,
                displaced=displaced,
            )

    async def update_capabilities(
        self,
        connection: ConnectionLike,
        capabilities: frozenset[str],
        specializations: frozenset[str],
        resources: dict[str, Any],
    ) -> dict[str, Any]:
        """Overwrite the declared fields of the identity bound to *connection*.

        Raises:
            NotRegistered: *connection* has no live binding.
        """
        async with self._lock:
            record = self._bound_record(connection)
            record.capabilities = capabilities
            record.specializations = specializations
            record.resources = dict(resources)
            return record.public_fields()

    async def touch(
        self,
        device_id: str,
        connection: ConnectionLike | None = None,
    ) -> Registration | None:
        """Refresh ``last_seen`` and ensure the record is Online.

        A record demoted by :meth:`sweep` comes back Online when
        *connection* is the link it was bound to when it timed out; the
        link is rebound and the revival returned so the caller can
        announce it.

        Returns:
            The revival, or ``None`` if the record was already Online.

        Raises:
            NotRegistered: no record; the record is bound to a different
                connection; or it is Offline and *connection* is not its
                lapsed link.
        """
        async with self._lock:
            record = self._records.get(device_id)
            if record is None:
                raise NotRegistered()
            bound = self._bindings.get(device_id)
            if bound is not None:
                if connection is not None and bound is not connection:
                    raise NotRegistered()
                record.last_seen = self._clock()
                return None
            if connection is None or self._lapsed.get(connection) != device_id:
                raise NotRegistered()

            del self._lapsed[connection]
            record.transition(PeerStatus.ONLINE)
            record.last_seen = self._clock()
            self._bindings[device_id] = connection
            self._identities[connection] = device_id
            return Registration(
                record=record.public_fields(),
                total_peers=len(self._records),
                online_peers=len(self._bindings),
                created=False,
            )

    async def refresh(self, connection: ConnectionLike) -> str | None:
        """Refresh ``last_seen`` for whatever identity *connection* holds."""
        async with self._lock:
            device_id = self._identities.get(connection)
            if device_id is not None:
                self._records[device_id].last_seen = self._clock()
            return device_id

    async def deregister(
        self,
        device_id: str,
        connection: ConnectionLike | None = None,
    ) -> Demotion | None:
        """Mark *device_id* Offline and clear its binding.

        Idempotent.  When *connection* is given the record is only demoted
        if it is still bound to that connection, so a stale link cannot
        knock out a peer that has since re-registered elsewhere.

        Returns:
            The transition, or ``None`` if nothing changed.
        """
        async with self._lock:
            if device_id not in self._bindings:
                return None
            if connection is not None and self._bindings[device_id] is not connection:
                return None
            return self._demote(device_id)

    async def release(self, connection: ConnectionLike) -> Demotion | None:
        """Deregister the identity bound to *connection* (transport closed)."""
        async with self._lock:
            self._lapsed.pop(connection, None)
            device_id = self._identities.get(connection)
            if device_id is None:
                return None
            return self._demote(device_id)

    async def sweep(self, stale_after: float) -> list[Demotion]:
        """Demote every online record whose ``last_seen`` is too old.

        Each demoted link is remembered so a late heartbeat on it can
        revive the record (see :meth:`touch`).  Every returned demotion
        carries the online count after the whole batch.
        """
        async with self._lock:
            now = self._clock()
            stale = [
                device_id
                for device_id in self._bindings
                if now - self._records[device_id].last_seen > stale_after
            ]
            demotions = [self._demote(device_id) for device_id in stale]
            for demotion in demotions:
                self._lapsed[demotion.connection] = demotion.device_id
            online = len(self._bindings)
            return [dc_replace(d, online_peers=online) for d in demotions]

    # ── Reads ───────────────────────────────────────────────────────

    async def identity_of(self, connection: ConnectionLike) -> str | None:
        async with self._lock:
            return self._identities.get(connection)

    async def require_identity(
        self,
        connection: ConnectionLike,
        *,
        include_lapsed: bool = False,
    ) -> str:
        """Return the identity bound to *connection* or raise NotRegistered.

        With *include_lapsed*, an identity timed out on this connection by
        :meth:`sweep` also counts.
        """
        async with self._lock:
            device_id = self._identities.get(connection)
            if device_id is None and include_lapsed:
                device_id = self._lapsed.get(connection)
            if device_id is None:
                raise NotRegistered()
            return device_id

    async def resolve(self, device_id: str) -> ConnectionLike | None:
        """Connection bound to *device_id*, or ``None`` if absent/offline."""
        async with self._lock:
            return self._bindings.get(device_id)

    async def get(self, device_id: str) -> dict[str, Any] | None:
        async with self._lock:
            record = self._records.get(device_id)
            return record.public_fields() if record is not None else None

    async def status_of(self, device_id: str) -> PeerStatus | None:
        async with self._lock:
            record = self._records.get(device_id)
            return record.status if record is not None else None

    async def visible_to(self, device_id: str) -> list[PeerRecord]:
        """Copies of every online record except *device_id*.

        Raises:
            NotRegistered: *device_id* itself is not online.
        """
        async with self._lock:
            if device_id not in self._bindings:
                raise NotRegistered()
            return [
                dc_replace(record)
                for peer_id, record in self._records.items()
                if peer_id != device_id and record.is_online
            ]

    async def online_snapshot(
        self,
        exclude: ConnectionLike | None = None,
    ) -> list[tuple[str, ConnectionLike]]:
        """``(device_id, connection)`` for every online record but *exclude*."""
        async with self._lock:
            return [
                (device_id, conn)
                for device_id, conn in self._bindings.items()
                if conn is not exclude
            ]

    async def counts(self) -> tuple[int, int]:
        """``(total records, online records)``."""
        async with self._lock:
            return len(self._records), len(self._bindings)

    async def stats(self) -> RegistryStats:
        async with self._lock:
            return RegistryStats(
                total_peers=len(self._records),
                online_peers=len(self._bindings),
                peers=[
                    record.summary()
                    for record in self._records.values()
                    if record.is_online
                ],
            )

    # ── Internals (lock held) ───────────────────────────────────────

    def _bound_record(self, connection: ConnectionLike) -> PeerRecord:
        device_id = self._identities.get(connection)
        if device_id is None:
            raise NotRegistered()
        return self._records[device_id]

    def _forget_lapsed(self, device_id: str) -> None:
        stale_links = [c for c, d in self._lapsed.items() if d == device_id]
        for conn in stale_links:
            del self._lapsed[conn]

    def _demote(self, device_id: str) -> Demotion:
        record = self._records[device_id]
        record.transition(PeerStatus.OFFLINE)
        connection = self._bindings.pop(device_id)
        self._identities.pop(connection, None)
        return Demotion(
            device_id=device_id,
            connection=connection,
            online_peers=len(self._bindings),
        )

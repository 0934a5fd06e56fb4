"""Filter-based peer discovery.

Read-only over the registry: a discovery scan never changes a record.
"""

from __future__ import annotations

from typing import Any

import structlog

from signalmesh.signaling.models import DiscoveryFilter
from signalmesh.signaling.registry import PeerRegistry

logger = structlog.get_logger()


class DiscoveryEngine:
    """Matches online peers against a requester's :class:`DiscoveryFilter`."""

    def __init__(self, registry: PeerRegistry) -> None:
        self._registry = registry

    async def find(
        self,
        requester_id: str,
        discovery_filter: DiscoveryFilter | None = None,
    ) -> list[dict[str, Any]]:
        """Public fields of every other online peer matching the filter.

        Results follow registry iteration order.  An empty filter matches
        every other online peer.

        Raises:
            NotRegistered: *requester_id* has no live binding.
        """
        flt = discovery_filter or DiscoveryFilter()
        candidates = await self._registry.visible_to(requester_id)
        matches = [rec.public_fields() for rec in candidates if flt.matches(rec)]
        logger.info(
            "discovery_request",
            requester=requester_id,
            scanned=len(candidates),
            found=len(matches),
        )
        return matches

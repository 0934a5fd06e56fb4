"""Shared Protocol types for SignalMesh.

Defines structural interfaces (PEP 544 Protocols) so the registry,
relay and broadcaster depend on a send contract rather than on
Starlette's ``WebSocket``.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

# ── Connection protocol ────────────────────────────────────────────


@runtime_checkable
class ConnectionLike(Protocol):
    """Structural interface for one peer transport session.

    Satisfied by :class:`signalmesh.signaling.connection.PeerConnection`
    and by in-memory test doubles.  Identity is object identity; the
    registry keys bindings on the connection object itself.
    """

    @property
    def connection_id(self) -> str: ...  # noqa: D102

    async def send(self, message: dict[str, Any]) -> None:
        """Deliver one message.

        Raises:
            DeliveryError: the underlying transport is closed or broken.
        """
        ...

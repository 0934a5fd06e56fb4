"""Per-connection message handling.

:class:`PeerConnection` adapts a Starlette ``WebSocket`` to the
:class:`~signalmesh.types.ConnectionLike` send contract.
:class:`ConnectionManager` owns one session: it decodes frames,
dispatches them by ``type``, reports protocol errors back to the sender,
and on close releases the bound identity before anything else can see
it as online.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from signalmesh.errors import (
    DeliveryError,
    InternalError,
    MalformedMessage,
    SignalingError,
    UnknownMessageKind,
)
from signalmesh.signaling.broadcast import (
    LeaveReason,
    peer_joined_event,
    peer_updated_event,
)
from signalmesh.signaling.models import (
    DiscoveryFilter,
    PeerInfo,
    SignalEnvelope,
    now_millis,
    parse_resources,
    parse_string_set,
)
from signalmesh.signaling.protocol import (
    EventKind,
    InboundMessage,
    MessageKind,
    decode_frame,
    encode_frame,
    make_message,
    require_str,
)
from signalmesh.types import ConnectionLike

if TYPE_CHECKING:
    from signalmesh.services import SignalingHub

logger = structlog.get_logger()

T = TypeVar("T")


class PeerConnection:
    """One WebSocket session with serialised sends."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._ws = websocket
        self._id = connection_id or uuid.uuid4().hex[:12]
        self._send_lock = asyncio.Lock()
        client = websocket.client
        self.remote = f"{client.host}:{client.port}" if client else "unknown"

    @property
    def connection_id(self) -> str:
        return self._id

    async def send(self, message: dict[str, Any]) -> None:
        frame = encode_frame(message)
        async with self._send_lock:
            if (
                self._ws.application_state != WebSocketState.CONNECTED
                or self._ws.client_state != WebSocketState.CONNECTED
            ):
                raise DeliveryError(self._id, "connection closed")
            try:
                await self._ws.send_text(frame)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                raise DeliveryError(self._id, str(exc) or type(exc).__name__) from exc

    def __repr__(self) -> str:
        return f"PeerConnection(id={self._id!r}, remote={self.remote!r})"


Handler = Callable[[dict[str, Any]], Awaitable[None]]


class ConnectionManager:
    """Lifecycle and dispatch for a single peer connection."""

    def __init__(self, hub: SignalingHub, connection: ConnectionLike) -> None:
        self._hub = hub
        self._conn = connection
        self._closed = False
        self._handlers: dict[str, Handler] = {
            MessageKind.REGISTER: self._on_register,
            MessageKind.DISCOVER: self._on_discover,
            MessageKind.SIGNAL: self._on_signal,
            MessageKind.ANNOUNCE_CAPABILITY: self._on_announce_capability,
            MessageKind.HEARTBEAT: self._on_heartbeat,
        }

    @property
    def connection(self) -> ConnectionLike:
        return self._conn

    # ── Inbound frames ──────────────────────────────────────────────

    async def handle_text(self, text: str) -> None:
        """Process one text frame; errors go back to the sender."""
        await self._guarded(self._decode_and_dispatch, text)

    async def handle_bytes(self, data: bytes) -> None:
        """Binary frames are not part of the protocol."""

        async def _reject(_: bytes) -> None:
            raise MalformedMessage("Binary frames are not supported; send JSON text")

        await self._guarded(_reject, data)

    async def dispatch(self, message: InboundMessage) -> None:
        """Route a decoded message to its handler.

        Raises:
            UnknownMessageKind: ``message.kind`` has no handler.
        """
        metrics = self._hub.metrics
        # Any traffic from a bound identity counts as a sign of life
        if message.kind != MessageKind.REGISTER:
            await self._hub.registry.refresh(self._conn)

        handler = self._handlers.get(message.kind)
        if handler is None:
            logger.warning(
                "unknown_message_type",
                kind=message.kind[:64],
                connection=self._conn.connection_id,
            )
            raise UnknownMessageKind(message.kind[:64])
        metrics.inc(f"messages_{message.kind}_total")
        await handler(message.data)

    # ── Close ───────────────────────────────────────────────────────

    async def close(self) -> None:
        """Release the bound identity and announce the departure.

        Idempotent; runs once per connection.
        """
        if self._closed:
            return
        self._closed = True
        demotion = await self._hub.registry.release(self._conn)
        if demotion is None:
            logger.debug("connection_closed", connection=self._conn.connection_id)
            return
        logger.info(
            "peer_disconnected",
            device_id=demotion.device_id,
            online=demotion.online_peers,
        )
        self._hub.metrics.inc("peers_disconnected_total")
        await self._hub.broadcaster.announce_departure(
            demotion, LeaveReason.DISCONNECT
        )

    # ── Handlers ────────────────────────────────────────────────────

    async def _on_register(self, data: dict[str, Any]) -> None:
        device_id = data.get("device_id")
        peer_info = data.get("peer_info")
        if not isinstance(device_id, str) or not device_id or peer_info is None:
            raise MalformedMessage("Missing device_id or peer_info")
        info = PeerInfo.from_payload(peer_info)

        hub = self._hub
        reg = await hub.registry.register(self._conn, device_id, info)
        logger.info(
            "peer_registered",
            device_id=device_id,
            new=reg.created,
            total=reg.total_peers,
            online=reg.online_peers,
        )

        if reg.displaced is not None:
            logger.info(
                "peer_rebound",
                device_id=device_id,
                previous=reg.displaced.connection_id,
                current=self._conn.connection_id,
            )
        if reg.released is not None:
            await hub.broadcaster.announce_departure(reg.released, LeaveReason.REPLACED)

        await self._reply(
            make_message(
                EventKind.REGISTERED,
                {
                    "device_id": device_id,
                    "server_time": now_millis(),
                    "peer_count": reg.total_peers,
                },
            )
        )
        await hub.broadcaster.broadcast(
            self._conn, peer_joined_event(reg.record, reg.total_peers)
        )

    async def _on_discover(self, data: dict[str, Any]) -> None:
        flt = DiscoveryFilter.from_payload(data.get("filters"))
        requester = await self._hub.registry.require_identity(self._conn)
        peers = await self._hub.discovery.find(requester, flt)
        await self._reply(
            make_message(
                EventKind.DISCOVERY_RESULT,
                {
                    "peers": peers,
                    "total_found": len(peers),
                    "timestamp": now_millis(),
                },
            )
        )

    async def _on_signal(self, data: dict[str, Any]) -> None:
        target = require_str(data, "target_device_id")
        if "signaling_data" not in data:
            raise MalformedMessage("Missing 'signaling_data'")
        source = await self._hub.registry.require_identity(self._conn)
        await self._hub.relay.relay(
            SignalEnvelope(
                from_device_id=source,
                to_device_id=target,
                payload=data["signaling_data"],
            )
        )

    async def _on_announce_capability(self, data: dict[str, Any]) -> None:
        capabilities = parse_string_set(data.get("capabilities"), "capabilities")
        specializations = parse_string_set(
            data.get("specializations"), "specializations"
        )
        resources = parse_resources(data.get("resources"))

        hub = self._hub
        record = await hub.registry.update_capabilities(
            self._conn, capabilities, specializations, resources
        )
        logger.info(
            "capabilities_updated",
            device_id=record["device_id"],
            capabilities=record["capabilities"],
        )
        await self._reply(
            make_message(
                EventKind.CAPABILITY_UPDATED,
                {"device_id": record["device_id"], "server_time": now_millis()},
            )
        )
        await hub.broadcaster.broadcast(self._conn, peer_updated_event(record))

    async def _on_heartbeat(self, data: dict[str, Any]) -> None:
        hub = self._hub
        registry = hub.registry
        device_id = await registry.require_identity(self._conn, include_lapsed=True)
        revived = await registry.touch(device_id, self._conn)
        if revived is not None:
            logger.info(
                "peer_revived",
                device_id=device_id,
                online=revived.online_peers,
            )
            hub.metrics.inc("peers_revived_total")
        total, online = await registry.counts()
        await self._reply(
            make_message(
                EventKind.HEARTBEAT_ACK,
                {
                    "server_time": now_millis(),
                    "peer_count": total,
                    "online_count": online,
                },
            )
        )
        if revived is not None:
            await hub.broadcaster.broadcast(
                self._conn, peer_joined_event(revived.record, revived.total_peers)
            )

    # ── Helpers ─────────────────────────────────────────────────────

    async def _decode_and_dispatch(self, text: str) -> None:
        message = decode_frame(text, max_size=self._hub.config.server.max_message_bytes)
        await self.dispatch(message)

    async def _guarded(self, fn: Callable[[T], Awaitable[None]], arg: T) -> None:
        try:
            await fn(arg)
        except SignalingError as exc:
            self._hub.metrics.inc(f"errors_{exc.code}_total")
            logger.warning(
                "signaling_error",
                code=exc.code,
                detail=exc.detail,
                connection=self._conn.connection_id,
                device_id=await self._hub.registry.identity_of(self._conn),
            )
            await self._reply(exc.to_message())
        except Exception:
            self._hub.metrics.inc("errors_internal_total")
            logger.exception("message_handler_failed", connection=self._conn.connection_id)
            await self._reply(InternalError().to_message())

    async def _reply(self, message: dict[str, Any]) -> None:
        try:
            await self._conn.send(message)
        except DeliveryError as exc:
            # The receive loop sees the close and runs close()
            logger.debug(
                "reply_dropped",
                connection=self._conn.connection_id,
                reason=exc.reason,
            )

"""Signaling server — FastAPI app with the peer WebSocket and status endpoints.

Endpoints:
    WS   /          — Signaling channel (one JSON message per text frame)
    WS   /ws        — Alias of ``/``
    GET  /stats     — Peer counts, uptime, memory, online peer summaries
    GET  /peers/{device_id} — Public fields of one known peer
    GET  /health    — Liveness check
    GET  /metrics   — Prometheus text exposition
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse

from signalmesh import __version__
from signalmesh.config import Config
from signalmesh.errors import NotRegistered
from signalmesh.services import SignalingHub
from signalmesh.signaling.connection import PeerConnection

logger = structlog.get_logger()


def create_app(
    config: Config | None = None,
    hub: SignalingHub | None = None,
) -> FastAPI:
    """Create the signaling FastAPI application.

    Args:
        config: Server configuration. Ignored when *hub* is given.
        hub: Pre-built hub (tests inject one with a fake clock).

    Returns:
        Configured FastAPI app; the heartbeat monitor runs for the
        lifetime of the app.
    """
    resolved_hub = hub or SignalingHub(config or Config())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await resolved_hub.start()
        logger.info(
            "signaling_server_started",
            port=resolved_hub.config.server.listen_port,
        )
        try:
            yield
        finally:
            await resolved_hub.stop()
            logger.info("signaling_server_stopped")

    app = FastAPI(
        title="SignalMesh",
        description="Peer discovery and WebRTC signaling.",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.hub = resolved_hub

    # ── Signaling channel ───────────────────────────────────

    async def signaling_socket(websocket: WebSocket) -> None:
        hub: SignalingHub = websocket.app.state.hub
        await websocket.accept()
        conn = PeerConnection(websocket)
        manager = hub.connect(conn)
        logger.info("connection_opened", connection=conn.connection_id, remote=conn.remote)
        try:
            while True:
                msg = await websocket.receive()
                if msg["type"] == "websocket.disconnect":
                    break
                text = msg.get("text")
                if text is not None:
                    await manager.handle_text(text)
                else:
                    await manager.handle_bytes(msg.get("bytes") or b"")
        except WebSocketDisconnect:
            pass
        finally:
            await manager.close()

    app.add_api_websocket_route("/", signaling_socket)
    app.add_api_websocket_route("/ws", signaling_socket)

    # ── Monitoring ──────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check, always returns ok."""
        return {"status": "ok"}

    @app.get("/stats")
    async def stats(request: Request) -> dict[str, Any]:
        """Aggregate peer status for external monitoring."""
        hub: SignalingHub = request.app.state.hub
        return await hub.stats()

    @app.get("/peers/{device_id}")
    async def peer(device_id: str, request: Request) -> JSONResponse:
        """Public fields of one known peer, online or not."""
        hub: SignalingHub = request.app.state.hub
        record = await hub.registry.get(device_id)
        if record is None:
            return JSONResponse(status_code=404, content=NotRegistered().info.to_dict())
        return JSONResponse(content=record)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request) -> str:
        """Prometheus-compatible metrics endpoint."""
        hub: SignalingHub = request.app.state.hub
        return await hub.metrics_text()

    return app

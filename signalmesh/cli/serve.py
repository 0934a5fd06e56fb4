"""CLI commands: serve (run the signaling server), stats (query a running one)."""

from __future__ import annotations

import json
from dataclasses import replace as dc_replace
from pathlib import Path
from typing import Any

import click
import httpx
import structlog

from signalmesh import __version__
from signalmesh.config import Config, load_config

logger = structlog.get_logger()

_DEFAULT_STATS_URL = "http://127.0.0.1:8080"


def _apply_overrides(config: Config, host: str | None, port: int | None) -> Config:
    server = config.server
    if host:
        server = dc_replace(server, listen_address=host)
    if port:
        server = dc_replace(server, listen_port=port)
    return dc_replace(config, server=server)


# ---------------------------------------------------------------------------
# signalmesh serve
# ---------------------------------------------------------------------------
@click.command()
@click.option("--host", "-h", default=None, help="Listen address (default 0.0.0.0)")
@click.option(
    "--port",
    "-p",
    type=click.IntRange(1, 65535),
    default=None,
    help="Listen port (default: $PORT or 8080)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.toml (default ~/.signalmesh/config.toml)",
)
@click.option("--json-logs", is_flag=True, default=False, help="Emit JSON log lines")
def serve(
    host: str | None,
    port: int | None,
    config_path: Path | None,
    json_logs: bool,
) -> None:
    """Run the signaling server in the foreground."""
    import uvicorn

    from signalmesh.api.server import create_app
    from signalmesh.cli import configure_logging

    config = _apply_overrides(load_config(config_path), host, port)
    configure_logging(config.server.log_level, json_logs=json_logs)

    addr = config.server.listen_address
    listen_port = config.server.listen_port
    click.echo(f"SignalMesh v{__version__} starting...")
    click.echo(f"  WebSocket: ws://{addr}:{listen_port}/")
    click.echo(f"  Stats:     http://{addr}:{listen_port}/stats")

    app = create_app(config=config)
    uvicorn.run(
        app,
        host=addr,
        port=listen_port,
        log_level=config.server.log_level,
        ws_max_size=config.server.max_message_bytes,
    )


# ---------------------------------------------------------------------------
# signalmesh stats
# ---------------------------------------------------------------------------
@click.command()
@click.option(
    "--url",
    default=_DEFAULT_STATS_URL,
    show_default=True,
    help="Base URL of a running server",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON")
def stats(url: str, as_json: bool) -> None:
    """Show peer statistics of a running server."""
    from signalmesh.cli.report import render_stats

    try:
        resp = httpx.get(f"{url.rstrip('/')}/stats", timeout=5.0)
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        click.secho(f"Cannot reach server at {url}: {exc}", fg="red")
        raise SystemExit(1) from exc

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    render_stats(data, url)

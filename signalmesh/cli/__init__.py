"""SignalMesh CLI — Click command groups and sub-commands.

- ``serve`` — ``serve`` (run the signaling server), ``stats`` (query one)
- ``config`` — ``config show``, ``config set``
"""

from __future__ import annotations

import logging

import click
import structlog

from signalmesh import __version__


def configure_logging(level: str = "info", *, json_logs: bool = False) -> None:
    """Configure structlog for the process."""
    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


# Configure structlog once at CLI entry
configure_logging()


@click.group()
@click.version_option(version=__version__, prog_name="signalmesh")
def cli() -> None:
    """SignalMesh — peer discovery and WebRTC signaling server."""


# Register sub-command modules
from signalmesh.cli.config import config_group  # noqa: E402
from signalmesh.cli.serve import serve, stats  # noqa: E402

cli.add_command(serve)
cli.add_command(stats)
cli.add_command(config_group)

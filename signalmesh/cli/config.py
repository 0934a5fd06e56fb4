"""CLI commands: config show, config set."""

from __future__ import annotations

from dataclasses import asdict, fields
from dataclasses import replace as dc_replace
from pathlib import Path

import click

from signalmesh.config import (
    DEFAULT_CONFIG_PATH,
    coerce_value,
    load_config,
    save_config,
)
from signalmesh.errors import format_error

_config_path_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.toml (default ~/.signalmesh/config.toml)",
)


@click.group("config")
def config_group() -> None:
    """Configuration management."""


@config_group.command("show")
@_config_path_option
def config_show(config_path: Path | None) -> None:
    """Show current configuration."""
    config = load_config(config_path)
    for section_name, section in asdict(config).items():
        click.echo(f"[{section_name}]")
        for key, value in section.items():
            click.echo(f"  {key} = {value}")
        click.echo()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@_config_path_option
def config_set(key: str, value: str, config_path: Path | None) -> None:
    """Set a configuration value (section.key = value).

    Example: signalmesh config set heartbeat.stale_after 90
    """
    if "." not in key:
        click.echo(
            "Error: Key must be in 'section.key' format (e.g., server.listen_port)"
        )
        raise SystemExit(1)

    section_name, field_name = key.split(".", 1)
    config = load_config(config_path)
    section = getattr(config, section_name, None)
    known = {f.name: f for f in fields(section)} if section is not None else {}
    if field_name not in known:
        click.echo(format_error("E006"))
        click.echo(f"Unknown setting: {key}")
        raise SystemExit(1)

    current = getattr(section, field_name)
    try:
        coerced = coerce_value(value, type(current))
    except ValueError:
        click.echo(format_error("E006"))
        click.echo(f"Expected {type(current).__name__} for {key}, got {value!r}")
        raise SystemExit(1) from None

    config = dc_replace(
        config, **{section_name: dc_replace(section, **{field_name: coerced})}
    )
    save_config(config, config_path or DEFAULT_CONFIG_PATH)
    click.echo(f"Set {section_name}.{field_name} = {coerced}")

"""Configuration management for SignalMesh.

Loads settings from ~/.signalmesh/config.toml with environment variable overrides.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from dataclasses import fields as dataclass_fields
from dataclasses import replace as dc_replace
from pathlib import Path
from typing import TypeVar

import structlog

logger = structlog.get_logger()

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".signalmesh"
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "config.toml"

DEFAULT_PORT = 8080


@dataclass(frozen=True)
class ServerConfig:
    """Listener and transport settings."""

    listen_address: str = "0.0.0.0"
    listen_port: int = DEFAULT_PORT
    log_level: str = "info"
    max_message_bytes: int = 1024 * 1024


@dataclass(frozen=True)
class HeartbeatConfig:
    """Liveness sweep settings.

    ``stale_after`` defaults to twice ``sweep_interval`` so at least one
    missed heartbeat is tolerated before a peer is demoted.
    """

    sweep_interval: float = 30.0  # seconds
    stale_after: float = 60.0  # seconds


@dataclass(frozen=True)
class Config:
    """Root configuration container."""

    server: ServerConfig = field(default_factory=ServerConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)


def _env_override(section: str, key: str) -> str | None:
    """Check for SIGNALMESH_{SECTION}_{KEY} environment variable."""
    env_key = f"SIGNALMESH_{section.upper()}_{key.upper()}"
    return os.environ.get(env_key)


def coerce_value(value: str, target_type: type) -> object:
    """Coerce a string from the environment or CLI to a setting's type.

    Raises:
        ValueError: *value* does not parse as *target_type*.
    """
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


# Configuration value constraints
_VALUE_CONSTRAINTS: dict[str, tuple[float, float]] = {
    "listen_port": (1, 65535),
    "max_message_bytes": (1024, 64 * 1024 * 1024),
    "sweep_interval": (0.1, 3600.0),
    "stale_after": (0.1, 86400.0),
}

# Allowed values for string enums
_ALLOWED_VALUES: dict[str, frozenset[str]] = {
    "log_level": frozenset({"debug", "info", "warning", "error", "critical"}),
}


def _validate_value(key: str, value: object) -> object:
    """Validate a config value against known constraints."""
    if key in _VALUE_CONSTRAINTS and isinstance(value, (int, float)):
        lo, hi = _VALUE_CONSTRAINTS[key]
        if not (lo <= value <= hi):
            logger.warning(
                "config_value_out_of_range",
                key=key,
                value=value,
                min=lo,
                max=hi,
            )
            # Clamp to valid range
            return type(value)(max(lo, min(hi, value)))
    if (
        key in _ALLOWED_VALUES
        and isinstance(value, str)
        and value.lower() not in _ALLOWED_VALUES[key]
    ):
        logger.warning(
            "config_invalid_value",
            key=key,
            value=value,
            allowed=sorted(_ALLOWED_VALUES[key]),
        )
        return None  # Will use default
    return value


T = TypeVar("T")


def _build_section(
    cls: type[T], toml_section: dict[str, object], section_name: str
) -> T:
    """Build a dataclass instance from TOML data + env overrides."""
    kwargs: dict[str, object] = {}
    for f in dataclass_fields(cls):  # type: ignore[arg-type]
        raw = toml_section.get(f.name)
        env_val = _env_override(section_name, f.name)
        if env_val is not None:
            raw = coerce_value(env_val, type(f.default))
        if raw is not None:
            # TOML ints are accepted for float fields
            if isinstance(f.default, float) and isinstance(raw, int):
                raw = float(raw)
            validated = _validate_value(f.name, raw)
            if validated is not None:
                kwargs[f.name] = validated
    return cls(**kwargs)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file with environment variable overrides.

    Priority: ``PORT`` (listen port only) > env vars > config.toml > defaults.

    Args:
        config_path: Path to config file. Defaults to ~/.signalmesh/config.toml.

    Returns:
        Populated Config instance.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    raw: dict[str, object] = {}

    if path.exists():
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        logger.info("config_loaded", path=str(path))
    else:
        logger.info("config_default", path=str(path), reason="file not found")

    server = _build_section(ServerConfig, raw.get("server", {}), "server")  # type: ignore[arg-type]
    heartbeat = _build_section(HeartbeatConfig, raw.get("heartbeat", {}), "heartbeat")  # type: ignore[arg-type]

    config = Config(server=server, heartbeat=heartbeat)

    # Conventional PORT variable used by container platforms
    port_env = os.environ.get("PORT")
    if port_env:
        try:
            port = int(port_env)
        except ValueError:
            logger.warning("config_invalid_value", key="PORT", value=port_env)
        else:
            validated = _validate_value("listen_port", port)
            config = dc_replace(
                config, server=dc_replace(config.server, listen_port=validated)
            )

    if config.heartbeat.stale_after < config.heartbeat.sweep_interval:
        logger.warning(
            "config_stale_after_below_interval",
            stale_after=config.heartbeat.stale_after,
            sweep_interval=config.heartbeat.sweep_interval,
        )

    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to TOML file.

    Only writes sections/keys that differ from defaults to keep
    the config file clean and readable.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    sections: dict[str, dict[str, object]] = {}
    defaults = Config()

    section_map: list[tuple[str, object, object]] = [
        ("server", config.server, defaults.server),
        ("heartbeat", config.heartbeat, defaults.heartbeat),
    ]

    for section_name, current_section, default_section in section_map:
        section_dict: dict[str, object] = {}
        for f in type(current_section).__dataclass_fields__.values():  # type: ignore[attr-defined]
            cur_val = getattr(current_section, f.name)
            def_val = getattr(default_section, f.name)
            if cur_val != def_val:
                section_dict[f.name] = cur_val
        if section_dict:
            sections[section_name] = section_dict

    # Write TOML manually (tomllib is read-only)
    lines: list[str] = ["# SignalMesh configuration", ""]
    for section_name, section_dict in sections.items():
        lines.append(f"[{section_name}]")
        for key, value in section_dict.items():
            if isinstance(value, bool):
                lines.append(f"{key} = {str(value).lower()}")
            elif isinstance(value, str):
                escaped = value.replace("\\", "\\\\").replace('"', '\\"')
                lines.append(f'{key} = "{escaped}"')
            elif isinstance(value, (float, int)):
                lines.append(f"{key} = {value}")
        lines.append("")

    path.write_text("\n".join(lines), encoding="utf-8")
    logger.info("config_saved", path=str(path))

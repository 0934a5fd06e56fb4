"""Structured error codes and signaling exceptions.

Every protocol failure is reported back to the originating connection as
an ``error`` frame and never closes the connection.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Error category classification."""

    PROTOCOL = "PROTOCOL"
    REGISTRY = "REGISTRY"
    SIGNALING = "SIGNALING"
    CONFIG = "CONFIG"


@dataclass(frozen=True)
class ErrorInfo:
    """Structured error with code, message, and resolution."""

    code: str
    category: ErrorCategory
    message: str
    resolution: str

    def to_dict(self) -> dict[str, object]:
        return {
            "error": {
                "code": self.code,
                "category": self.category.value,
                "message": self.message,
                "resolution": self.resolution,
            },
        }

    def format(self) -> str:
        return f"Error [{self.code}]: {self.message}\nResolution: {self.resolution}"


# ── Pre-defined error catalog ─────────────────────────────────────

ERRORS: dict[str, ErrorInfo] = {
    "E001": ErrorInfo(
        code="SIG_E001",
        category=ErrorCategory.PROTOCOL,
        message="Malformed message",
        resolution=(
            'Send one JSON object per text frame: {"type": ..., "data": {...}}'
        ),
    ),
    "E002": ErrorInfo(
        code="SIG_E002",
        category=ErrorCategory.PROTOCOL,
        message="Unknown message type",
        resolution=(
            "Use register, discover, signal, announce_capability or heartbeat. "
            "Data messages should go directly via WebRTC after connecting."
        ),
    ),
    "E003": ErrorInfo(
        code="SIG_E003",
        category=ErrorCategory.REGISTRY,
        message="Not registered",
        resolution="Send a register message on this connection first",
    ),
    "E004": ErrorInfo(
        code="SIG_E004",
        category=ErrorCategory.SIGNALING,
        message="Target peer not found or offline",
        resolution="Run discover to refresh the list of online peers",
    ),
    "E005": ErrorInfo(
        code="SIG_E005",
        category=ErrorCategory.PROTOCOL,
        message="Internal server error",
        resolution="Retry the request; the connection is still usable",
    ),
    "E006": ErrorInfo(
        code="SIG_E006",
        category=ErrorCategory.CONFIG,
        message="Invalid configuration value",
        resolution=(
            "Check config.toml for valid values. "
            "Run 'signalmesh config show' to review."
        ),
    ),
}


def get_error(code: str) -> ErrorInfo | None:
    """Look up an error by short code (e.g. 'E001')."""
    return ERRORS.get(code)


def format_error(code: str) -> str:
    """Format an error message by code."""
    err = get_error(code)
    if err is None:
        return f"Unknown error: {code}"
    return err.format()


# ── Exceptions ────────────────────────────────────────────────────


class SignalingError(Exception):
    """Base class for errors reported back to the sending peer."""

    catalog_key = "E005"

    def __init__(self, detail: str | None = None) -> None:
        self.info = ERRORS[self.catalog_key]
        self.detail = detail or self.info.message
        super().__init__(self.detail)

    @property
    def code(self) -> str:
        return self.info.code

    def to_message(self) -> dict[str, Any]:
        """Build the wire ``error`` frame for this failure."""
        return {
            "type": "error",
            "data": {
                "code": self.info.code,
                "error": self.info.message,
                "message": self.detail,
            },
            # Older browser clients read only the top-level message
            "message": self.detail,
        }


class MalformedMessage(SignalingError):
    """Input could not be parsed as the expected structured message."""

    catalog_key = "E001"


class UnknownMessageKind(SignalingError):
    """The message parsed, but its ``type`` is not recognised."""

    catalog_key = "E002"

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(
            f"Unknown message type: {kind}. Note: Data messages should go "
            "directly via WebRTC after initial connection."
        )


class NotRegistered(SignalingError):
    """The action requires a prior successful register on this connection."""

    catalog_key = "E003"


class TargetUnreachable(SignalingError):
    """Relay target has no record or is offline."""

    catalog_key = "E004"

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"Target peer not found or offline: {device_id}")


class InternalError(SignalingError):
    """Unexpected handler failure; the connection stays open."""

    catalog_key = "E005"


class DeliveryError(Exception):
    """Transport-level failure sending a frame to a connection.

    Never reported to the peer that triggered the send; treated as
    evidence that the recipient's link is dead.
    """

    def __init__(self, connection_id: str, reason: str = "") -> None:
        self.connection_id = connection_id
        self.reason = reason
        super().__init__(f"delivery to {connection_id} failed: {reason}")


class InvalidTransition(Exception):
    """A peer status transition outside the Online/Offline table."""

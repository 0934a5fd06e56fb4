"""Tests for signalmesh.errors — structured error codes."""

from __future__ import annotations

from signalmesh.errors import (
    ERRORS,
    ErrorCategory,
    ErrorInfo,
    InternalError,
    MalformedMessage,
    NotRegistered,
    SignalingError,
    TargetUnreachable,
    UnknownMessageKind,
    format_error,
    get_error,
)


class TestErrorCategory:
    def test_enum_values(self) -> None:
        assert ErrorCategory.PROTOCOL == "PROTOCOL"
        assert ErrorCategory.REGISTRY == "REGISTRY"

    def test_all_unique(self) -> None:
        values = [e.value for e in ErrorCategory]
        assert len(values) == len(set(values))


class TestErrorInfo:
    def test_to_dict(self) -> None:
        err = ErrorInfo(
            code="TEST_002",
            category=ErrorCategory.SIGNALING,
            message="Peer gone",
            resolution="Discover again",
        )
        err_d = err.to_dict()["error"]
        assert isinstance(err_d, dict)
        assert err_d["code"] == "TEST_002"
        assert err_d["category"] == "SIGNALING"

    def test_format(self) -> None:
        s = ERRORS["E003"].format()
        assert "SIG_E003" in s
        assert "register" in s.lower()


class TestErrorCatalog:
    def test_codes_unique(self) -> None:
        codes = [e.code for e in ERRORS.values()]
        assert len(codes) == len(set(codes))
        assert all(c.startswith("SIG_") for c in codes)

    def test_get_error(self) -> None:
        e = get_error("E001")
        assert e is not None
        assert e.category == ErrorCategory.PROTOCOL

    def test_get_unknown(self) -> None:
        assert get_error("E999") is None

    def test_format_unknown(self) -> None:
        assert "Unknown" in format_error("E999")

    def test_format_known(self) -> None:
        assert format_error("E004").startswith("Error [SIG_E004]")


class TestSignalingErrors:
    def test_codes(self) -> None:
        assert MalformedMessage().code == "SIG_E001"
        assert UnknownMessageKind("x").code == "SIG_E002"
        assert NotRegistered().code == "SIG_E003"
        assert TargetUnreachable("b").code == "SIG_E004"
        assert InternalError().code == "SIG_E005"

    def test_detail_defaults_to_catalog_message(self) -> None:
        assert NotRegistered().detail == "Not registered"
        assert MalformedMessage("bad").detail == "bad"

    def test_to_message(self) -> None:
        msg = TargetUnreachable("peer-9").to_message()
        assert msg["type"] == "error"
        assert msg["data"]["code"] == "SIG_E004"
        assert msg["data"]["error"] == "Target peer not found or offline"
        assert "peer-9" in msg["data"]["message"]
        assert msg["message"] == msg["data"]["message"]

    def test_unknown_kind_mentions_webrtc(self) -> None:
        err = UnknownMessageKind("blob")
        assert err.kind == "blob"
        assert "WebRTC" in err.detail

    def test_hierarchy(self) -> None:
        for exc in (MalformedMessage, NotRegistered, InternalError):
            assert issubclass(exc, SignalingError)

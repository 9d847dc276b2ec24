"""Tests for lumensync/exceptions.py — exception hierarchy."""

from __future__ import annotations

from lumensync.exceptions import (
    APIError,
    ConfigError,
    ConfigInvalidError,
    ConfigMissingError,
    ConnectionFailedError,
    DatabaseError,
    DataError,
    DecodeError,
    EndpointUnavailableError,
    InvalidAddressError,
    LumensyncError,
    NetworkError,
    NetworkTimeoutError,
)

# ── Hierarchy / exit codes ────────────────────────────────────────────────────


def test_lumensync_error_base() -> None:
    """LumensyncError is the base of the hierarchy."""
    e = LumensyncError("base error")
    assert e.exit_code == 1
    assert e.error_code == "unknown_error"
    assert str(e) == "base error"


def test_api_error_exit_code() -> None:
    e = APIError("api broken")
    assert e.exit_code == 2
    assert isinstance(e, LumensyncError)


def test_endpoint_unavailable_carries_status() -> None:
    """EndpointUnavailableError records the HTTP status in details."""
    e = EndpointUnavailableError("gone", status_code=503)
    assert isinstance(e, APIError)
    assert e.status_code == 503
    assert e.details["status_code"] == 503
    assert e.error_code == "endpoint_unavailable"


def test_network_errors() -> None:
    for cls, code in ((NetworkTimeoutError, "network_timeout"), (ConnectionFailedError, "connection_failed")):
        e = cls("down")
        assert isinstance(e, NetworkError)
        assert e.exit_code == 3
        assert e.error_code == code


def test_data_errors() -> None:
    assert InvalidAddressError("bad").exit_code == 4
    assert isinstance(DecodeError("bad bytes"), DataError)
    assert DecodeError("bad bytes").error_code == "decode_error"


def test_config_errors() -> None:
    assert isinstance(ConfigMissingError("x"), ConfigError)
    assert isinstance(ConfigInvalidError("x"), ConfigError)
    assert ConfigInvalidError("x").exit_code == 5


def test_database_error() -> None:
    e = DatabaseError("locked")
    assert e.exit_code == 6
    assert e.error_code == "db_error"


# ── Serialization ─────────────────────────────────────────────────────────────


def test_to_dict() -> None:
    e = InvalidAddressError("bad address", details={"address": "cosmos1x"})
    assert e.to_dict() == {
        "error": "invalid_address",
        "message": "bad address",
        "details": {"address": "cosmos1x"},
    }


def test_to_dict_default_details() -> None:
    assert LumensyncError("x").to_dict()["details"] == {}

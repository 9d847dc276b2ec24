"""
Custom exception hierarchy for lumensync.

Each exception maps to a specific CLI exit code and JSON error_code field.
cli.py catches all LumensyncError subclasses and formats them as JSON output.

The background sync paths (heartbeat, gap sync, forced rescan) catch
APIError / NetworkError / DataError per unit of work and never re-raise them.
DatabaseError is the only failure that propagates out of those paths.

Exit code mapping:
  1 — LumensyncError (generic CLI error)
  2 — APIError (endpoint unavailable, unexpected response)
  3 — NetworkError (timeout, connection refused)
  4 — DataError (invalid address, undecodable payload)
  5 — ConfigError (missing/malformed config)
  6 — DatabaseError (SQLite failure)
"""


class LumensyncError(Exception):
    """Base exception for all lumensync errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class APIError(LumensyncError):
    """Chain endpoint returned an error or an unusable response."""

    exit_code = 2
    error_code = "api_error"


class EndpointUnavailableError(APIError):
    """Endpoint answered with a non-2xx status or without a result payload."""

    error_code = "endpoint_unavailable"

    def __init__(self, message: str, status_code: int | None = None, **kwargs) -> None:
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class NetworkError(LumensyncError):
    """Network connectivity issue — timeout or connection failure."""

    exit_code = 3
    error_code = "network_error"


class NetworkTimeoutError(NetworkError):
    """Request timed out."""

    error_code = "network_timeout"


class ConnectionFailedError(NetworkError):
    """Could not connect to the chain endpoint."""

    error_code = "connection_failed"


class DataError(LumensyncError):
    """Data validation or decoding error."""

    exit_code = 4
    error_code = "data_error"


class InvalidAddressError(DataError):
    """Address is not a well-formed account address for the configured chain."""

    error_code = "invalid_address"


class DecodeError(DataError):
    """A transaction, message or event payload could not be decoded."""

    error_code = "decode_error"


class ConfigError(LumensyncError):
    """Config file is missing or malformed."""

    exit_code = 5
    error_code = "config_error"


class ConfigMissingError(ConfigError):
    """Config file does not exist; user should run `lumensync config init`."""

    error_code = "config_missing"


class ConfigInvalidError(ConfigError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"


class DatabaseError(LumensyncError):
    """SQLite operation failed."""

    exit_code = 6
    error_code = "db_error"

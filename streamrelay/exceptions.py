"""Custom exception hierarchy for StreamRelay.

Provides structured error types that the reference application's error
handler translates into consistent JSON responses.
"""

from __future__ import annotations


class StreamRelayError(Exception):
    """Base exception for all StreamRelay errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(StreamRelayError):
    """Invalid or malformed configuration, raised at construction time."""

    status_code = 500
    error_type = "configuration_error"


class BackendNotImplementedError(StreamRelayError):
    """A configured backend exists in the config schema but has no implementation."""

    status_code = 501
    error_type = "not_implemented"


class PayloadError(StreamRelayError):
    """A single stream item could not be parsed or handled."""

    status_code = 422
    error_type = "payload_error"


class InvalidParametersError(StreamRelayError):
    """Route parameters failed validation."""

    status_code = 400
    error_type = "invalid_parameters"

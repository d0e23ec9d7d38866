"""Exception types raised across the relay pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories carried by an ``Error`` reply decision."""

    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class RelayError(RuntimeError):
    """Base class for pipeline errors."""


class SignatureInvalid(RelayError):
    """Raised when a webhook signature cannot be verified."""


class MalformedPayload(RelayError):
    """Raised when an event of a known type is missing required fields."""


class CredentialDecryptFailure(RelayError):
    """Raised when a stored tenant credential cannot be decrypted."""


class BackendUnavailable(RelayError):
    """Raised when the answer backend times out or returns a non-success status."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ChannelApiError(RelayError):
    """Raised by channel clients when the outbound API rejects a call."""

    def __init__(self, message: str, *, status: int, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code

    @property
    def is_auth_failure(self) -> bool:
        return self.status == 401


class BackendAuthRevoked(RelayError):
    """Raised after a tenant credential was rejected by the channel API.

    The tenant integration has already been marked as errored and the event
    dead-lettered when this propagates; the queue decides whether to redeliver.
    """

    def __init__(self, tenant_id: str, message: str = "Channel credential revoked") -> None:
        super().__init__(message)
        self.tenant_id = tenant_id


__all__ = [
    "BackendAuthRevoked",
    "BackendUnavailable",
    "ChannelApiError",
    "CredentialDecryptFailure",
    "ErrorKind",
    "MalformedPayload",
    "RelayError",
    "SignatureInvalid",
]

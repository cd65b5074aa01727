"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Each error class carries the HTTP status and the public message the exception
handlers send to clients. The ``message`` attribute is for logs only; it may
contain upstream details that must not leak to callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability.

    Fields are optional to keep error construction lightweight.
    """

    code: str
    message: str
    hint: str
    http_status: int
    upstream_status: int
    timeout_s: float
    operation: str
    key_hash: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message (internal).
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    status_code: ClassVar[int] = 500
    public_message: ClassVar[str | None] = "Internal server error"
    log_event: ClassVar[str] = "app_error_handled"

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    @property
    def client_message(self) -> str:
        """Message safe to return to the client."""
        return self.public_message or self.message


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""

    status_code = 400
    public_message = None


class AuthenticationAppError(AppError):
    """Raised when a presented credential is missing, unknown or inactive."""

    status_code = 401
    public_message = None


class IssuanceAppError(AppError):
    """Base for failures while generating a new key."""

    public_message = "Failed to generate key"


class UpstreamIssuanceAppError(IssuanceAppError):
    """Raised when the upstream issuing service errors or refuses."""

    log_event = "issue.upstream_failed"


class PersistenceAppError(IssuanceAppError):
    """Raised when a new credential record cannot be written."""

    log_event = "issue.persistence_failed"


class StoreTimeoutAppError(AppError):
    """Raised when a credential store call exceeds its deadline."""


class InternalAppError(AppError):
    """Raised for unexpected failures caught at the request boundary."""

"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    field: str
    policy: str
    count: int | None
    http_status: int
    retry_after: float
    backend: str
    source: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input validation fails."""


class ConfigurationAppError(AppError):
    """Raised when the policy file or gate settings are malformed.

    Always raised while the application is being built, never per request.
    """


class QuotaStoreUnavailableError(AppError):
    """Raised when the shared quota store times out or errors."""


@dataclass
class FieldNotPresentedError(ValidationAppError):
    """Raised when a key generator cannot find a configured field.

    Covers an unreadable or unparsable request body as well as a field or
    header that is simply absent.

    Attributes:
        field: Name of the configured field that could not be resolved.
    """

    field: str = ""

    @classmethod
    def for_field(cls, field: str, uri: str, *, source: str = "body") -> "FieldNotPresentedError":
        """Build the error for a field missing from the request ``source``."""

        return cls(
            code="field_not_presented",
            message=f"The field `{field}` is not presented in the request {source} {uri}",
            details={"field": field, "source": source},
            field=field,
        )

"""Unified exception hierarchy for medlink.

Transport failures are surfaced to callers as the original ``requests``
exceptions so that status classification stays with the response. The types
below cover the conditions this layer produces itself.

Exception Hierarchy:
    MedlinkError (base)
    ├── ConfigurationError - Unusable settings (bad --base-url)
    ├── RetryExhaustedError - Retry loop ended without a captured error
    ├── RequestAbandonedError - Queued offline request dropped on shutdown
    └── TokenRefreshError - Refresh endpoint call failed

Usage:
    from medlink.errors import RequestAbandonedError

    try:
        response = client.request(descriptor)
    except RequestAbandonedError as e:
        logger.warning("Dropped while offline: %s (code: %s)", e.message, e.code)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for medlink errors."""

    # Configuration errors (CFG_*)
    CFG_INVALID = "CFG_INVALID"

    # Request pipeline errors (REQ_*)
    REQ_RETRIES_EXHAUSTED = "REQ_RETRIES_EXHAUSTED"
    REQ_ABANDONED = "REQ_ABANDONED"

    # Auth errors (AUTH_*)
    AUTH_REFRESH_FAILED = "AUTH_REFRESH_FAILED"
    AUTH_REFRESH_REJECTED = "AUTH_REFRESH_REJECTED"

    # Generic errors
    UNKNOWN = "UNKNOWN"


class MedlinkError(Exception):
    """Base exception for all medlink errors.

    Carries a machine-readable ``code`` and a ``details`` mapping next to the
    message, so the CLI can render it as a panel or as a JSON object.
    """

    default_message: str = "An error occurred"
    default_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message or self.default_message)
        self.code = code or self.default_code
        self.details = dict(details or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def message(self) -> str:
        return str(self.args[0])

    def to_dict(self) -> dict[str, Any]:
        """Error as the JSON object printed by ``medlink --json-logs``."""
        payload: dict[str, Any] = {
            "error": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        if self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload


class ConfigurationError(MedlinkError):
    """Raised when settings cannot be used to build the request pipeline."""

    default_message = "Invalid configuration"
    default_code = ErrorCode.CFG_INVALID

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, code=code, details=details, cause=cause)


class RetryExhaustedError(MedlinkError):
    """Raised only if a retry loop ends without having captured an error."""

    default_message = "Max retries exceeded"
    default_code = ErrorCode.REQ_RETRIES_EXHAUSTED


class RequestAbandonedError(MedlinkError):
    """Raised into a queued request's future when the queue is cleared."""

    default_message = "Queued request abandoned before connectivity returned"
    default_code = ErrorCode.REQ_ABANDONED


class TokenRefreshError(MedlinkError):
    """Raised by the refresh call; absorbed by the refresh coordinator."""

    default_message = "Access token refresh failed"
    default_code = ErrorCode.AUTH_REFRESH_FAILED

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
            code = code or ErrorCode.AUTH_REFRESH_REJECTED
        self.status_code = status_code
        super().__init__(message, code=code, details=details, cause=cause)


__all__ = [
    "ErrorCode",
    "MedlinkError",
    "ConfigurationError",
    "RetryExhaustedError",
    "RequestAbandonedError",
    "TokenRefreshError",
]

"""Exceptions raised by the client.

`PcoApiError` mirrors a non-2xx response. `PcoError` adds a classification
(category, severity, retryable) used by the retry helpers and by callers
deciding how to react. The remaining exceptions are raised locally, before
or around remote calls.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pcopeople.domain.models.common import (
    RATE_COUNT_HEADER,
    RATE_LIMIT_HEADER,
    RATE_PERIOD_HEADER,
    RETRY_AFTER_HEADER,
    JsonApiErrorObject,
    RateLimitHeaders,
)

DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60.0


class ErrorCategory(str, Enum):
    EXTERNAL_API = "external_api"
    VALIDATION = "validation"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PcoClientError(Exception):
    """Base class for every error raised by this package."""


# --- Remote errors ---

def extract_rate_limit_headers(headers: Optional[Mapping[str, str]]) -> RateLimitHeaders:
    """Takes a case-insensitive snapshot of the rate limit headers."""
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    return RateLimitHeaders(
        limit=lowered.get(RATE_LIMIT_HEADER.lower()),
        period=lowered.get(RATE_PERIOD_HEADER.lower()),
        count=lowered.get(RATE_COUNT_HEADER.lower()),
        retry_after=lowered.get(RETRY_AFTER_HEADER.lower()),
    )


def _errors_message(errors: List[JsonApiErrorObject], status_text: str) -> str:
    if errors:
        return "; ".join(
            str(e.get("detail") or e.get("title") or "Unknown error") for e in errors
        )
    return status_text


class PcoApiError(PcoClientError):
    """A non-2xx response from the API.

    Attributes:
        status: HTTP status code (0 for transport failures).
        status_text: HTTP reason phrase.
        errors: The JSON:API `errors` array of the response body, if any.
        rate_limit_headers: Rate limit header snapshot of the response.
    """

    def __init__(
        self,
        message: str,
        status: int,
        status_text: str,
        errors: Optional[List[JsonApiErrorObject]] = None,
        rate_limit_headers: Optional[RateLimitHeaders] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.status_text = status_text
        self.errors: List[JsonApiErrorObject] = list(errors or [])
        self.rate_limit_headers: RateLimitHeaders = rate_limit_headers or RateLimitHeaders()

    @classmethod
    def from_response(
        cls,
        status: int,
        status_text: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        **kwargs: Any,
    ) -> "PcoApiError":
        """Builds an error from a response status, parsed body and headers."""
        errors: List[JsonApiErrorObject] = []
        if isinstance(body, Mapping) and isinstance(body.get("errors"), list):
            errors = [e for e in body["errors"] if isinstance(e, Mapping)]
        message = _errors_message(errors, status_text)
        return cls(message, status, status_text, errors, extract_rate_limit_headers(headers), **kwargs)


def _categorize(status: int):
    if status == 401:
        return ErrorCategory.AUTHENTICATION, ErrorSeverity.HIGH, False
    if status == 403:
        return ErrorCategory.AUTHORIZATION, ErrorSeverity.HIGH, False
    if status == 429:
        return ErrorCategory.RATE_LIMIT, ErrorSeverity.MEDIUM, True
    if status in (400, 422):
        return ErrorCategory.VALIDATION, ErrorSeverity.LOW, False
    if status >= 500:
        return ErrorCategory.EXTERNAL_API, ErrorSeverity.HIGH, True
    if status in (0, 408):
        return ErrorCategory.NETWORK, ErrorSeverity.MEDIUM, True
    return ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM, False


class PcoError(PcoApiError):
    """A classified API error carrying diagnostic context."""

    def __init__(
        self,
        message: str,
        status: int,
        status_text: str,
        errors: Optional[List[JsonApiErrorObject]] = None,
        rate_limit_headers: Optional[RateLimitHeaders] = None,
        context: Optional[Dict[str, Any]] = None,
        category: Optional[ErrorCategory] = None,
    ):
        super().__init__(message, status, status_text, errors, rate_limit_headers)
        default_category, severity, retryable = _categorize(status)
        self.category = category or default_category
        self.severity = severity
        self.retryable = retryable
        self.context: Dict[str, Any] = {
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.context.update(context or {})

    @classmethod
    def from_network_error(cls, error: BaseException, context: Optional[Dict[str, Any]] = None) -> "PcoError":
        return cls(
            f"Network error: {error}",
            0,
            "Network Error",
            context=context,
            category=ErrorCategory.NETWORK,
        )

    @classmethod
    def from_timeout(cls, timeout_seconds: float, context: Optional[Dict[str, Any]] = None) -> "PcoError":
        timeout_ms = int(round(timeout_seconds * 1000))
        return cls(
            f"Request timed out after {timeout_ms}ms",
            408,
            "Request Timeout",
            context=context,
            category=ErrorCategory.TIMEOUT,
        )

    @property
    def retry_delay(self) -> float:
        """Seconds to wait before retrying a 429 (0 for anything else)."""
        if self.status != 429:
            return 0.0
        retry_after = self.rate_limit_headers.get("retry_after")
        if not retry_after:
            return 0.0
        try:
            return float(int(str(retry_after).strip()))
        except ValueError:
            return DEFAULT_RATE_LIMIT_RETRY_SECONDS

    def should_retry(self) -> bool:
        return self.retryable

    def error_summary(self) -> Dict[str, Any]:
        """Returns a loggable dictionary describing the error."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "status": self.status,
            "status_text": self.status_text,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "errors": self.errors,
            "rate_limit_headers": dict(self.rate_limit_headers),
            "context": self.context,
        }


def should_not_retry(error: BaseException) -> bool:
    """Returns True for errors that retrying cannot fix."""
    if isinstance(error, PcoError):
        return not error.should_retry()
    if isinstance(error, PcoApiError):
        return error.status in (400, 401, 403, 422)
    return isinstance(error, (ValueError, TypeError, KeyError))


# --- Local errors ---

class ConfigurationError(PcoClientError):
    """Raised when the client cannot be configured (e.g. missing credentials)."""


class TokenRefreshError(PcoClientError):
    """Raised when an OAuth token refresh fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class BatchValidationError(PcoClientError):
    """Raised when a batch is rejected before any request is sent."""

    def __init__(self, message: str, operation_id: Optional[str] = None):
        super().__init__(message)
        self.operation_id = operation_id


class UnsupportedOperationError(BatchValidationError):
    """Raised when a batch operation maps to no supported dispatch entry."""


class MatchNotFoundError(PcoClientError):
    """Raised by find_or_create when nothing matches and creation is disabled."""

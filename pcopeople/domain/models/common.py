"""Defines common Value Objects used across the client.

These objects represent simple values like resource ids, endpoints and
request ids, plus the small structured records shared by several layers
(rate limit snapshots, JSON:API error objects).
"""

from enum import Enum
from typing import Any, Dict, NewType, Optional, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
ResourceId = NewType("ResourceId", str)      # Remote resource id, e.g. "12345"
ResourceType = NewType("ResourceType", str)  # JSON:API type tag, e.g. "Person"
Endpoint = NewType("Endpoint", str)          # Path relative to base URL, e.g. "/people/1/emails"
RequestId = NewType("RequestId", str)        # Per-process request identifier
MetricKey = NewType("MetricKey", str)        # "<METHOD> <endpoint>"
OperationId = NewType("OperationId", str)    # Batch operation identifier

# === Rate limiting ===

RATE_LIMIT_HEADER = "X-PCO-API-Request-Rate-Limit"
RATE_PERIOD_HEADER = "X-PCO-API-Request-Rate-Period"
RATE_COUNT_HEADER = "X-PCO-API-Request-Rate-Count"
RETRY_AFTER_HEADER = "Retry-After"

RATE_LIMIT_HEADER_NAMES = (
    RATE_LIMIT_HEADER,
    RATE_PERIOD_HEADER,
    RATE_COUNT_HEADER,
    RETRY_AFTER_HEADER,
)


class RateLimitInfo(TypedDict):
    """Snapshot of the local rate limit window."""
    limit: int
    remaining: int
    reset_time: float  # Monotonic seconds at which the window ends


class RateLimitHeaders(TypedDict, total=False):
    """Rate limit headers as reported by the server (raw string values)."""
    limit: Optional[str]
    period: Optional[str]
    count: Optional[str]
    retry_after: Optional[str]


# === JSON:API ===

class JsonApiErrorObject(TypedDict, total=False):
    """One entry of a JSON:API `errors` array."""
    id: str
    status: str
    code: str
    title: str
    detail: str
    source: Dict[str, Any]
    meta: Dict[str, Any]


# === Auth ===

class AuthType(str, Enum):
    """Supported authentication modes."""
    PERSONAL_ACCESS_TOKEN = "personal_access_token"
    OAUTH = "oauth"


class TokenResponse(TypedDict, total=False):
    """OAuth token endpoint response."""
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    scope: str


# === Matching ===

class MatchStrategy(str, Enum):
    """Minimum acceptable candidate score for automatic resolution."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    AGGRESSIVE = "aggressive"


class AgePreference(str, Enum):
    ADULTS = "adults"
    CHILDREN = "children"
    ANY = "any"

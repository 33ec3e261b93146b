"""Domain Events emitted by the client.

Covers the request lifecycle, authentication, rate limiting, the field
definition cache and retry scheduling. Every event carries its `EventType`
as a class-level tag so the emitter can route it.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional


class EventType(str, Enum):
    REQUEST_START = "request:start"
    REQUEST_COMPLETE = "request:complete"
    REQUEST_ERROR = "request:error"
    AUTH_SUCCESS = "auth:success"
    AUTH_FAILURE = "auth:failure"
    AUTH_REFRESH = "auth:refresh"
    RATE_LIMIT = "rate:limit"
    RATE_AVAILABLE = "rate:available"
    CACHE_HIT = "cache:hit"
    CACHE_MISS = "cache:miss"
    CACHE_SET = "cache:set"
    CACHE_INVALIDATE = "cache:invalidate"
    RETRY_SCHEDULED = "retry:scheduled"
    ERROR = "error"


@dataclass
class DomainEvent:
    """Base class for domain events."""
    type: ClassVar[EventType]


# --- Request lifecycle ---

@dataclass
class RequestStarted(DomainEvent):
    """Emitted before a request is dispatched."""
    type: ClassVar[EventType] = EventType.REQUEST_START
    method: str
    endpoint: str
    request_id: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RequestCompleted(DomainEvent):
    """Emitted when a request returns a 2xx response."""
    type: ClassVar[EventType] = EventType.REQUEST_COMPLETE
    method: str
    endpoint: str
    status: int
    duration_ms: float
    request_id: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RequestFailed(DomainEvent):
    """Emitted when a request fails definitively."""
    type: ClassVar[EventType] = EventType.REQUEST_ERROR
    method: str
    endpoint: str
    error: BaseException
    duration_ms: float
    request_id: str
    timestamp: float = field(default_factory=time.time)


# --- Auth ---

@dataclass
class AuthSucceeded(DomainEvent):
    type: ClassVar[EventType] = EventType.AUTH_SUCCESS
    auth_type: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class AuthFailed(DomainEvent):
    type: ClassVar[EventType] = EventType.AUTH_FAILURE
    auth_type: str
    error: BaseException
    timestamp: float = field(default_factory=time.time)


@dataclass
class AuthRefreshed(DomainEvent):
    """Emitted after every OAuth token refresh attempt."""
    type: ClassVar[EventType] = EventType.AUTH_REFRESH
    success: bool
    auth_type: str = "oauth"
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


# --- Rate limiting ---

@dataclass
class RateLimited(DomainEvent):
    """Emitted when the server answers 429."""
    type: ClassVar[EventType] = EventType.RATE_LIMIT
    limit: int
    remaining: int
    wait_seconds: float
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RateAvailable(DomainEvent):
    """Emitted when requests may flow again after a 429."""
    type: ClassVar[EventType] = EventType.RATE_AVAILABLE
    limit: int
    remaining: int
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


# --- Cache ---

@dataclass
class CacheHit(DomainEvent):
    type: ClassVar[EventType] = EventType.CACHE_HIT
    key: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheMiss(DomainEvent):
    type: ClassVar[EventType] = EventType.CACHE_MISS
    key: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheSet(DomainEvent):
    type: ClassVar[EventType] = EventType.CACHE_SET
    key: str
    ttl_seconds: Optional[float] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheInvalidated(DomainEvent):
    type: ClassVar[EventType] = EventType.CACHE_INVALIDATE
    key: str
    timestamp: float = field(default_factory=time.time)


# --- Resilience ---

@dataclass
class RetryScheduled(DomainEvent):
    """Emitted when a retry is scheduled for a failed operation."""
    type: ClassVar[EventType] = EventType.RETRY_SCHEDULED
    operation: str
    attempt_number: int
    delay_seconds: float
    error_type: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ErrorOccurred(DomainEvent):
    """Generic error event for caller instrumentation."""
    type: ClassVar[EventType] = EventType.ERROR
    error: BaseException
    operation: str
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

"""Event dispatching and request metrics.

`EventEmitter` routes domain events to registered handlers.
`RequestIdGenerator`, `PerformanceMetrics` and `RateLimitTracker` collect
per-request data for the HTTP pipeline.
"""

import asyncio
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pcopeople.domain.events.api_events import DomainEvent, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], Any]

_request_sequence = itertools.count(1)


def _event_key(event_type: Union[EventType, str]) -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)


class EventEmitter:
    """Synchronous publish/subscribe hub for domain events.

    Handler exceptions are logged and never reach the emitter. Handlers that
    return a coroutine have it scheduled on the running event loop.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event_type: Union[EventType, str], handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(_event_key(event_type), [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event_type: Union[EventType, str], handler: EventHandler) -> None:
        key = _event_key(event_type)
        handlers = self._handlers.get(key)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[key]

    def emit(self, event: DomainEvent) -> None:
        key = _event_key(event.type)
        for handler in list(self._handlers.get(key, [])):
            try:
                result = handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {key}: {e}", exc_info=True)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(key, result)

    def _schedule(self, key: str, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(f"Async handler for {key} dropped: no running event loop")
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_task_done(key, t))

    def _on_task_done(self, key: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in async event handler for {key}: {error}")

    def remove_all_listeners(self, event_type: Optional[Union[EventType, str]] = None) -> None:
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(_event_key(event_type), None)

    def listener_count(self, event_type: Union[EventType, str]) -> int:
        return len(self._handlers.get(_event_key(event_type), []))

    def event_types(self) -> List[str]:
        return list(self._handlers.keys())


class RequestIdGenerator:
    """Generates per-process request ids of the form ``req_<ms>_<n>``.

    The sequence number is shared by every generator in the process.
    """

    def generate(self) -> str:
        return f"req_{int(time.time() * 1000)}_{next(_request_sequence)}"


class PerformanceMetrics:
    """Latency and error counts aggregated per operation key."""

    def __init__(self):
        self._metrics: Dict[str, Dict[str, float]] = {}

    def record(self, operation: str, duration_ms: float, success: bool = True) -> None:
        entry = self._metrics.setdefault(
            operation,
            {"count": 0, "total_time": 0.0, "min_time": float("inf"), "max_time": 0.0, "errors": 0},
        )
        entry["count"] += 1
        entry["total_time"] += duration_ms
        entry["min_time"] = min(entry["min_time"], duration_ms)
        entry["max_time"] = max(entry["max_time"], duration_ms)
        if not success:
            entry["errors"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        result = {}
        for operation, entry in self._metrics.items():
            count = entry["count"]
            result[operation] = {
                "count": count,
                "average_time": entry["total_time"] / count,
                "min_time": 0.0 if entry["min_time"] == float("inf") else entry["min_time"],
                "max_time": entry["max_time"],
                "error_rate": entry["errors"] / count,
            }
        return result

    def reset(self) -> None:
        self._metrics.clear()


class RateLimitTracker:
    """Last server-reported rate limit snapshot per endpoint."""

    def __init__(self):
        self._limits: Dict[str, Dict[str, float]] = {}

    def update(self, endpoint: str, limit: int, remaining: int, reset_time: float) -> None:
        self._limits[endpoint] = {"limit": limit, "remaining": remaining, "reset_time": reset_time}

    def get_reset_time(self, endpoint: str) -> float:
        return self._limits.get(endpoint, {}).get("reset_time", 0.0)

    def is_rate_limited(self, endpoint: str) -> bool:
        entry = self._limits.get(endpoint)
        return entry is not None and entry["remaining"] <= 0

    def get_all_limits(self) -> Dict[str, Dict[str, float]]:
        return {endpoint: dict(entry) for endpoint, entry in self._limits.items()}

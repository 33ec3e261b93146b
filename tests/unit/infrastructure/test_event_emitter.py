import asyncio
import re

import pytest
from unittest.mock import MagicMock

from pcopeople.domain.events.api_events import CacheHit, EventType, RequestStarted
from pcopeople.infrastructure.monitoring.event_emitter import (
    EventEmitter,
    PerformanceMetrics,
    RateLimitTracker,
    RequestIdGenerator,
)


def test_emit_calls_handlers_for_matching_type(event_emitter: EventEmitter):
    handler = MagicMock()
    other = MagicMock()
    event_emitter.on(EventType.REQUEST_START, handler)
    event_emitter.on("cache:hit", other)

    event = RequestStarted(method="GET", endpoint="/people", request_id="req_1")
    event_emitter.emit(event)

    handler.assert_called_once_with(event)
    other.assert_not_called()


def test_string_and_enum_keys_are_interchangeable(event_emitter: EventEmitter):
    handler = MagicMock()
    event_emitter.on("cache:hit", handler)
    assert event_emitter.listener_count(EventType.CACHE_HIT) == 1

    event_emitter.off(EventType.CACHE_HIT, handler)
    assert event_emitter.listener_count("cache:hit") == 0
    assert event_emitter.event_types() == []


def test_handler_errors_are_logged_not_raised(event_emitter: EventEmitter, caplog):
    failing = MagicMock(side_effect=RuntimeError("observer broke"))
    after = MagicMock()
    event_emitter.on(EventType.CACHE_HIT, failing)
    event_emitter.on(EventType.CACHE_HIT, after)

    event_emitter.emit(CacheHit(key="field_definitions"))

    after.assert_called_once()
    assert "observer broke" in caplog.text


def test_remove_all_listeners(event_emitter: EventEmitter):
    event_emitter.on(EventType.CACHE_HIT, MagicMock())
    event_emitter.on(EventType.CACHE_MISS, MagicMock())

    event_emitter.remove_all_listeners(EventType.CACHE_HIT)
    assert event_emitter.event_types() == ["cache:miss"]

    event_emitter.remove_all_listeners()
    assert event_emitter.event_types() == []


@pytest.mark.asyncio
async def test_async_handlers_are_scheduled(event_emitter: EventEmitter):
    received = []

    async def handler(event):
        received.append(event.key)

    event_emitter.on(EventType.CACHE_HIT, handler)
    event_emitter.emit(CacheHit(key="k"))
    await asyncio.sleep(0)

    assert received == ["k"]


def test_request_ids_are_unique_and_formatted():
    generator = RequestIdGenerator()
    first, second = generator.generate(), generator.generate()
    assert first != second
    assert re.fullmatch(r"req_\d+_\d+", first)


def test_request_ids_stay_unique_across_generators():
    ids = {RequestIdGenerator().generate() for _ in range(50)}
    assert len(ids) == 50


def test_performance_metrics_aggregate_per_key():
    metrics = PerformanceMetrics()
    metrics.record("GET /people", 10.0)
    metrics.record("GET /people", 30.0, success=False)

    snapshot = metrics.get_metrics()["GET /people"]
    assert snapshot["count"] == 2
    assert snapshot["average_time"] == 20.0
    assert snapshot["min_time"] == 10.0
    assert snapshot["max_time"] == 30.0
    assert snapshot["error_rate"] == 0.5

    metrics.reset()
    assert metrics.get_metrics() == {}


def test_rate_limit_tracker():
    tracker = RateLimitTracker()
    tracker.update("/people", limit=100, remaining=0, reset_time=123.0)

    assert tracker.is_rate_limited("/people")
    assert tracker.get_reset_time("/people") == 123.0
    assert not tracker.is_rate_limited("/emails")
    assert tracker.get_all_limits() == {"/people": {"limit": 100, "remaining": 0, "reset_time": 123.0}}

import asyncio
import base64
import json

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from pcopeople.core.exceptions import ErrorCategory, PcoError
from pcopeople.domain.events.api_events import EventType
from pcopeople.domain.models.resources import Resource
from pcopeople.infrastructure.config.settings import OAuthAuth, PcoClientConfig, RetrySettings
from pcopeople.infrastructure.http.http_client import (
    PcoHttpClient,
    build_json_api_body,
    resource_type_from_endpoint,
)
from pcopeople.infrastructure.resilience.api_retry import ApiRetryService
from pcopeople.infrastructure.resilience.rate_limiter import PcoRateLimiter

BASE_URL = "https://api.planningcenteronline.com/people/v2"


def make_client(config, event_emitter, handler, rate_limiter=None, retry_service=None) -> PcoHttpClient:
    return PcoHttpClient(
        config,
        event_emitter,
        rate_limiter=rate_limiter,
        transport=httpx.MockTransport(handler),
        retry_service=retry_service,
    )


def record_events(event_emitter, *event_types):
    seen = []
    for event_type in event_types:
        event_emitter.on(event_type, seen.append)
    return seen


# --- JSON:API envelope ---

@pytest.mark.parametrize("endpoint, expected", [
    ("/people", "Person"),
    ("/people/123", "Person"),
    ("/people/123/emails", "Email"),
    ("/people/$0.id/phone_numbers", "PhoneNumber"),
    ("/people/1/field_data/9", "FieldDatum"),
    ("/field_definitions", "FieldDefinition"),
    ("/people/1/addresses", "Address"),
])
def test_resource_type_from_endpoint(endpoint, expected):
    assert resource_type_from_endpoint(endpoint) == expected


def test_envelope_excludes_read_only_keys():
    body = build_json_api_body("/people/1/emails", {
        "id": "99",
        "type": "Email",
        "created_at": "2024-01-01",
        "address": "a@example.com",
        "primary": True,
    })
    assert body == {"data": {"type": "Email", "attributes": {"address": "a@example.com", "primary": True}}}


def test_envelope_accepts_resources_and_wrapped_attributes():
    resource = Resource(type="Person", id="5", attributes={"first_name": "Ada", "updated_at": "x"})
    assert build_json_api_body("/people/5", resource) == {
        "data": {"type": "Person", "attributes": {"first_name": "Ada"}}
    }

    wrapped = {"attributes": {"value": "blue"}, "relationships": {"field_definition": {"data": {"id": "3"}}}}
    body = build_json_api_body("/people/5/field_data", wrapped)
    assert body["data"]["type"] == "FieldDatum"
    assert body["data"]["relationships"]["field_definition"]["data"]["id"] == "3"


def test_envelope_rejects_non_mapping_data():
    with pytest.raises(TypeError):
        build_json_api_body("/people", ["not", "a", "mapping"])


# --- Request pipeline ---

@pytest.mark.asyncio
async def test_get_sends_basic_auth_once_and_parses_body(client_config, event_emitter, json_response):
    client_config.headers = {"authorization": "should be replaced", "X-Custom": "1"}
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return json_response(200, {"data": {"type": "Person", "id": "1", "attributes": {}}})

    client = make_client(client_config, event_emitter, handler)
    response = await client.request("GET", "/people/1", params={"include": "emails", "page": None})
    await client.aclose()

    request = captured[0]
    expected = "Basic " + base64.b64encode(b"app-id:app-secret").decode()
    assert request.headers.get_list("authorization") == [expected]
    assert request.headers["x-custom"] == "1"
    assert str(request.url) == f"{BASE_URL}/people/1?include=emails"
    assert response.status == 200
    assert response.data["data"]["id"] == "1"
    assert response.request_id.startswith("req_")


@pytest.mark.asyncio
async def test_post_wraps_data_in_envelope(client_config, event_emitter, json_response):
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return json_response(201, {"data": {"type": "Person", "id": "7", "attributes": {"first_name": "Ada"}}})

    client = make_client(client_config, event_emitter, handler)
    await client.request("POST", "/people", data={"first_name": "Ada", "id": "ignored"})

    assert bodies == [{"data": {"type": "Person", "attributes": {"first_name": "Ada"}}}]


@pytest.mark.asyncio
async def test_delete_returns_no_data(client_config, event_emitter):
    client = make_client(client_config, event_emitter, lambda request: httpx.Response(204))
    response = await client.request("DELETE", "/people/1")
    assert response.data is None
    assert response.status == 204


@pytest.mark.asyncio
async def test_lifecycle_events_and_metrics(client_config, event_emitter, json_response):
    events = record_events(event_emitter, EventType.REQUEST_START, EventType.REQUEST_COMPLETE)
    client = make_client(client_config, event_emitter, lambda request: json_response(200, {"data": []}))

    await client.request("GET", "/people")

    assert [e.type for e in events] == [EventType.REQUEST_START, EventType.REQUEST_COMPLETE]
    assert events[0].request_id == events[1].request_id
    assert events[1].status == 200
    assert client.get_performance_metrics()["GET /people"]["count"] == 1


@pytest.mark.asyncio
async def test_error_response_raises_classified_error(client_config, event_emitter, json_response):
    failures = record_events(event_emitter, EventType.REQUEST_ERROR)
    body = {"errors": [{"title": "Invalid", "detail": "Email address is invalid"}]}
    client = make_client(client_config, event_emitter, lambda request: json_response(422, body))

    with pytest.raises(PcoError) as exc_info:
        await client.request("POST", "/people/1/emails", data={"address": "nope"})

    error = exc_info.value
    assert error.status == 422
    assert error.category == ErrorCategory.VALIDATION
    assert error.message == "Email address is invalid"
    assert error.context["endpoint"] == "/people/1/emails"
    assert len(failures) == 1
    assert client.get_performance_metrics()["POST /people/1/emails"]["error_rate"] == 1.0


@pytest.mark.asyncio
async def test_failures_also_emit_error_events(client_config, event_emitter, json_response):
    errors = record_events(event_emitter, EventType.ERROR)
    client = make_client(client_config, event_emitter, lambda request: json_response(500, {}))

    with pytest.raises(PcoError) as exc_info:
        await client.request("GET", "/people/9")

    assert len(errors) == 1
    assert errors[0].error is exc_info.value
    assert errors[0].operation == "GET /people/9"
    assert errors[0].context["request_id"].startswith("req_")


@pytest.mark.asyncio
async def test_timeout_maps_to_timeout_error(client_config, event_emitter):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(client_config, event_emitter, handler)
    with pytest.raises(PcoError) as exc_info:
        await client.request("GET", "/people", timeout=1.5)

    assert exc_info.value.status == 408
    assert exc_info.value.category == ErrorCategory.TIMEOUT
    assert exc_info.value.message == "Request timed out after 1500ms"


@pytest.mark.asyncio
async def test_transport_failure_maps_to_network_error(client_config, event_emitter):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(client_config, event_emitter, handler)
    with pytest.raises(PcoError) as exc_info:
        await client.request("GET", "/people")

    assert exc_info.value.status == 0
    assert exc_info.value.category == ErrorCategory.NETWORK


@pytest.mark.asyncio
async def test_server_headers_feed_the_limiter(client_config, event_emitter, json_response, fake_clock):
    limiter = PcoRateLimiter(clock=fake_clock)
    headers = {
        "X-PCO-API-Request-Rate-Limit": "100",
        "X-PCO-API-Request-Rate-Period": "20",
        "X-PCO-API-Request-Rate-Count": "57",
        "Retry-After": "0",
    }
    client = make_client(client_config, event_emitter, lambda request: json_response(200, {}, headers), rate_limiter=limiter)

    await client.request("GET", "/people")

    assert limiter.limit == 100
    assert limiter.request_count == 0
    assert client.get_rate_limit_info()["/people"]["limit"] == 100


@pytest.mark.asyncio
async def test_rate_limited_request_waits_and_is_resent(client_config, event_emitter, json_response, fake_clock, patch_sleep):
    limiter = PcoRateLimiter(clock=fake_clock)
    events = record_events(event_emitter, EventType.RATE_LIMIT, EventType.RATE_AVAILABLE)
    responses = iter([
        json_response(429, {"errors": [{"detail": "Rate limit exceeded"}]}, {"Retry-After": "3"}),
        json_response(200, {"data": []}),
    ])
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return next(responses)

    client = make_client(client_config, event_emitter, handler, rate_limiter=limiter)
    response = await client.request("GET", "/people")

    assert response.status == 200
    assert len(calls) == 2
    assert sum(patch_sleep) == pytest.approx(3.0)
    assert [e.type for e in events] == [EventType.RATE_LIMIT, EventType.RATE_AVAILABLE]
    assert events[0].wait_seconds == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_rate_limited_without_headers_sits_out_window(client_config, event_emitter, json_response, fake_clock, patch_sleep):
    limiter = PcoRateLimiter(limit=100, window_seconds=20.0, clock=fake_clock)
    responses = iter([json_response(429, {}), json_response(200, {"data": []})])
    client = make_client(client_config, event_emitter, lambda request: next(responses), rate_limiter=limiter)

    response = await client.request("GET", "/people")

    assert response.status == 200
    assert sum(patch_sleep) == pytest.approx(20.0)


@pytest.mark.asyncio
async def test_oauth_401_refreshes_token_and_retries(event_emitter, json_response):
    on_refresh = MagicMock()
    auth = OAuthAuth(access_token="old", refresh_token="refresh-1", client_id="cid", client_secret="csecret", on_refresh=on_refresh)
    config = PcoClientConfig(auth=auth, retry=RetrySettings(enabled=False))
    refreshed = record_events(event_emitter, EventType.AUTH_REFRESH)
    succeeded = record_events(event_emitter, EventType.AUTH_SUCCESS)
    seen_tokens = []
    token_forms = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            token_forms.append(request.content.decode())
            assert request.headers["content-type"] == "application/x-www-form-urlencoded"
            return json_response(200, {"access_token": "new", "refresh_token": "refresh-2"})
        seen_tokens.append(request.headers["authorization"])
        if request.headers["authorization"] == "Bearer old":
            return json_response(401, {"errors": [{"detail": "expired"}]})
        return json_response(200, {"data": []})

    client = make_client(config, event_emitter, handler)
    response = await client.request("GET", "/people")

    assert response.status == 200
    assert seen_tokens == ["Bearer old", "Bearer new"]
    assert "grant_type=refresh_token" in token_forms[0]
    assert auth.access_token == "new"
    assert auth.refresh_token == "refresh-2"
    on_refresh.assert_called_once()
    assert refreshed[0].success is True
    assert [e.auth_type for e in succeeded] == ["oauth"]


@pytest.mark.asyncio
async def test_oauth_refresh_failure_raises_original_401(event_emitter, json_response):
    on_failure = MagicMock()
    auth = OAuthAuth(access_token="old", refresh_token="bad", on_refresh_failure=on_failure)
    config = PcoClientConfig(auth=auth, retry=RetrySettings(enabled=False))
    auth_failures = record_events(event_emitter, EventType.AUTH_FAILURE)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return json_response(400, {"error": "invalid_grant"})
        return json_response(401, {"errors": [{"detail": "expired"}]})

    client = make_client(config, event_emitter, handler)
    with pytest.raises(PcoError) as exc_info:
        await client.request("GET", "/people")

    assert exc_info.value.status == 401
    assert len(auth_failures) == 1
    on_failure.assert_called_once()


@pytest.mark.asyncio
async def test_personal_access_token_401_is_not_refreshed(client_config, event_emitter, json_response):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return json_response(401, {})

    client = make_client(client_config, event_emitter, handler)
    with pytest.raises(PcoError):
        await client.request("GET", "/people")
    assert calls == ["/people/v2/people"]


@pytest.mark.asyncio
async def test_get_requests_are_retried_on_server_errors(client_config, event_emitter, json_response):
    sleep = AsyncMock()
    retry = ApiRetryService(max_retries=3, base_delay=0.5, event_emitter=event_emitter, sleep=sleep)
    responses = iter([json_response(503, {}), json_response(200, {"data": []})])
    client = make_client(client_config, event_emitter, lambda request: next(responses), retry_service=retry)

    response = await client.request("GET", "/people")

    assert response.status == 200
    sleep.assert_awaited_once_with(0.5)


@pytest.mark.asyncio
async def test_writes_are_not_retried(client_config, event_emitter, json_response):
    retry = ApiRetryService(max_retries=3, sleep=AsyncMock())
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return json_response(503, {})

    client = make_client(client_config, event_emitter, handler, retry_service=retry)
    with pytest.raises(PcoError):
        await client.request("POST", "/people", data={"first_name": "Ada"})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_concurrent_requests_respect_the_window(client_config, event_emitter, json_response, fake_clock, patch_sleep):
    limiter = PcoRateLimiter(limit=2, window_seconds=60, clock=fake_clock)
    client = make_client(client_config, event_emitter, lambda request: json_response(200, {"data": []}), rate_limiter=limiter)

    responses = await asyncio.gather(*(client.request("GET", "/people") for _ in range(5)))

    assert [r.status for r in responses] == [200] * 5
    # Five requests at two per window need two extra windows
    assert patch_sleep == [pytest.approx(60.0), pytest.approx(60.0)]
    assert fake_clock.now == pytest.approx(1120.0)


# --- Timeouts against a live socket ---

@pytest_asyncio.fixture
async def slow_server():
    """Local HTTP server that answers every request after 0.3 seconds."""
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await reader.readuntil(b"\r\n\r\n")
        await asyncio.sleep(0.3)
        body = b'{"data": []}'
        writer.write(
            b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\nConnection: close\r\n"
            + f"Content-Length: {len(body)}\r\n\r\n".encode()
            + body
        )
        try:
            await writer.drain()
        except ConnectionError:
            pass
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield f"http://127.0.0.1:{port}"
    server.close()
    await server.wait_closed()


@pytest.mark.asyncio
async def test_per_call_timeout_can_exceed_the_configured_default(client_config, event_emitter, slow_server):
    config = PcoClientConfig(auth=client_config.auth, base_url=slow_server, timeout_seconds=0.1, retry=RetrySettings(enabled=False))
    client = PcoHttpClient(config, event_emitter)

    try:
        response = await client.request("GET", "/people", timeout=2.0)
        assert response.status == 200

        with pytest.raises(PcoError) as exc_info:
            await client.request("GET", "/people")
        assert exc_info.value.category == ErrorCategory.TIMEOUT
    finally:
        await client.aclose()

import httpx
import pytest

from pcopeople import PcoClient
from pcopeople.domain.events.api_events import EventType
from pcopeople.domain.models.batch import BatchOptions
from pcopeople.infrastructure.config.settings import PcoClientConfig, PersonalAccessTokenAuth, RetrySettings
from pcopeople.infrastructure.resilience.rate_limiter import PcoRateLimiter


def api(request: httpx.Request) -> httpx.Response:
    if request.method == "POST" and request.url.path.endswith("/people"):
        return httpx.Response(
            201,
            json={"data": {"type": "Person", "id": "5", "attributes": {"first_name": "Ada"}}},
            headers={
                "X-PCO-API-Request-Rate-Limit": "100",
                "X-PCO-API-Request-Rate-Count": "7",
                "Retry-After": "0",
            },
        )
    return httpx.Response(200, json={"data": []})


@pytest.mark.asyncio
async def test_config_event_handlers_are_registered():
    started = []
    config = PcoClientConfig(
        auth=PersonalAccessTokenAuth(app_id="app-id", secret="app-secret"),
        retry=RetrySettings(enabled=False),
        events={EventType.REQUEST_START.value: started.append},
    )

    async with PcoClient(config, transport=httpx.MockTransport(api)) as client:
        await client.people.search(name="Ada")

    assert [e.endpoint for e in started] == ["/people"]


@pytest.mark.asyncio
async def test_components_share_one_pipeline(client_config):
    limiter = PcoRateLimiter(limit=50, window_seconds=10)

    async with PcoClient(client_config, rate_limiter=limiter, transport=httpx.MockTransport(api)) as client:
        assert client.rate_limiter is limiter
        assert client.matcher is client.people.matcher
        assert client.batch.people is client.people
        assert client.http.retry_service is None

        summary = await client.execute_batch([{"type": "create_person", "data": {"first_name": "Ada"}}], BatchOptions())

        assert summary.results[0].data.id == "5"
        assert client.get_performance_metrics()["POST /people"]["count"] == 1
        info = client.get_rate_limit_info()
        assert info["limiter"]["limit"] == 100
        assert "/people" in info["endpoints"]


def test_retry_service_follows_config(client_config):
    client_config.retry = RetrySettings(enabled=True, max_retries=5)
    client = PcoClient(client_config, transport=httpx.MockTransport(api))
    assert client.http.retry_service.max_retries == 5


@pytest.mark.asyncio
async def test_aclose_closes_the_http_client(client_config):
    client = PcoClient(client_config, transport=httpx.MockTransport(api))
    await client.aclose()
    assert client.http._client.is_closed

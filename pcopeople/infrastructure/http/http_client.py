"""Request pipeline for the People API.

Every call goes through `PcoHttpClient.request`, which waits on the rate
limiter, authenticates, wraps write payloads in a JSON:API envelope, feeds
response headers back into the limiter, transparently handles 429 and
(OAuth) 401 responses, and reports lifecycle events and latency metrics.
"""

import asyncio
import logging
import re
import time
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from pcopeople.core.exceptions import PcoError, TokenRefreshError
from pcopeople.domain.events.api_events import (
    AuthFailed,
    AuthRefreshed,
    AuthSucceeded,
    ErrorOccurred,
    RateAvailable,
    RateLimited,
    RequestCompleted,
    RequestFailed,
    RequestStarted,
)
from pcopeople.domain.models.common import (
    RATE_COUNT_HEADER,
    RATE_LIMIT_HEADER,
    RETRY_AFTER_HEADER,
    RequestId,
)
from pcopeople.domain.models.resources import HttpResponse, Resource
from pcopeople.infrastructure.config.settings import OAuthAuth, PcoClientConfig
from pcopeople.infrastructure.http.auth import (
    build_authorization_header,
    notify_refresh_failure,
    refresh_access_token,
)
from pcopeople.infrastructure.monitoring.event_emitter import (
    EventEmitter,
    PerformanceMetrics,
    RateLimitTracker,
    RequestIdGenerator,
)
from pcopeople.infrastructure.resilience.api_retry import ApiRetryService
from pcopeople.infrastructure.resilience.rate_limiter import PcoRateLimiter

logger = logging.getLogger(__name__)

WRITE_METHODS = ("POST", "PATCH")
# Methods retried on transient failures
RETRYABLE_METHODS = ("GET",)

# Keys that never travel inside `attributes`
READ_ONLY_KEYS = frozenset({"id", "type", "links", "meta", "created_at", "updated_at"})

IRREGULAR_RESOURCE_TYPES = {
    "people": "Person",
    "addresses": "Address",
    "campuses": "Campus",
    "field_data": "FieldDatum",
}

_WORD_SEPARATORS = re.compile(r"[-_]")


# --- JSON:API envelope ---

def _is_identifier_segment(segment: str) -> bool:
    return segment.isdigit() or segment.startswith("$")


def _singular_pascal_case(segment: str) -> str:
    irregular = IRREGULAR_RESOURCE_TYPES.get(segment.lower())
    if irregular:
        return irregular
    pascal = "".join(word[:1].upper() + word[1:] for word in _WORD_SEPARATORS.split(segment) if word)
    if pascal.endswith("ies") and len(pascal) > 3:
        return pascal[:-3] + "y"
    if pascal.endswith("s") and len(pascal) > 3:
        return pascal[:-1]
    return pascal


def resource_type_from_endpoint(endpoint: str) -> str:
    """Derives the JSON:API type of the resource an endpoint writes.

    ``/people`` -> ``Person``, ``/people/1/emails`` -> ``Email``,
    ``/people/1/phone_numbers`` -> ``PhoneNumber``.
    """
    path = urlsplit(endpoint).path if "://" in endpoint else endpoint.split("?", 1)[0]
    for segment in reversed([s for s in path.split("/") if s]):
        if not _is_identifier_segment(segment):
            return _singular_pascal_case(segment)
    raise ValueError(f"Cannot derive a resource type from endpoint '{endpoint}'")


def build_json_api_body(endpoint: str, data: Any) -> Dict[str, Any]:
    """Wraps plain attributes (or a fetched Resource) in a JSON:API document."""
    relationships: Optional[Mapping[str, Any]] = None
    if isinstance(data, Resource):
        raw_attributes: Mapping[str, Any] = data.attributes
        relationships = data.relationships
    elif isinstance(data, Mapping):
        if isinstance(data.get("attributes"), Mapping):
            raw_attributes = data["attributes"]
            relationships = data.get("relationships")
        else:
            raw_attributes = {k: v for k, v in data.items() if k != "relationships"}
            relationships = data.get("relationships")
    else:
        raise TypeError(f"Request data must be a mapping or Resource, got {type(data).__name__}")

    resource: Dict[str, Any] = {
        "type": resource_type_from_endpoint(endpoint),
        "attributes": {k: v for k, v in raw_attributes.items() if k not in READ_ONLY_KEYS},
    }
    if relationships:
        resource["relationships"] = dict(relationships)
    return {"data": resource}


# --- Client ---

class PcoHttpClient:
    """Rate-limit-aware async HTTP client built on `httpx.AsyncClient`."""

    def __init__(
        self,
        config: PcoClientConfig,
        event_emitter: EventEmitter,
        rate_limiter: Optional[PcoRateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_service: Optional[ApiRetryService] = None,
    ):
        """Initializes the client.

        Args:
            config: Client configuration (auth, base URL, timeout, headers).
            event_emitter: Receives request, auth and rate events.
            rate_limiter: Limiter shared by all requests (built from config if None).
            transport: Optional httpx transport, e.g. `httpx.MockTransport` in tests.
            retry_service: Retries GET requests on 5xx, timeout and network errors.
        """
        self.config = config
        self.event_emitter = event_emitter
        self.rate_limiter = rate_limiter or PcoRateLimiter(
            config.rate_limit.limit, config.rate_limit.window_seconds
        )
        self.request_ids = RequestIdGenerator()
        self.performance_metrics = PerformanceMetrics()
        self.rate_limit_tracker = RateLimitTracker()
        self.retry_service = retry_service
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(config.timeout_seconds),
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Sends one logical request and returns its parsed response.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE).
            endpoint: Path relative to the base URL, or an absolute URL.
            data: Attributes to send with POST/PATCH.
            params: Query parameters; `None` values are dropped.
            headers: Extra request headers.
            timeout: Per-call timeout in seconds (defaults to config).

        Returns:
            The parsed response.

        Raises:
            PcoError: On a non-2xx response, a timeout or a transport failure.
        """
        method = method.upper()
        request_id = RequestId(self.request_ids.generate())
        metric_key = f"{method} {endpoint}"
        start = time.perf_counter()

        self.event_emitter.emit(RequestStarted(method=method, endpoint=endpoint, request_id=request_id))
        try:
            send_args = (method, endpoint, data, params, headers, timeout, request_id)
            if self.retry_service is not None and method in RETRYABLE_METHODS:
                response = await self.retry_service.execute_with_retry(
                    self._send_with_recovery, *send_args, operation_name=metric_key
                )
            else:
                response = await self._send_with_recovery(*send_args)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self.performance_metrics.record(metric_key, duration_ms, success=False)
            logger.debug(f"{metric_key} failed after {duration_ms:.1f}ms ({request_id}): {e}")
            self.event_emitter.emit(
                RequestFailed(method=method, endpoint=endpoint, error=e, duration_ms=duration_ms, request_id=request_id)
            )
            self.event_emitter.emit(
                ErrorOccurred(error=e, operation=metric_key, context={"request_id": request_id, "duration_ms": duration_ms})
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.duration_ms = duration_ms
        self.performance_metrics.record(metric_key, duration_ms, success=True)
        self._update_rate_limit_tracking(endpoint, response.headers)
        self.event_emitter.emit(
            RequestCompleted(
                method=method,
                endpoint=endpoint,
                status=response.status,
                duration_ms=duration_ms,
                request_id=request_id,
            )
        )
        return response

    async def _send_with_recovery(
        self,
        method: str,
        endpoint: str,
        data: Any,
        params: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
        timeout: Optional[float],
        request_id: RequestId,
    ) -> HttpResponse:
        refresh_attempted = False
        while True:
            await self.rate_limiter.wait_for_availability()
            # Claim the slot before yielding so concurrent senders see it
            self.rate_limiter.record_request()
            response = await self._send_once(method, endpoint, data, params, headers, timeout, request_id)
            self.rate_limiter.apply_server_headers(response.headers)

            if response.status_code == 429:
                await self._wait_after_rate_limit(request_id, response.headers)
                continue

            if response.status_code == 401 and isinstance(self.config.auth, OAuthAuth) and not refresh_attempted:
                refresh_attempted = True
                await self._refresh_or_raise(response, method, endpoint, request_id)
                continue

            if response.is_error:
                raise self._error_from_response(response, method, endpoint, request_id)

            return HttpResponse(
                data=self._parse_body(method, response),
                status=response.status_code,
                headers=dict(response.headers),
                request_id=request_id,
            )

    async def _send_once(
        self,
        method: str,
        endpoint: str,
        data: Any,
        params: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
        timeout: Optional[float],
        request_id: RequestId,
    ) -> httpx.Response:
        url = self._build_url(endpoint)
        query = {k: v for k, v in (params or {}).items() if v is not None}
        body = build_json_api_body(endpoint, data) if method in WRITE_METHODS and data is not None else None
        effective_timeout = timeout or self.config.timeout_seconds

        request_headers = {
            k: v
            for k, v in {**self.config.headers, **(headers or {})}.items()
            if k.lower() != "authorization"
        }
        request_headers["Authorization"] = build_authorization_header(self.config.auth)

        context = {"method": method, "endpoint": endpoint, "request_id": request_id}
        try:
            return await asyncio.wait_for(
                self._client.request(
                    method,
                    url,
                    params=query,
                    json=body,
                    headers=request_headers,
                    timeout=httpx.Timeout(effective_timeout),
                ),
                timeout=effective_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise PcoError.from_timeout(effective_timeout, context=context) from e
        except httpx.TransportError as e:
            raise PcoError.from_network_error(e, context=context) from e

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        return f"{self.config.base_url}{endpoint}"

    @staticmethod
    def _parse_body(method: str, response: httpx.Response) -> Any:
        if method == "DELETE" or response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _wait_after_rate_limit(self, request_id: RequestId, headers: httpx.Headers) -> None:
        if RETRY_AFTER_HEADER not in headers and self.rate_limiter.can_proceed():
            # 429 without Retry-After: sit out the rest of the window
            self.rate_limiter.mark_exhausted()
        info = self.rate_limiter.get_rate_limit_info()
        wait_seconds = self.rate_limiter.time_until_available()
        logger.warning(f"Rate limited (429). Waiting {wait_seconds:.2f}s before retrying ({request_id}).")
        self.event_emitter.emit(
            RateLimited(
                limit=info["limit"],
                remaining=info["remaining"],
                wait_seconds=wait_seconds,
                request_id=request_id,
            )
        )
        await self.rate_limiter.wait_for_availability()
        info = self.rate_limiter.get_rate_limit_info()
        self.event_emitter.emit(RateAvailable(limit=info["limit"], remaining=info["remaining"], request_id=request_id))

    async def _refresh_or_raise(
        self,
        response: httpx.Response,
        method: str,
        endpoint: str,
        request_id: RequestId,
    ) -> None:
        auth = self.config.auth
        try:
            await refresh_access_token(self._client, auth, self.config.base_url)
        except TokenRefreshError as refresh_error:
            logger.warning(f"Token refresh failed: {refresh_error}")
            self.event_emitter.emit(AuthRefreshed(success=False, request_id=request_id))
            self.event_emitter.emit(AuthFailed(auth_type=auth.type.value, error=refresh_error))
            await notify_refresh_failure(auth, refresh_error)
            raise self._error_from_response(response, method, endpoint, request_id) from refresh_error
        logger.info("OAuth access token refreshed; retrying request.")
        self.event_emitter.emit(AuthRefreshed(success=True, request_id=request_id))
        self.event_emitter.emit(AuthSucceeded(auth_type=auth.type.value))

    @staticmethod
    def _error_from_response(
        response: httpx.Response,
        method: str,
        endpoint: str,
        request_id: RequestId,
    ) -> PcoError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        return PcoError.from_response(
            response.status_code,
            response.reason_phrase,
            body,
            response.headers,
            context={"method": method, "endpoint": endpoint, "request_id": request_id},
        )

    def _update_rate_limit_tracking(self, endpoint: str, headers: Mapping[str, str]) -> None:
        lowered = {k.lower(): v for k, v in headers.items()}
        limit = lowered.get(RATE_LIMIT_HEADER.lower())
        count = lowered.get(RATE_COUNT_HEADER.lower())
        retry_after = lowered.get(RETRY_AFTER_HEADER.lower())
        if not (limit and count and retry_after):
            return
        try:
            limit_value = int(limit)
            self.rate_limit_tracker.update(
                endpoint,
                limit_value,
                max(0, limit_value - int(count)),
                time.time() + int(retry_after),
            )
        except ValueError:
            logger.debug(f"Ignoring malformed rate limit headers for {endpoint}")

    # --- Introspection ---

    def get_performance_metrics(self) -> Dict[str, Dict[str, float]]:
        return self.performance_metrics.get_metrics()

    def get_rate_limit_info(self) -> Dict[str, Dict[str, float]]:
        return self.rate_limit_tracker.get_all_limits()

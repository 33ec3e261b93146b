"""PcoClient: the library entry point.

Wires configuration, the rate limiter, the request pipeline, pagination, the
People/Fields modules, the batch executor and the person matcher together.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import httpx

from pcopeople.core.services.batch_executor import BatchExecutor
from pcopeople.core.services.person_matcher import PersonMatcher
from pcopeople.domain.events.api_events import DomainEvent, EventType
from pcopeople.domain.models.batch import BatchOperation, BatchOptions, BatchSummary
from pcopeople.domain.models.resources import HttpResponse
from pcopeople.infrastructure.api.fields import FieldsModule
from pcopeople.infrastructure.api.people import PeopleModule
from pcopeople.infrastructure.cache.field_cache import FieldDefinitionCache
from pcopeople.infrastructure.config.settings import PcoClientConfig
from pcopeople.infrastructure.http.http_client import PcoHttpClient
from pcopeople.infrastructure.http.pagination import PaginationHelper
from pcopeople.infrastructure.monitoring.event_emitter import EventEmitter, EventHandler
from pcopeople.infrastructure.resilience.api_retry import ApiRetryService
from pcopeople.infrastructure.resilience.rate_limiter import PcoRateLimiter

logger = logging.getLogger(__name__)


class PcoClient:
    """Async client for the Planning Center People API.

    Example:
        async with PcoClient(config) as client:
            person = await client.people.find_or_create(criteria)
    """

    def __init__(
        self,
        config: PcoClientConfig,
        rate_limiter: Optional[PcoRateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        event_emitter: Optional[EventEmitter] = None,
    ):
        """Initializes the client and all of its components.

        Args:
            config: Client configuration.
            rate_limiter: Limiter to share between clients (built from config if None).
            transport: Optional httpx transport (tests use `httpx.MockTransport`).
            event_emitter: Emitter to publish events on (a new one if None).
        """
        self.config = config
        self.event_emitter = event_emitter or EventEmitter()
        for event_type, handler in config.events.items():
            self.event_emitter.on(event_type, handler)

        retry_service = None
        if config.retry.enabled:
            retry_service = ApiRetryService(
                max_retries=config.retry.max_retries,
                base_delay=config.retry.base_delay,
                max_delay=config.retry.max_delay,
                event_emitter=self.event_emitter,
            )

        self.http = PcoHttpClient(
            config,
            self.event_emitter,
            rate_limiter=rate_limiter,
            transport=transport,
            retry_service=retry_service,
        )
        self.paginator = PaginationHelper(self.http)
        self.field_cache = FieldDefinitionCache(ttl_seconds=config.field_cache_ttl_seconds)
        self.people = PeopleModule(self.http, self.paginator, self.event_emitter)
        self.fields = FieldsModule(
            self.http,
            self.paginator,
            self.event_emitter,
            self.field_cache,
            use_cache=config.cache_field_definitions,
        )
        self.batch = BatchExecutor(self.people)
        logger.debug(f"PcoClient initialized for {config.base_url}")

    @property
    def matcher(self) -> PersonMatcher:
        return self.people.matcher

    @property
    def rate_limiter(self) -> PcoRateLimiter:
        return self.http.rate_limiter

    async def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Sends a raw request through the full pipeline (rate limiting, auth, events)."""
        return await self.http.request(method, endpoint, data=data, params=params, headers=headers, timeout=timeout)

    async def execute_batch(
        self,
        operations: Sequence[Union[BatchOperation, Mapping[str, Any]]],
        options: Optional[BatchOptions] = None,
    ) -> BatchSummary:
        return await self.batch.execute(operations, options)

    # --- Events ---

    def on(self, event_type: Union[EventType, str], handler: EventHandler) -> None:
        self.event_emitter.on(event_type, handler)

    def off(self, event_type: Union[EventType, str], handler: EventHandler) -> None:
        self.event_emitter.off(event_type, handler)

    def emit(self, event: DomainEvent) -> None:
        self.event_emitter.emit(event)

    # --- Monitoring ---

    def get_performance_metrics(self) -> Dict[str, Dict[str, float]]:
        return self.http.get_performance_metrics()

    def get_rate_limit_info(self) -> Dict[str, Any]:
        """Returns the limiter state plus the per-endpoint server snapshots."""
        return {
            "limiter": dict(self.http.rate_limiter.get_rate_limit_info()),
            "endpoints": self.http.get_rate_limit_info(),
        }

    # --- Lifecycle ---

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "PcoClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

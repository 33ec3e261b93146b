"""Pagination helpers for JSON:API collection endpoints."""

import asyncio
import logging
import math
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

from pcopeople.domain.models.resources import PaginationResult, Resource, ResourceList

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 1000
DEFAULT_PER_PAGE = 100
DEFAULT_PAGE_DELAY_SECONDS = 0.05

ProgressCallback = Callable[[int, int], Any]


class PaginationHelper:
    """Walks `links.next` across the pages of a collection."""

    def __init__(self, http: Any):
        """Initializes the helper.

        Args:
            http: A `PcoHttpClient` (anything with an async `request`).
        """
        self.http = http

    @staticmethod
    def _page_params(params: Optional[Mapping[str, Any]], page: int, per_page: int) -> Dict[str, Any]:
        merged = dict(params or {})
        merged["page"] = page
        merged["per_page"] = per_page
        return merged

    async def get_page(
        self,
        endpoint: str,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ResourceList:
        response = await self.http.request("GET", endpoint, params=self._page_params(params, page, per_page))
        return ResourceList.from_document(response.data)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        per_page: int = DEFAULT_PER_PAGE,
        on_progress: Optional[ProgressCallback] = None,
        delay: float = DEFAULT_PAGE_DELAY_SECONDS,
    ) -> PaginationResult:
        """Fetches pages until `links.next` disappears or `max_pages` is reached.

        Args:
            endpoint: Collection endpoint, e.g. ``/people``.
            params: Extra query parameters sent with every page.
            max_pages: Upper bound on the number of pages fetched.
            per_page: Page size.
            on_progress: Called as `on_progress(fetched, total)` after each page.
            delay: Seconds to sleep between pages.

        Returns:
            Every resource of every fetched page, in order.
        """
        start = time.perf_counter()
        all_data: List[Resource] = []
        total_count = 0
        pages_fetched = 0

        async for page in self._iter_pages(endpoint, params, max_pages, per_page, delay):
            pages_fetched += 1
            all_data.extend(page.data)
            if page.total_count:
                total_count = page.total_count
            if on_progress is not None:
                on_progress(len(all_data), total_count or len(all_data))

        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Fetched {len(all_data)} records from {endpoint} in {pages_fetched} pages")
        return PaginationResult(
            data=all_data,
            total_count=total_count,
            pages_fetched=pages_fetched,
            duration_ms=duration_ms,
        )

    async def stream_pages(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        per_page: int = DEFAULT_PER_PAGE,
        delay: float = DEFAULT_PAGE_DELAY_SECONDS,
    ) -> AsyncIterator[List[Resource]]:
        """Yields the resources of each page as soon as it arrives."""
        async for page in self._iter_pages(endpoint, params, max_pages, per_page, delay):
            yield page.data

    async def _iter_pages(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]],
        max_pages: int,
        per_page: int,
        delay: float,
    ) -> AsyncIterator[ResourceList]:
        page_number = 1
        has_more = True
        while has_more and page_number <= max_pages:
            page = await self.get_page(endpoint, page_number, per_page, params)
            yield page
            has_more = page.has_next
            page_number += 1
            if has_more and delay > 0:
                await asyncio.sleep(delay)

    async def get_all_pages_parallel(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        per_page: int = DEFAULT_PER_PAGE,
        max_concurrency: int = 3,
    ) -> PaginationResult:
        """Fetches the first page, then the remaining pages concurrently.

        Relies on `meta.total_count` to know how many pages exist.
        """
        start = time.perf_counter()
        first = await self.get_page(endpoint, 1, per_page, params)
        total_count = first.total_count or 0
        total_pages = min(math.ceil(total_count / per_page), max_pages) if per_page else 1

        all_data = list(first.data)
        if total_pages > 1:
            semaphore = asyncio.Semaphore(max_concurrency)

            async def fetch(page_number: int) -> List[Resource]:
                async with semaphore:
                    return (await self.get_page(endpoint, page_number, per_page, params)).data

            pages = await asyncio.gather(*(fetch(n) for n in range(2, total_pages + 1)))
            for page_data in pages:
                all_data.extend(page_data)

        return PaginationResult(
            data=all_data,
            total_count=total_count,
            pages_fetched=max(total_pages, 1),
            duration_ms=(time.perf_counter() - start) * 1000,
        )

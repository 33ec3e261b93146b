"""Shared plumbing for resource modules."""

import logging
from typing import Any, Dict, List, Mapping, Optional

from pcopeople.domain.models.resources import PaginationResult, Resource, ResourceList
from pcopeople.infrastructure.http.http_client import PcoHttpClient
from pcopeople.infrastructure.http.pagination import PaginationHelper
from pcopeople.infrastructure.monitoring.event_emitter import EventEmitter

logger = logging.getLogger(__name__)


def build_list_params(
    where: Optional[Mapping[str, Any]] = None,
    include: Optional[List[str]] = None,
    per_page: Optional[int] = None,
    page: Optional[int] = None,
) -> Dict[str, Any]:
    """Maps list options onto JSON:API query parameters (``where[field]``, ``include``, ...)."""
    params: Dict[str, Any] = {}
    for key, value in (where or {}).items():
        if value is not None:
            params[f"where[{key}]"] = value
    if include:
        params["include"] = ",".join(include)
    if per_page:
        params["per_page"] = per_page
    if page:
        params["page"] = page
    return params


class BaseModule:
    """Base class for API modules; parses JSON:API documents into resources."""

    def __init__(self, http: PcoHttpClient, paginator: PaginationHelper, event_emitter: EventEmitter):
        self.http = http
        self.paginator = paginator
        self.event_emitter = event_emitter

    async def _get_single(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Resource:
        response = await self.http.request("GET", endpoint, params=params)
        return Resource.from_json((response.data or {}).get("data") or {})

    async def _get_list(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> ResourceList:
        response = await self.http.request("GET", endpoint, params=params)
        return ResourceList.from_document(response.data)

    async def _create_resource(self, endpoint: str, data: Any, params: Optional[Mapping[str, Any]] = None) -> Resource:
        response = await self.http.request("POST", endpoint, data=data, params=params)
        return Resource.from_json((response.data or {}).get("data") or {})

    async def _update_resource(self, endpoint: str, data: Any, params: Optional[Mapping[str, Any]] = None) -> Resource:
        response = await self.http.request("PATCH", endpoint, data=data, params=params)
        return Resource.from_json((response.data or {}).get("data") or {})

    async def _delete_resource(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> None:
        await self.http.request("DELETE", endpoint, params=params)

    async def _get_all_pages(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        **pagination_options: Any,
    ) -> PaginationResult:
        return await self.paginator.get_all_pages(endpoint, params, **pagination_options)

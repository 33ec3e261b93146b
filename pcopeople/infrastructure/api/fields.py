"""Field definition and person field data endpoints."""

import logging
from typing import Any, Dict, List, Optional

from pcopeople.domain.events.api_events import CacheHit, CacheInvalidated, CacheMiss, CacheSet
from pcopeople.domain.models.resources import Resource, ResourceList
from pcopeople.infrastructure.api.base import BaseModule
from pcopeople.infrastructure.cache.field_cache import FieldDefinitionCache
from pcopeople.infrastructure.http.http_client import PcoHttpClient
from pcopeople.infrastructure.http.pagination import PaginationHelper
from pcopeople.infrastructure.monitoring.event_emitter import EventEmitter

logger = logging.getLogger(__name__)

FIELD_DEFINITIONS_CACHE_KEY = "field_definitions"


def _related_ids(resource: Resource, relationship: str) -> List[str]:
    data = (resource.relationships.get(relationship) or {}).get("data")
    if isinstance(data, list):
        return [str(item.get("id")) for item in data if isinstance(item, dict)]
    if isinstance(data, dict) and data.get("id") is not None:
        return [str(data["id"])]
    return []


class FieldsModule(BaseModule):
    """Custom field definitions (cached) and per-person field data."""

    def __init__(
        self,
        http: PcoHttpClient,
        paginator: PaginationHelper,
        event_emitter: EventEmitter,
        cache: FieldDefinitionCache,
        use_cache: bool = True,
    ):
        super().__init__(http, paginator, event_emitter)
        self.cache = cache
        self.use_cache = use_cache

    # --- Field definitions ---

    async def get_all_field_definitions(self, use_cache: bool = True) -> List[Resource]:
        """Returns every field definition, served from the cache while fresh."""
        if use_cache and self.use_cache and self.cache.is_fresh():
            self.event_emitter.emit(CacheHit(key=FIELD_DEFINITIONS_CACHE_KEY))
            return self.cache.snapshot.definitions()

        self.event_emitter.emit(CacheMiss(key=FIELD_DEFINITIONS_CACHE_KEY))
        result = await self._get_all_pages("/field_definitions", {"include": "tab"})
        self.cache.refresh(result.data)
        self.event_emitter.emit(CacheSet(key=FIELD_DEFINITIONS_CACHE_KEY, ttl_seconds=self.cache.ttl_seconds))
        return list(result.data)

    async def get_field_definition(self, definition_id: str) -> Resource:
        return await self._get_single(f"/field_definitions/{definition_id}")

    async def get_field_definition_by_slug(self, slug: str) -> Optional[Resource]:
        await self.get_all_field_definitions()
        return self.cache.snapshot.by_slug.get(slug) if self.cache.snapshot else None

    async def get_field_definition_by_name(self, name: str) -> Optional[Resource]:
        await self.get_all_field_definitions()
        return self.cache.snapshot.by_name.get(name) if self.cache.snapshot else None

    async def create_field_definition(self, tab_id: str, data: Dict[str, Any]) -> Resource:
        definition = await self._create_resource(f"/tabs/{tab_id}/field_definitions", data)
        self.cache.invalidate()
        self.event_emitter.emit(CacheInvalidated(key=FIELD_DEFINITIONS_CACHE_KEY))
        return definition

    async def update_field_definition(self, definition_id: str, data: Dict[str, Any]) -> Resource:
        definition = await self._update_resource(f"/field_definitions/{definition_id}", data)
        self.cache.upsert(definition)
        return definition

    async def delete_field_definition(self, definition_id: str) -> None:
        await self._delete_resource(f"/field_definitions/{definition_id}")
        self.cache.remove(definition_id)

    # --- Person field data ---

    async def get_person_field_data(self, person_id: str) -> ResourceList:
        return await self._get_list(f"/people/{person_id}/field_data")

    async def set_person_field(self, person_id: str, field_definition_id: str, value: Any) -> Resource:
        """Sets a person's value for a field, updating an existing datum if present."""
        existing = await self.get_person_field_data(person_id)
        for datum in existing:
            if field_definition_id in _related_ids(datum, "field_definition"):
                return await self._update_resource(
                    f"/people/{person_id}/field_data/{datum.id}", {"value": value}
                )
        return await self._create_resource(
            f"/people/{person_id}/field_data",
            {"field_definition_id": field_definition_id, "value": value},
        )

    async def set_person_field_by_slug(self, person_id: str, slug: str, value: Any) -> Resource:
        definition = await self.get_field_definition_by_slug(slug)
        if definition is None:
            raise KeyError(f"Field definition not found for slug: {slug}")
        return await self.set_person_field(person_id, definition.id, value)

    async def set_person_field_by_name(self, person_id: str, name: str, value: Any) -> Resource:
        definition = await self.get_field_definition_by_name(name)
        if definition is None:
            raise KeyError(f"Field definition not found for name: {name}")
        return await self.set_person_field(person_id, definition.id, value)

    async def delete_person_field_data(self, person_id: str, field_datum_id: str) -> None:
        await self._delete_resource(f"/people/{person_id}/field_data/{field_datum_id}")

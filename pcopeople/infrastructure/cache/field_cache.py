"""Field definition cache.

Field definitions change rarely, so the fields module keeps them in an
immutable snapshot indexed by id, slug and name. Every change swaps in a new
snapshot instead of mutating the current one.
"""

import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from pcopeople.domain.models.resources import Resource

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

_EMPTY: Mapping[str, Resource] = MappingProxyType({})


@dataclass(frozen=True)
class FieldDefinitionSnapshot:
    by_id: Mapping[str, Resource]
    by_slug: Mapping[str, Resource]
    by_name: Mapping[str, Resource]
    expires_at: float

    @classmethod
    def build(cls, definitions: Iterable[Resource], expires_at: float) -> "FieldDefinitionSnapshot":
        by_id, by_slug, by_name = {}, {}, {}
        for definition in definitions:
            if definition.id is not None:
                by_id[definition.id] = definition
            slug = definition.get("slug")
            if slug:
                by_slug[slug] = definition
            name = definition.get("name")
            if name:
                by_name[name] = definition
        return cls(
            by_id=MappingProxyType(by_id),
            by_slug=MappingProxyType(by_slug),
            by_name=MappingProxyType(by_name),
            expires_at=expires_at,
        )

    def definitions(self):
        return list(self.by_id.values())


class FieldDefinitionCache:
    """Holds the current field definition snapshot and its expiry."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[FieldDefinitionSnapshot] = None

    @property
    def snapshot(self) -> Optional[FieldDefinitionSnapshot]:
        return self._snapshot

    def is_fresh(self, now: Optional[float] = None) -> bool:
        if self._snapshot is None:
            return False
        now = self._clock() if now is None else now
        return now < self._snapshot.expires_at

    def refresh(self, definitions: Iterable[Resource], now: Optional[float] = None) -> FieldDefinitionSnapshot:
        now = self._clock() if now is None else now
        self._snapshot = FieldDefinitionSnapshot.build(definitions, now + self.ttl_seconds)
        logger.debug(f"Field definition cache refreshed with {len(self._snapshot.by_id)} definitions")
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    def upsert(self, definition: Resource) -> None:
        """Replaces one definition, keeping the current expiry."""
        if self._snapshot is None or definition.id is None:
            return
        remaining = [d for d in self._snapshot.definitions() if d.id != definition.id]
        remaining.append(definition)
        self._snapshot = FieldDefinitionSnapshot.build(remaining, self._snapshot.expires_at)

    def remove(self, definition_id: str) -> None:
        if self._snapshot is None or definition_id not in self._snapshot.by_id:
            return
        remaining = [d for d in self._snapshot.definitions() if d.id != definition_id]
        self._snapshot = FieldDefinitionSnapshot.build(remaining, self._snapshot.expires_at)

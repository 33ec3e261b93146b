"""Domain models for JSON:API resources and HTTP responses.

The remote service owns every resource; the client only holds transient
copies parsed from response documents.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from pcopeople.domain.models.common import RequestId


@dataclass
class Resource:
    """A JSON:API resource object (`type`, `id`, `attributes`, `relationships`)."""
    type: str
    id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    relationships: Dict[str, Any] = field(default_factory=dict)
    links: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "Resource":
        """Builds a Resource from a JSON:API resource object."""
        raw_id = payload.get("id")
        return cls(
            type=str(payload.get("type", "")),
            id=str(raw_id) if raw_id is not None else None,
            attributes=dict(payload.get("attributes") or {}),
            relationships=dict(payload.get("relationships") or {}),
            links=dict(payload.get("links") or {}),
            meta=dict(payload.get("meta") or {}),
        )

    def get(self, attribute: str, default: Any = None) -> Any:
        return self.attributes.get(attribute, default)


@dataclass
class ResourceList:
    """A JSON:API collection document."""
    data: List[Resource] = field(default_factory=list)
    included: List[Resource] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)
    links: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Optional[Mapping[str, Any]]) -> "ResourceList":
        document = document or {}
        raw_data = document.get("data") or []
        if isinstance(raw_data, Mapping):
            raw_data = [raw_data]
        return cls(
            data=[Resource.from_json(item) for item in raw_data],
            included=[Resource.from_json(item) for item in document.get("included") or []],
            meta=dict(document.get("meta") or {}),
            links=dict(document.get("links") or {}),
        )

    @property
    def total_count(self) -> Optional[int]:
        total = self.meta.get("total_count")
        try:
            return int(total) if total is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def has_next(self) -> bool:
        return bool(self.links.get("next"))

    def __len__(self) -> int:
        return len(self.data)

    def __iter__(self):
        return iter(self.data)


@dataclass
class HttpResponse:
    """Result of a single pipeline call."""
    data: Any
    status: int
    headers: Dict[str, str]
    request_id: RequestId
    duration_ms: float = 0.0


@dataclass
class PaginationResult:
    """Aggregated result of walking every page of a collection."""
    data: List[Resource]
    total_count: int
    pages_fetched: int
    duration_ms: float

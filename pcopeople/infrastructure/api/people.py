"""People, email and phone number endpoints."""

import logging
from typing import Any, Dict, List, Mapping, Optional

from pcopeople.core.services.person_matcher import PersonMatcher
from pcopeople.domain.interfaces.people_directory import PeopleDirectory
from pcopeople.domain.models.matching import PersonMatchCriteria
from pcopeople.domain.models.resources import PaginationResult, Resource, ResourceList
from pcopeople.infrastructure.api.base import BaseModule, build_list_params
from pcopeople.infrastructure.http.http_client import PcoHttpClient
from pcopeople.infrastructure.http.pagination import PaginationHelper
from pcopeople.infrastructure.monitoring.event_emitter import EventEmitter

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PAGE_SIZE = 25


class PeopleModule(BaseModule, PeopleDirectory):
    """Access to /people and the contact records nested under it."""

    def __init__(self, http: PcoHttpClient, paginator: PaginationHelper, event_emitter: EventEmitter):
        super().__init__(http, paginator, event_emitter)
        self._matcher: Optional[PersonMatcher] = None

    @property
    def matcher(self) -> PersonMatcher:
        if self._matcher is None:
            self._matcher = PersonMatcher(self)
        return self._matcher

    # --- People ---

    async def get_all(
        self,
        where: Optional[Mapping[str, Any]] = None,
        include: Optional[List[str]] = None,
        per_page: Optional[int] = None,
        page: Optional[int] = None,
    ) -> ResourceList:
        return await self._get_list("/people", build_list_params(where, include, per_page, page))

    async def get_all_pages(
        self,
        where: Optional[Mapping[str, Any]] = None,
        include: Optional[List[str]] = None,
        **pagination_options: Any,
    ) -> PaginationResult:
        """Fetches every person matching `where`, following pagination links."""
        return await self._get_all_pages("/people", build_list_params(where, include), **pagination_options)

    async def get_by_id(self, person_id: str, include: Optional[List[str]] = None) -> Resource:
        return await self._get_single(f"/people/{person_id}", build_list_params(include=include))

    async def create(self, data: Dict[str, Any]) -> Resource:
        return await self._create_resource("/people", data)

    async def update(self, person_id: str, data: Dict[str, Any]) -> Resource:
        return await self._update_resource(f"/people/{person_id}", data)

    async def delete(self, person_id: str) -> None:
        await self._delete_resource(f"/people/{person_id}")

    async def search(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        status: Optional[str] = None,
        per_page: int = DEFAULT_SEARCH_PAGE_SIZE,
    ) -> ResourceList:
        """Searches people; each given criterion becomes a ``where[...]`` filter."""
        where = {"name": name, "email": email, "phone": phone, "status": status}
        return await self.get_all(where=where, per_page=per_page or DEFAULT_SEARCH_PAGE_SIZE)

    # --- Emails ---

    async def get_emails(self, person_id: str) -> ResourceList:
        return await self._get_list(f"/people/{person_id}/emails")

    async def add_email(self, person_id: str, data: Dict[str, Any]) -> Resource:
        return await self._create_resource(f"/people/{person_id}/emails", data)

    async def update_email(self, person_id: str, email_id: str, data: Dict[str, Any]) -> Resource:
        return await self._update_resource(f"/people/{person_id}/emails/{email_id}", data)

    async def delete_email(self, person_id: str, email_id: str) -> None:
        await self._delete_resource(f"/people/{person_id}/emails/{email_id}")

    # --- Phone numbers ---

    async def get_phone_numbers(self, person_id: str) -> ResourceList:
        return await self._get_list(f"/people/{person_id}/phone_numbers")

    async def add_phone_number(self, person_id: str, data: Dict[str, Any]) -> Resource:
        return await self._create_resource(f"/people/{person_id}/phone_numbers", data)

    async def update_phone_number(self, person_id: str, phone_id: str, data: Dict[str, Any]) -> Resource:
        return await self._update_resource(f"/people/{person_id}/phone_numbers/{phone_id}", data)

    async def delete_phone_number(self, person_id: str, phone_id: str) -> None:
        await self._delete_resource(f"/people/{person_id}/phone_numbers/{phone_id}")

    # --- Composite operations ---

    async def create_with_contacts(
        self,
        person_data: Dict[str, Any],
        email: Optional[Dict[str, Any]] = None,
        phone: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Resource]:
        """Creates a person, then attaches the given email and phone to it.

        Returns:
            A dict with the created ``person`` and, when given, ``email`` and ``phone``.
        """
        person = await self.create(person_data)
        result = {"person": person}
        if email:
            result["email"] = await self.add_email(person.id, email)
        if phone:
            result["phone"] = await self.add_phone_number(person.id, phone)
        return result

    async def find_or_create(self, criteria: PersonMatchCriteria) -> Resource:
        return await self.matcher.find_or_create(criteria)

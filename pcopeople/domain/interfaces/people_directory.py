"""Interface for the people directory.

Defines the contract the batch executor and the person matcher rely on to
read and write people and their contact records on the remote service.
"""

import abc
from typing import Any, Dict, Optional

from ..models.resources import Resource, ResourceList


class PeopleDirectory(abc.ABC):
    """Abstract Base Class for people and contact record operations."""

    @abc.abstractmethod
    async def search(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        status: Optional[str] = None,
        per_page: int = 25,
    ) -> ResourceList:
        """Searches people by name, email, phone or status.

        Args:
            name: Full or partial name.
            email: Email address to search for.
            phone: Phone number to search for.
            status: Membership status filter.
            per_page: Maximum number of results.

        Returns:
            The matching people.
        """
        pass

    @abc.abstractmethod
    async def get_by_id(self, person_id: str, include: Optional[list] = None) -> Resource:
        """Fetches a single person by id."""
        pass

    @abc.abstractmethod
    async def create(self, data: Dict[str, Any]) -> Resource:
        """Creates a person from plain attributes."""
        pass

    @abc.abstractmethod
    async def update(self, person_id: str, data: Dict[str, Any]) -> Resource:
        pass

    @abc.abstractmethod
    async def delete(self, person_id: str) -> None:
        pass

    # --- Emails ---

    @abc.abstractmethod
    async def add_email(self, person_id: str, data: Dict[str, Any]) -> Resource:
        pass

    @abc.abstractmethod
    async def update_email(self, person_id: str, email_id: str, data: Dict[str, Any]) -> Resource:
        pass

    @abc.abstractmethod
    async def delete_email(self, person_id: str, email_id: str) -> None:
        pass

    # --- Phone numbers ---

    @abc.abstractmethod
    async def add_phone_number(self, person_id: str, data: Dict[str, Any]) -> Resource:
        pass

    @abc.abstractmethod
    async def update_phone_number(self, person_id: str, phone_id: str, data: Dict[str, Any]) -> Resource:
        pass

    @abc.abstractmethod
    async def delete_phone_number(self, person_id: str, phone_id: str) -> None:
        pass

"""Core service for matching people against the directory.

Gathers candidates through several searches, scores and ranks them, and
either resolves a single best match or creates a new person.
"""

import logging
from typing import Any, Dict, List, Optional

from pcopeople.core.exceptions import MatchNotFoundError
from pcopeople.core.matching.scoring import MatchScorer
from pcopeople.core.matching.strategies import MatchStrategies
from pcopeople.domain.interfaces.people_directory import PeopleDirectory
from pcopeople.domain.models.matching import (
    SOURCE_BROAD,
    SOURCE_EMAIL,
    SOURCE_NAME,
    SOURCE_PHONE,
    CandidateRecord,
    MatchCandidate,
    PersonMatchCriteria,
)
from pcopeople.domain.models.resources import Resource

logger = logging.getLogger(__name__)

IS_MATCH_THRESHOLD = 0.5


class PersonMatcher:
    """Finds (or creates) the person best described by partial criteria."""

    def __init__(
        self,
        people: PeopleDirectory,
        scorer: Optional[MatchScorer] = None,
        strategies: Optional[MatchStrategies] = None,
    ):
        self.people = people
        self.scorer = scorer or MatchScorer()
        self.strategies = strategies or MatchStrategies()

    async def find_or_create(self, criteria: PersonMatchCriteria) -> Resource:
        """Returns the best match, creating a person when nothing matches.

        Raises:
            MatchNotFoundError: If nothing matches and `create_if_not_found` is False.
        """
        match = await self.find_match(criteria)
        if match is not None:
            logger.info(f"Matched person {match.person.id} (score={match.score:.2f}, {match.reason})")
            return match.person

        if not criteria.create_if_not_found:
            raise MatchNotFoundError("No matching person found and creation is disabled")

        return await self._create_person(criteria)

    async def find_match(self, criteria: PersonMatchCriteria) -> Optional[MatchCandidate]:
        ranked = await self.get_all_matches(criteria)
        if not ranked:
            return None
        return self.strategies.select_best_match(ranked, criteria.match_strategy)

    async def get_all_matches(self, criteria: PersonMatchCriteria) -> List[MatchCandidate]:
        """Scores every candidate and returns them ranked by score, highest first."""
        records = await self._gather_candidates(criteria)
        scored = [self._score(record, criteria) for record in records]
        # sorted() is stable: ties keep first-seen order
        return sorted(scored, key=lambda c: c.score, reverse=True)

    async def is_match(self, person_id: str, criteria: PersonMatchCriteria) -> Optional[MatchCandidate]:
        """Scores a known person against the criteria; None unless the score exceeds 0.5."""
        person = await self.people.get_by_id(person_id)
        sources = frozenset()
        for record in await self._gather_candidates(criteria):
            if record.person.id == person.id:
                sources = record.sources
                break
        candidate = self._score(CandidateRecord(person=person, sources=sources), criteria)
        return candidate if candidate.score > IS_MATCH_THRESHOLD else None

    def _score(self, record: CandidateRecord, criteria: PersonMatchCriteria) -> MatchCandidate:
        return MatchCandidate(
            person=record.person,
            score=self.scorer.score_match(record.person, criteria, record.sources),
            reason=self.scorer.get_match_reason(record.person, criteria, record.sources),
        )

    # --- Candidate gathering ---

    async def _gather_candidates(self, criteria: PersonMatchCriteria) -> List[CandidateRecord]:
        records: Dict[str, CandidateRecord] = {}

        if criteria.email:
            await self._run_search(records, SOURCE_EMAIL, email=criteria.email)
        if criteria.phone:
            await self._run_search(records, SOURCE_PHONE, phone=criteria.phone)
        if criteria.first_name and criteria.last_name:
            await self._run_search(records, SOURCE_NAME, name=f"{criteria.first_name} {criteria.last_name}")

        if not records and criteria.has_name:
            await self._run_search(records, SOURCE_BROAD, name=criteria.first_name or criteria.last_name)

        return list(records.values())

    async def _run_search(self, records: Dict[str, CandidateRecord], source: str, **search: Any) -> None:
        try:
            results = await self.people.search(**search)
        except Exception as e:
            logger.warning(f"Person search by {source} failed, continuing with other strategies: {e}")
            return

        for person in results:
            if person.id is None:
                continue
            existing = records.get(person.id)
            if existing is None:
                records[person.id] = CandidateRecord(person=person, sources=frozenset({source}))
            else:
                existing.sources = existing.sources | {source}

    # --- Creation ---

    async def _create_person(self, criteria: PersonMatchCriteria) -> Resource:
        person_data: Dict[str, Any] = {}
        if criteria.first_name:
            person_data["first_name"] = criteria.first_name
        if criteria.last_name:
            person_data["last_name"] = criteria.last_name
        if criteria.birthdate:
            person_data["birthdate"] = criteria.birthdate

        person = await self.people.create(person_data)
        logger.info(f"No match found; created person {person.id}")

        if criteria.email:
            await self.people.add_email(person.id, {"address": criteria.email, "primary": True})
        if criteria.phone:
            await self.people.add_phone_number(person.id, {"number": criteria.phone, "primary": True})
        return person

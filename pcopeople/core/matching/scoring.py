"""Scoring of person match candidates.

The score is a weighted sum of per-criterion sub-scores divided by the sum
of the weights that apply to the supplied criteria, so it always falls in
[0, 1]. Criteria the caller did not supply count in neither sum.
"""

import logging
from datetime import date
from typing import Callable, FrozenSet, Optional

from pcopeople.domain.models.common import AgePreference
from pcopeople.domain.models.matching import SOURCE_EMAIL, SOURCE_PHONE, PersonMatchCriteria
from pcopeople.domain.models.resources import Resource

logger = logging.getLogger(__name__)

EMAIL_WEIGHT = 0.35
PHONE_WEIGHT = 0.25
NAME_WEIGHT = 0.2
NAME_ONLY_WEIGHT = 0.4  # Name is the dominant signal without email and phone
AGE_WEIGHT = 0.15
MISC_WEIGHT = 0.05

ADULT_AGE = 18

# Age sub-scores
AGE_NEUTRAL = 0.5
AGE_UNKNOWN = 0.1
AGE_BASE = 0.6
AGE_RANGE_BONUS = 0.3
AGE_BIRTH_YEAR_BONUS = 0.4


def parse_birthdate(value) -> Optional[date]:
    """Parses a ``YYYY-MM-DD`` birthdate (a trailing time part is ignored)."""
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def calculate_age(birthdate: date, today: date) -> int:
    age = today.year - birthdate.year
    if (today.month, today.day) < (birthdate.month, birthdate.day):
        age -= 1
    return age


def is_adult(birthdate: date, today: date) -> bool:
    return calculate_age(birthdate, today) >= ADULT_AGE


class MatchScorer:
    """Computes candidate scores and human-readable match reasons."""

    def __init__(self, today: Optional[Callable[[], date]] = None):
        """Initializes the scorer.

        Args:
            today: Returns the reference date for age checks (defaults to date.today).
        """
        self._today = today or date.today

    def score_match(
        self,
        person: Resource,
        criteria: PersonMatchCriteria,
        sources: FrozenSet[str] = frozenset(),
    ) -> float:
        """Scores one candidate.

        Args:
            person: The candidate person.
            criteria: The caller's criteria.
            sources: Names of the search strategies that returned the candidate.

        Returns:
            The normalized score in [0, 1].
        """
        total = 0.0
        applicable = 0.0

        if criteria.email:
            total += EMAIL_WEIGHT * self.score_email(sources)
            applicable += EMAIL_WEIGHT
        if criteria.phone:
            total += PHONE_WEIGHT * self.score_phone(sources)
            applicable += PHONE_WEIGHT
        if criteria.has_name:
            weight = NAME_WEIGHT if (criteria.email or criteria.phone) else NAME_ONLY_WEIGHT
            total += weight * self.score_name(person, criteria)
            applicable += weight

        total += AGE_WEIGHT * self.score_age(person, criteria)
        applicable += AGE_WEIGHT

        if criteria.extra:
            total += MISC_WEIGHT * self.score_extra(person, criteria)
            applicable += MISC_WEIGHT

        return total / applicable if applicable else 0.0

    @staticmethod
    def score_email(sources: FrozenSet[str]) -> float:
        return 1.0 if SOURCE_EMAIL in sources else 0.0

    @staticmethod
    def score_phone(sources: FrozenSet[str]) -> float:
        return 1.0 if SOURCE_PHONE in sources else 0.0

    @staticmethod
    def score_name(person: Resource, criteria: PersonMatchCriteria) -> float:
        """Half a point per exact, case-insensitive first/last name match."""
        score = 0.0
        for wanted, attribute in ((criteria.first_name, "first_name"), (criteria.last_name, "last_name")):
            actual = person.get(attribute)
            if wanted and actual and str(actual).strip().lower() == wanted.strip().lower():
                score += 0.5
        return score

    def score_age(self, person: Resource, criteria: PersonMatchCriteria) -> float:
        if not criteria.has_age_constraint:
            return AGE_NEUTRAL

        birthdate = parse_birthdate(person.get("birthdate"))
        if birthdate is None:
            return AGE_UNKNOWN

        today = self._today()
        age = calculate_age(birthdate, today)

        if criteria.age_preference == AgePreference.ADULTS and age < ADULT_AGE:
            return 0.0
        if criteria.age_preference == AgePreference.CHILDREN and age >= ADULT_AGE:
            return 0.0
        if criteria.min_age is not None and age < criteria.min_age:
            return 0.0
        if criteria.max_age is not None and age > criteria.max_age:
            return 0.0
        if criteria.birth_year is not None and birthdate.year != criteria.birth_year:
            return 0.0

        score = AGE_BASE
        if criteria.min_age is not None or criteria.max_age is not None:
            score += AGE_RANGE_BONUS
        if criteria.birth_year is not None:
            score += AGE_BIRTH_YEAR_BONUS
        return min(score, 1.0)

    @staticmethod
    def score_extra(person: Resource, criteria: PersonMatchCriteria) -> float:
        if not criteria.extra:
            return 0.0
        matched = sum(1 for key, value in criteria.extra.items() if person.get(key) == value)
        return matched / len(criteria.extra)

    def get_match_reason(
        self,
        person: Resource,
        criteria: PersonMatchCriteria,
        sources: FrozenSet[str] = frozenset(),
    ) -> str:
        reasons = []
        if criteria.email and self.score_email(sources) == 1.0:
            reasons.append("exact email match")
        if criteria.phone and self.score_phone(sources) == 1.0:
            reasons.append("exact phone match")
        if criteria.has_name:
            supplied = sum(1 for name in (criteria.first_name, criteria.last_name) if name)
            name_score = self.score_name(person, criteria)
            if name_score > 0 and name_score >= 0.5 * supplied:
                reasons.append("exact name match")
            elif name_score > 0:
                reasons.append("partial name match")
        if criteria.has_age_constraint and self.score_age(person, criteria) >= AGE_BASE:
            reasons.append("age criteria match")
        return ", ".join(reasons) if reasons else "partial match"

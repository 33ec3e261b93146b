"""Domain models for person matching."""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from pcopeople.domain.models.common import AgePreference, MatchStrategy
from pcopeople.domain.models.resources import Resource

# Names of the candidate search strategies, recorded per candidate
SOURCE_EMAIL = "email"
SOURCE_PHONE = "phone"
SOURCE_NAME = "name"
SOURCE_BROAD = "broad"


@dataclass
class PersonMatchCriteria:
    """Partial identity criteria used to find (or create) a person."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    birthdate: Optional[str] = None  # Only used when creating a person
    birth_year: Optional[int] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    age_preference: Optional[AgePreference] = None
    # Extensible attribute criteria compared verbatim against candidate attributes
    extra: Dict[str, Any] = field(default_factory=dict)
    match_strategy: MatchStrategy = MatchStrategy.FUZZY
    create_if_not_found: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.match_strategy, str) and not isinstance(self.match_strategy, MatchStrategy):
            self.match_strategy = MatchStrategy(self.match_strategy)
        if isinstance(self.age_preference, str) and not isinstance(self.age_preference, AgePreference):
            self.age_preference = AgePreference(self.age_preference)

    @property
    def has_name(self) -> bool:
        return bool(self.first_name or self.last_name)

    @property
    def has_age_constraint(self) -> bool:
        preference_constrains = self.age_preference not in (None, AgePreference.ANY)
        return (
            preference_constrains
            or self.min_age is not None
            or self.max_age is not None
            or self.birth_year is not None
        )


@dataclass
class CandidateRecord:
    """A candidate returned by one or more search strategies."""
    person: Resource
    sources: FrozenSet[str] = frozenset()


@dataclass
class MatchCandidate:
    """A scored candidate. Computed per matching call, never persisted."""
    person: Resource
    score: float
    reason: str

"""Selection strategies applied to ranked match candidates."""

from typing import Dict, List, Optional, Union

from pcopeople.domain.models.common import MatchStrategy
from pcopeople.domain.models.matching import MatchCandidate

# Minimum score for `select_best_match`
SELECTION_CUTOFFS: Dict[MatchStrategy, float] = {
    MatchStrategy.EXACT: 0.8,
    MatchStrategy.FUZZY: 0.5,
    MatchStrategy.AGGRESSIVE: 0.5,
}

# Reported thresholds; stricter than the selection cutoffs for exact and fuzzy
REPORTED_THRESHOLDS: Dict[MatchStrategy, float] = {
    MatchStrategy.EXACT: 0.9,
    MatchStrategy.FUZZY: 0.7,
    MatchStrategy.AGGRESSIVE: 0.5,
}


def _normalize(strategy: Union[MatchStrategy, str, None]) -> MatchStrategy:
    try:
        return MatchStrategy(strategy)
    except ValueError:
        return MatchStrategy.FUZZY


class MatchStrategies:
    """Chooses among scored candidates according to a match strategy.

    Unknown strategy names behave like ``fuzzy``.
    """

    def selection_cutoff(self, strategy: Union[MatchStrategy, str, None]) -> float:
        return SELECTION_CUTOFFS[_normalize(strategy)]

    def select_best_match(
        self,
        candidates: List[MatchCandidate],
        strategy: Union[MatchStrategy, str, None],
    ) -> Optional[MatchCandidate]:
        """Returns the first candidate (input is ranked) scoring at least the cutoff."""
        cutoff = self.selection_cutoff(strategy)
        for candidate in candidates:
            if candidate.score >= cutoff:
                return candidate
        return None

    def get_threshold(self, strategy: Union[MatchStrategy, str, None]) -> float:
        return REPORTED_THRESHOLDS[_normalize(strategy)]

    def meets_threshold(self, score: float, strategy: Union[MatchStrategy, str, None]) -> bool:
        return score >= self.get_threshold(strategy)

    def get_all_matches_above_threshold(
        self,
        candidates: List[MatchCandidate],
        strategy: Union[MatchStrategy, str, None],
    ) -> List[MatchCandidate]:
        threshold = self.get_threshold(strategy)
        return [c for c in candidates if c.score >= threshold]

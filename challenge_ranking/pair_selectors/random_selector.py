"""
Random pair selector implementation.

Simple stateless selector for testing/baseline.
"""

import random
from collections.abc import Mapping, Sequence, Set

from typing_extensions import override

from ..interfaces import PairSelector
from ..logging_config import get_logger
from ..models import RatingRecord, Submission
from ..voting_rules import unseen_pairs


class RandomPairSelector(PairSelector):
    """Random unseen pair - for testing/baseline."""

    def __init__(self, seed: int | None = None):
        """Initialize random selector.

        Args:
            seed: Random seed for reproducible selection
        """
        self._rng = random.Random(seed)
        self.logger = get_logger("random_selector")

    @override
    def select_pair(
        self,
        candidates: Sequence[Submission],
        seen_pairs: Set[tuple[str, str]],
        ratings: Mapping[str, RatingRecord],
    ) -> tuple[str, str] | None:
        """Return a random pair the voter has not seen."""
        available = unseen_pairs((s.submission_id for s in candidates), seen_pairs)
        if not available:
            self.logger.debug("No unseen pairs left")
            return None

        pair = self._rng.choice(available)
        self.logger.debug(f"Selected random pair {pair} from {len(available)} unseen")
        return pair

"""
Least-compared selector implementation.

Selects pairs randomly but prioritizes submissions with the fewest recorded
comparisons. Ensures even coverage across submissions before any submission
gets compared many more times than others.
"""

import random
from collections.abc import Mapping, Sequence, Set

from typing_extensions import override

from ..interfaces import PairSelector
from ..logging_config import get_logger
from ..models import RatingRecord, Submission
from ..voting_rules import unseen_pairs

# Module-level logger
logger = get_logger("least_compared_selector")


class LeastComparedSelector(PairSelector):
    """Selector that prioritizes pairs whose submissions were compared least."""

    def __init__(self, seed: int | None = None):
        """Initialize least-compared selector.

        Args:
            seed: Random seed for the choice within the lowest bucket
        """
        self._rng = random.Random(seed)

    @override
    def select_pair(
        self,
        candidates: Sequence[Submission],
        seen_pairs: Set[tuple[str, str]],
        ratings: Mapping[str, RatingRecord],
    ) -> tuple[str, str] | None:
        """Return an unseen pair from the bucket with the lowest combined comparison count."""
        available = unseen_pairs((s.submission_id for s in candidates), seen_pairs)
        if not available:
            logger.debug("No unseen pairs left")
            return None

        def comparisons(submission_id: str) -> int:
            record = ratings.get(submission_id)
            return record.vote_count if record is not None else 0

        # Build comparison count buckets
        buckets: dict[int, list[tuple[str, str]]] = {}
        for pair in available:
            count = comparisons(pair[0]) + comparisons(pair[1])
            buckets.setdefault(count, []).append(pair)

        lowest = min(buckets)
        pair = self._rng.choice(buckets[lowest])

        logger.debug(f"Selected least-compared pair {pair} (combined comparisons: {lowest})")
        return pair

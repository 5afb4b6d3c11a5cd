"""
Rating-proximity selector implementation.

Samples unseen pairs with probability favouring submissions whose ratings are
close, since those comparisons carry the most information about the order.
"""

from collections.abc import Mapping, Sequence, Set

import numpy as np
from typing_extensions import override

from ..exceptions import ConfigurationError
from ..interfaces import PairSelector
from ..logging_config import get_logger
from ..models import INITIAL_RATING, RatingRecord, Submission
from ..voting_rules import unseen_pairs


class RatingProximitySelector(PairSelector):
    """
    Proximity-weighted selector.

    Weight of a pair is exp(-|r_a - r_b| / scale) raised to 1/T.
    T=1.0 is proportional, T<1.0 more greedy, T>1.0 more diverse, T=0 pure greedy.
    """

    def __init__(self, scale: float = 200.0, temperature: float = 1.0, seed: int | None = None):
        """
        Initialize rating-proximity selector.

        Args:
            scale: Rating gap at which a pair's weight drops to 1/e
            temperature: Sampling temperature (0 = always the closest pair)
            seed: Seed for numpy's generator
        """
        if scale <= 0:
            raise ConfigurationError(f"scale must be positive, got {scale}")
        if temperature < 0:
            raise ConfigurationError(f"temperature cannot be negative, got {temperature}")
        self.scale = scale
        self.temperature = temperature
        self._rng = np.random.default_rng(seed)
        self.logger = get_logger("rating_proximity_selector")

    def _pair_weights(self, pairs: list[tuple[str, str]], ratings: Mapping[str, RatingRecord]) -> np.ndarray:
        def rating(submission_id: str) -> float:
            record = ratings.get(submission_id)
            return float(record.rating) if record is not None else float(INITIAL_RATING)

        gaps = np.array([abs(rating(a) - rating(b)) for a, b in pairs], dtype=float)

        if self.temperature == 0:
            weights = np.zeros_like(gaps)
            weights[int(np.argmin(gaps))] = 1.0
            return weights

        return np.exp(-gaps / (self.scale * self.temperature))

    @override
    def select_pair(
        self,
        candidates: Sequence[Submission],
        seen_pairs: Set[tuple[str, str]],
        ratings: Mapping[str, RatingRecord],
    ) -> tuple[str, str] | None:
        """Return an unseen pair sampled by rating proximity."""
        available = unseen_pairs((s.submission_id for s in candidates), seen_pairs)
        if not available:
            self.logger.debug("No unseen pairs left")
            return None

        weights = self._pair_weights(available, ratings)
        total = float(np.sum(weights))
        if total > 0:
            probabilities = weights / total
        else:
            # Every weight underflowed; fall back to uniform
            probabilities = np.full(len(available), 1.0 / len(available))

        index = int(self._rng.choice(len(available), p=probabilities))
        pair = available[index]
        self.logger.debug(f"Selected pair {pair} with p={probabilities[index]:.3f} (T={self.temperature})")
        return pair

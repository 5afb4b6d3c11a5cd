"""
Pair selector implementations.

Provides implementations of the PairSelector interface for choosing which
pair of submissions a voter compares next.

Available implementations:
- LeastComparedSelector: Prefers submissions with the fewest recorded comparisons
- RandomPairSelector: Uniformly random unseen pair
- RatingProximitySelector: Prefers pairs with close ratings (most informative)
"""

from ..exceptions import ConfigurationError
from ..interfaces import PairSelector
from .least_compared_selector import LeastComparedSelector
from .random_selector import RandomPairSelector
from .rating_proximity_selector import RatingProximitySelector

SELECTOR_NAMES = ("least-compared", "random", "rating-proximity")


def create_selector(name: str, seed: int | None = None) -> PairSelector:
    """Build a selector from its CLI/config name."""
    if name == "least-compared":
        return LeastComparedSelector(seed=seed)
    if name == "random":
        return RandomPairSelector(seed=seed)
    if name == "rating-proximity":
        return RatingProximitySelector(seed=seed)
    raise ConfigurationError(f"Unknown pair selector: {name}")


__all__ = [
    "LeastComparedSelector",
    "RandomPairSelector",
    "RatingProximitySelector",
    "SELECTOR_NAMES",
    "create_selector",
]

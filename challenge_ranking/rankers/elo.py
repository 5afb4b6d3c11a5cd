"""
Elo rating updates for pairwise comparisons.

Standard chess-style Elo with a K-factor of 32 and an initial rating of 1000.
"""

import math
from dataclasses import dataclass

from ..models import INITIAL_RATING as INITIAL_RATING, Winner

K_FACTOR = 32

# 10 ** 300 is still a finite float; gaps beyond 120000 points saturate
MAX_EXPONENT = 300.0


@dataclass(frozen=True)
class EloResult:
    new_rating_a: int
    new_rating_b: int


def expected_score(rating_a: float, rating_b: float) -> float:
    """Probability that A beats B under the logistic model. Never raises for finite ratings."""
    exponent = min(max((rating_b - rating_a) / 400, -MAX_EXPONENT), MAX_EXPONENT)
    return 1 / (1 + 10 ** exponent)


def round_rating(value: float) -> int:
    """Round to the nearest integer with halves going up (1016.5 -> 1017, -0.5 -> 0)."""
    return math.floor(value + 0.5)


def raw_elo_update(
    rating_a: float,
    rating_b: float,
    winner: Winner,
    k_factor: float = K_FACTOR,
) -> tuple[float, float]:
    """
    Unrounded new ratings after one comparison.

    B's expected score is taken as 1 - E(A) so the pair's sum is conserved.
    """
    expected_a = expected_score(rating_a, rating_b)
    expected_b = 1 - expected_a

    actual_a = 1.0 if winner is Winner.A else 0.0
    actual_b = 1.0 - actual_a

    return (
        rating_a + k_factor * (actual_a - expected_a),
        rating_b + k_factor * (actual_b - expected_b),
    )


def calculate_elo(
    rating_a: float,
    rating_b: float,
    winner: Winner,
    k_factor: float = K_FACTOR,
) -> EloResult:
    """
    Calculate new Elo ratings after a comparison.

    Args:
        rating_a: Current rating of submission A
        rating_b: Current rating of submission B
        winner: Which side won
        k_factor: Maximum points transferable in one comparison

    Returns:
        EloResult with both ratings rounded to integers
    """
    new_a, new_b = raw_elo_update(rating_a, rating_b, winner, k_factor)
    return EloResult(new_rating_a=round_rating(new_a), new_rating_b=round_rating(new_b))


def rating_change(
    player_rating: float,
    opponent_rating: float,
    won: bool,
    k_factor: float = K_FACTOR,
) -> int:
    """Signed, rounded rating delta for one side of a comparison."""
    expected = expected_score(player_rating, opponent_rating)
    actual = 1.0 if won else 0.0
    return round_rating(k_factor * (actual - expected))

"""
Ranking implementations.

Provides the Elo rating updater and the final rank resolver.
"""

from .elo import EloResult, calculate_elo, expected_score, rating_change
from .rank_resolver import RankNumbering, resolve_ranks

__all__ = [
    "EloResult",
    "calculate_elo",
    "expected_score",
    "rating_change",
    "RankNumbering",
    "resolve_ranks",
]

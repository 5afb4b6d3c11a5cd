"""
Challenge Ranking - Daily Pairwise Voting Engine

Ranks one day's artwork submissions from pairwise votes cast by the other
participants, using Elo ratings and a per-voter vote quota that gates entry
into the ranking.
"""

from .models import Submission, RatingRecord, Comparison, VotingProgress, VotePair, VoteResult, RankedEntry, SubmissionRank, AdjacentRankingDates
from .interfaces import Store, PairSelector, Voter
from .engine import RankingEngine, EngineConfig, VotingSession, voting_challenge_date

__version__ = "0.1.0"
__all__ = [
    "Submission",
    "RatingRecord",
    "Comparison",
    "VotingProgress",
    "VotePair",
    "VoteResult",
    "RankedEntry",
    "SubmissionRank",
    "AdjacentRankingDates",
    "Store",
    "PairSelector",
    "Voter",
    "RankingEngine",
    "EngineConfig",
    "VotingSession",
    "voting_challenge_date",
]

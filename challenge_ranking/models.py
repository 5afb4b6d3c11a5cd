"""
Core dataclasses for the challenge ranking engine.

Defines submissions, rating records, comparisons and voting progress with
validation, plus the value objects returned by the engine.
"""

import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from .exceptions import ValidationError

INITIAL_RATING = 1000


class Winner(Enum):
    """Which side of a pairwise comparison won."""

    A = "A"
    B = "B"


def pair_key(submission_a_id: str, submission_b_id: str) -> tuple[str, str]:
    """Order-independent key for a pair of submissions."""
    if submission_a_id <= submission_b_id:
        return (submission_a_id, submission_b_id)
    return (submission_b_id, submission_a_id)


@dataclass
class Submission:
    """One user's artwork for one challenge-day. Payload is opaque."""

    submission_id: str
    user_id: str
    challenge_date: date
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    included_in_ranking: bool = False

    def __post_init__(self) -> None:
        """Validate submission data."""
        if not self.submission_id:
            raise ValidationError("submission_id cannot be empty")
        if not self.user_id:
            raise ValidationError("user_id cannot be empty")


@dataclass
class RatingRecord:
    """Elo state of a submission within its challenge-day."""

    submission_id: str
    challenge_date: date
    rating: int = INITIAL_RATING
    vote_count: int = 0
    final_rank: int | None = None

    def __post_init__(self) -> None:
        if self.vote_count < 0:
            raise ValidationError(f"vote_count cannot be negative, got {self.vote_count}")


@dataclass(frozen=True)
class Comparison:
    """A single voter decision on a pair. winner_id=None records a skip."""

    voter_id: str
    challenge_date: date
    submission_a_id: str
    submission_b_id: str
    winner_id: str | None = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        """Validate comparison data."""
        if not self.voter_id:
            raise ValidationError("voter_id cannot be empty")
        if self.submission_a_id == self.submission_b_id:
            raise ValidationError(f"Cannot compare submission {self.submission_a_id} with itself")
        if self.winner_id is not None and self.winner_id not in (self.submission_a_id, self.submission_b_id):
            raise ValidationError(
                f"winner_id {self.winner_id} must be one of the compared submissions or None"
            )

    @property
    def pair_key(self) -> tuple[str, str]:
        return pair_key(self.submission_a_id, self.submission_b_id)

    @property
    def is_skip(self) -> bool:
        return self.winner_id is None


@dataclass
class VotingProgress:
    """Votes cast by one user for one challenge-day."""

    user_id: str
    challenge_date: date
    vote_count: int = 0
    entered_ranking: bool = False
    required_votes: int = 0

    def __post_init__(self) -> None:
        if self.vote_count < 0:
            raise ValidationError(f"vote_count cannot be negative, got {self.vote_count}")
        if self.required_votes < 0:
            raise ValidationError(f"required_votes cannot be negative, got {self.required_votes}")


@dataclass(frozen=True)
class VotePair:
    """Two submissions offered to a voter."""

    submission_a: Submission
    submission_b: Submission

    @property
    def key(self) -> tuple[str, str]:
        return pair_key(self.submission_a.submission_id, self.submission_b.submission_id)


@dataclass(frozen=True)
class VoteResult:
    """Voter progress after a comparison was recorded."""

    vote_count: int
    required_votes: int
    entered_ranking: bool


@dataclass(frozen=True)
class RankedEntry:
    """One row of a published challenge-day ranking."""

    submission_id: str
    user_id: str
    rank: int
    rating: int
    vote_count: int


@dataclass(frozen=True)
class SubmissionRank:
    """Published rank of a submission out of every rated submission that day."""

    challenge_date: date
    rank: int
    total: int


@dataclass(frozen=True)
class AdjacentRankingDates:
    """Nearest challenge-days before and after a day that have published ranks."""

    previous: date | None
    next: date | None

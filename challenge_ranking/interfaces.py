"""
Abstract base classes defining the interfaces for the challenge ranking engine.

All interfaces are synchronous. Shared state lives only in the Store; every
multi-step change runs inside Store.transaction().
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence, Set
from contextlib import AbstractContextManager
from datetime import date

from typing_extensions import NotRequired, TypedDict

from .models import Comparison, RatingRecord, Submission, VotePair, VotingProgress


class VoteRequest(TypedDict):
    """Raw vote payload as sent by a client."""
    submissionAId: str
    submissionBId: str
    winnerId: str | None


class GroundTruthEntry(TypedDict):
    """One simulated participant and the latent quality of their artwork."""
    user_id: str
    quality: float
    skip_rate: NotRequired[float]


class Store(ABC):
    """Interface for the transactional store holding all ranking state."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """
        Group operations into one atomic unit.

        Everything done inside the block commits together or not at all.
        Nested blocks join the outermost transaction.
        """
        pass

    @abstractmethod
    def add_submission(self, submission: Submission) -> None:
        """Persist a new submission. One per user per challenge-day."""
        pass

    @abstractmethod
    def get_submission(self, submission_id: str) -> Submission | None:
        pass

    @abstractmethod
    def list_submissions(self, challenge_date: date) -> list[Submission]:
        """All submissions of a challenge-day in creation order."""
        pass

    @abstractmethod
    def count_submissions(self, challenge_date: date, excluding_user: str | None = None) -> int:
        pass

    @abstractmethod
    def get_rating_records(self, submission_ids: Sequence[str], challenge_date: date) -> list[RatingRecord]:
        pass

    @abstractmethod
    def list_rating_records(self, challenge_date: date) -> list[RatingRecord]:
        pass

    @abstractmethod
    def list_ranked_records(self, challenge_date: date) -> list[RatingRecord]:
        """Rating records of a challenge-day that have a final rank, best rank first."""
        pass

    @abstractmethod
    def adjacent_ranked_dates(self, challenge_date: date) -> tuple[date | None, date | None]:
        """
        Find the closest challenge-days around a day that have final ranks.

        Returns:
            (latest ranked day before, earliest ranked day after), None where absent
        """
        pass

    @abstractmethod
    def upsert_rating_record(self, record: RatingRecord) -> None:
        pass

    @abstractmethod
    def insert_comparison_if_absent(self, comparison: Comparison) -> bool:
        """
        Append a comparison unless the voter already compared this pair.

        Returns:
            True if inserted, False if (voter, challenge-day, unordered pair) exists
        """
        pass

    @abstractmethod
    def list_comparisons(self, voter_id: str, challenge_date: date) -> list[Comparison]:
        pass

    @abstractmethod
    def get_voting_progress(self, user_id: str, challenge_date: date) -> VotingProgress | None:
        pass

    @abstractmethod
    def upsert_voting_progress(self, progress: VotingProgress) -> None:
        pass

    @abstractmethod
    def mark_submission_included_in_ranking(self, user_id: str, challenge_date: date) -> int:
        """
        Flag a user's submission for a challenge-day as rank-eligible.

        Returns:
            Number of submissions updated (0 if the user has not submitted yet)
        """
        pass


class PairSelector(ABC):
    """Interface for choosing the next pair a voter should compare."""

    @abstractmethod
    def select_pair(
        self,
        candidates: Sequence[Submission],
        seen_pairs: Set[tuple[str, str]],
        ratings: Mapping[str, RatingRecord],
    ) -> tuple[str, str] | None:
        """
        Select an unseen pair of submission ids.

        Args:
            candidates: Submissions the voter may see (never their own)
            seen_pairs: Pair keys the voter already compared or skipped
            ratings: Current rating records keyed by submission_id

        Returns:
            Pair of submission ids, or None if every pair has been seen
        """
        pass


class Voter(ABC):
    """Interface for something that decides comparisons (used in simulation)."""

    @abstractmethod
    def choose(self, pair: VotePair) -> str | None:
        """
        Decide a comparison.

        Returns:
            The winning submission_id, or None to skip the pair
        """
        pass

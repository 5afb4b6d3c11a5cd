"""
Voting-progress tracking per (user, challenge-day).

States: NO_PROGRESS -> VOTING -> ENTERED_RANKING. Entering the ranking is
one-way and marks the voter's own submission for the current day as
rank-eligible.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum

from .exceptions import DuplicatePairError
from .interfaces import Store
from .logging_config import get_logger
from .models import Comparison, VotingProgress, pair_key
from .voting_rules import has_entered_ranking

logger = get_logger("progress")


class ProgressState(Enum):
    NO_PROGRESS = "no_progress"
    VOTING = "voting"
    ENTERED_RANKING = "entered_ranking"


def state_of(progress: VotingProgress | None) -> ProgressState:
    """Map a progress record (or its absence) to a state."""
    if progress is None:
        return ProgressState.NO_PROGRESS
    if progress.entered_ranking:
        return ProgressState.ENTERED_RANKING
    return ProgressState.VOTING


@dataclass(frozen=True)
class ProgressUpdate:
    """Outcome of recording one comparison."""

    vote_count: int
    required_votes: int
    entered_ranking: bool
    just_entered: bool


class VotingProgressTracker:
    """
    Records comparisons and keeps each voter's quota state.

    Methods must be called inside Store.transaction() together with the rating
    update so the comparison, the ratings and the progress commit as one unit.
    """

    def __init__(self, store: Store):
        self.store = store

    def initialize(self, user_id: str, challenge_date: date, required_votes: int) -> VotingProgress:
        """Create a zeroed record if absent; return the current one otherwise."""
        with self.store.transaction():
            progress = self.store.get_voting_progress(user_id, challenge_date)
            if progress is None:
                progress = VotingProgress(
                    user_id=user_id,
                    challenge_date=challenge_date,
                    required_votes=required_votes,
                )
                self.store.upsert_voting_progress(progress)
                logger.debug(
                    f"Initialized progress for {user_id} on {challenge_date.isoformat()} (quota {required_votes})"
                )
        return progress

    def record_outcome(
        self,
        voter_id: str,
        challenge_date: date,
        submission_a_id: str,
        submission_b_id: str,
        winner_id: str | None,
        required_votes: int,
        today: date,
    ) -> ProgressUpdate:
        """
        Append a comparison and advance the voter's progress.

        Args:
            voter_id: Voter identifier
            challenge_date: Day whose submissions are being compared
            submission_a_id: First submission of the pair
            submission_b_id: Second submission of the pair
            winner_id: Winning submission id, or None for a skip
            required_votes: Quota used if the voter has no progress record yet
            today: Day whose submission gets marked on entering the ranking

        Raises:
            DuplicatePairError: The voter already recorded this pair
        """
        comparison = Comparison(
            voter_id=voter_id,
            challenge_date=challenge_date,
            submission_a_id=submission_a_id,
            submission_b_id=submission_b_id,
            winner_id=winner_id,
        )

        with self.store.transaction():
            if not self.store.insert_comparison_if_absent(comparison):
                raise DuplicatePairError(voter_id, challenge_date, pair_key(submission_a_id, submission_b_id))

            progress = self.store.get_voting_progress(voter_id, challenge_date)
            if progress is None:
                progress = VotingProgress(
                    user_id=voter_id,
                    challenge_date=challenge_date,
                    required_votes=required_votes,
                )

            was_entered = progress.entered_ranking
            if not comparison.is_skip:
                progress.vote_count += 1
            progress.entered_ranking = was_entered or (
                not comparison.is_skip and has_entered_ranking(progress.vote_count, progress.required_votes)
            )
            self.store.upsert_voting_progress(progress)

            just_entered = progress.entered_ranking and not was_entered
            if just_entered:
                marked = self.store.mark_submission_included_in_ranking(voter_id, today)
                logger.info(
                    f"{voter_id} entered the ranking after {progress.vote_count} votes; "
                    f"marked {marked} submission(s) for {today.isoformat()}"
                )

        return ProgressUpdate(
            vote_count=progress.vote_count,
            required_votes=progress.required_votes,
            entered_ranking=progress.entered_ranking,
            just_entered=just_entered,
        )

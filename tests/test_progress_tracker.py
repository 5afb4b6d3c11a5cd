"""
Tests for VotingProgressTracker.

Focus on monotonic progress, skips and the one-way entry into the ranking.
"""

from datetime import date

import pytest

from challenge_ranking.exceptions import DuplicatePairError
from challenge_ranking.models import Submission, VotingProgress
from challenge_ranking.progress import ProgressState, VotingProgressTracker, state_of
from challenge_ranking.storage import MemoryStore

YESTERDAY = date(2024, 3, 1)
TODAY = date(2024, 3, 2)


def make_tracker() -> tuple[MemoryStore, VotingProgressTracker]:
    store = MemoryStore()
    store.add_submission(Submission(submission_id="voter-today", user_id="voter", challenge_date=TODAY))
    return store, VotingProgressTracker(store)


class TestVotingProgressTracker:
    """Test tracker behavior through the store."""

    def test_initialize_is_idempotent(self) -> None:
        # Arrange
        store, tracker = make_tracker()

        # Act
        first = tracker.initialize("voter", YESTERDAY, 3)
        second = tracker.initialize("voter", YESTERDAY, 5)

        # Assert
        assert first.vote_count == 0
        assert not first.entered_ranking
        assert second.required_votes == 3
        assert state_of(store.get_voting_progress("voter", YESTERDAY)) is ProgressState.VOTING

    def test_votes_increment_and_enter_at_quota(self) -> None:
        """The vote reaching the quota enters the ranking and flags today's submission."""
        # Arrange
        store, tracker = make_tracker()
        _ = tracker.initialize("voter", YESTERDAY, 2)

        # Act
        first = tracker.record_outcome("voter", YESTERDAY, "a", "b", "a", 2, TODAY)
        second = tracker.record_outcome("voter", YESTERDAY, "a", "c", "c", 2, TODAY)

        # Assert
        assert first.vote_count == 1
        assert not first.entered_ranking
        assert second.vote_count == 2
        assert second.entered_ranking
        assert second.just_entered
        submission = store.get_submission("voter-today")
        assert submission is not None and submission.included_in_ranking

    def test_skip_does_not_count(self) -> None:
        # Arrange
        store, tracker = make_tracker()
        _ = tracker.initialize("voter", YESTERDAY, 1)

        # Act
        update = tracker.record_outcome("voter", YESTERDAY, "a", "b", None, 1, TODAY)

        # Assert
        assert update.vote_count == 0
        assert not update.entered_ranking
        assert len(store.list_comparisons("voter", YESTERDAY)) == 1

    def test_entry_is_one_way(self) -> None:
        """Votes past the quota keep counting and never leave the ranking."""
        _, tracker = make_tracker()
        _ = tracker.initialize("voter", YESTERDAY, 1)

        entered = tracker.record_outcome("voter", YESTERDAY, "a", "b", "b", 1, TODAY)
        after = tracker.record_outcome("voter", YESTERDAY, "a", "c", "a", 1, TODAY)
        skipped = tracker.record_outcome("voter", YESTERDAY, "b", "c", None, 1, TODAY)

        assert entered.just_entered
        assert after.entered_ranking and not after.just_entered
        assert after.vote_count == 2
        assert skipped.entered_ranking
        assert skipped.vote_count == 2

    def test_duplicate_pair_rejected_in_either_order(self) -> None:
        # Arrange
        store, tracker = make_tracker()
        _ = tracker.record_outcome("voter", YESTERDAY, "a", "b", "a", 5, TODAY)

        # Act & Assert
        with pytest.raises(DuplicatePairError) as exc_info:
            _ = tracker.record_outcome("voter", YESTERDAY, "b", "a", None, 5, TODAY)

        assert exc_info.value.pair == ("a", "b")
        assert exc_info.value.voter_id == "voter"
        progress = store.get_voting_progress("voter", YESTERDAY)
        assert progress is not None and progress.vote_count == 1

    def test_missing_record_created_with_given_quota(self) -> None:
        store, tracker = make_tracker()

        update = tracker.record_outcome("voter", YESTERDAY, "a", "b", "a", 1, TODAY)

        assert update.required_votes == 1
        assert update.entered_ranking
        assert store.get_voting_progress("voter", YESTERDAY) is not None

    def test_stored_quota_wins_over_later_value(self) -> None:
        """A quota committed at start is kept even if more submissions arrive."""
        _, tracker = make_tracker()
        _ = tracker.initialize("voter", YESTERDAY, 1)

        update = tracker.record_outcome("voter", YESTERDAY, "a", "b", "a", 5, TODAY)

        assert update.required_votes == 1
        assert update.entered_ranking

    def test_entering_without_today_submission(self) -> None:
        """Entering before submitting today flags nothing and still succeeds."""
        store = MemoryStore()
        tracker = VotingProgressTracker(store)

        update = tracker.record_outcome("voter", YESTERDAY, "a", "b", "a", 1, TODAY)

        assert update.just_entered
        assert store.list_submissions(TODAY) == []


class TestProgressState:
    """Test state mapping."""

    def test_states(self) -> None:
        assert state_of(None) is ProgressState.NO_PROGRESS
        assert state_of(VotingProgress(user_id="u", challenge_date=YESTERDAY, vote_count=2)) is ProgressState.VOTING
        assert (
            state_of(VotingProgress(user_id="u", challenge_date=YESTERDAY, entered_ranking=True))
            is ProgressState.ENTERED_RANKING
        )

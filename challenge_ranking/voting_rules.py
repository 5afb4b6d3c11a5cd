"""
Voting eligibility rules and constants.

Pure functions defining how many comparisons a voter owes for a challenge-day
and which voting state they are in.
"""

import itertools
from collections.abc import Iterable, Set
from enum import Enum

from .exceptions import ValidationError
from .models import pair_key

MIN_SUBMISSIONS_FOR_RANKING = 5
DEFAULT_REQUIRED_VOTES = 5


class VotingState(Enum):
    """Where a voter stands for one challenge-day."""

    NOT_ENOUGH_SUBMISSIONS = "not_enough_submissions"
    CAN_VOTE = "can_vote"
    ENTERED_RANKING = "entered_ranking"
    NO_MORE_PAIRS = "no_more_pairs"


def _check_count(name: str, value: int) -> None:
    if value < 0:
        raise ValidationError(f"{name} cannot be negative, got {value}")


def total_pairs(submission_count: int) -> int:
    """Number of unique unordered pairs among N submissions: n * (n-1) / 2."""
    _check_count("submission_count", submission_count)
    if submission_count < 2:
        return 0
    return submission_count * (submission_count - 1) // 2


def required_votes(submission_count: int, cap: int = DEFAULT_REQUIRED_VOTES) -> int:
    """
    How many non-skip votes a voter must cast to enter the ranking.

    - 0 submissions: nothing to vote on (bootstrap, offer opt-in instead)
    - fewer pairs than the cap: every available pair
    - otherwise: the cap
    """
    _check_count("submission_count", submission_count)
    if submission_count == 0:
        return 0
    return min(cap, total_pairs(submission_count))


def has_enough_submissions_for_ranking(submission_count: int) -> bool:
    return submission_count >= MIN_SUBMISSIONS_FOR_RANKING


def has_enough_submissions(submission_count: int) -> bool:
    """At least two submissions are needed to form a pair."""
    return submission_count >= 2


def has_entered_ranking(vote_count: int, required: int = DEFAULT_REQUIRED_VOTES) -> bool:
    return vote_count >= required


def votes_remaining(vote_count: int, required: int = DEFAULT_REQUIRED_VOTES) -> int:
    return max(0, required - vote_count)


def vote_progress_percentage(vote_count: int, required: int = DEFAULT_REQUIRED_VOTES) -> float:
    """Progress towards the quota, capped at 100."""
    if required == 0:
        return 100.0
    return min(100.0, (vote_count / required) * 100.0)


def can_vote_on_submission(submission_user_id: str, voter_id: str) -> bool:
    return submission_user_id != voter_id


def is_valid_voting_pair(submission_a_user_id: str, submission_b_user_id: str, voter_id: str) -> bool:
    """A pair is valid when neither submission belongs to the voter."""
    return can_vote_on_submission(submission_a_user_id, voter_id) and can_vote_on_submission(
        submission_b_user_id, voter_id
    )


def unseen_pairs(submission_ids: Iterable[str], seen: Set[tuple[str, str]]) -> list[tuple[str, str]]:
    """All pair keys among submission_ids that are not in seen, in a stable order."""
    ids = sorted(set(submission_ids))
    return [
        key
        for key in (pair_key(a, b) for a, b in itertools.combinations(ids, 2))
        if key not in seen
    ]


def determine_voting_state(
    submission_count: int,
    vote_count: int,
    has_more_pairs: bool,
    required: int = DEFAULT_REQUIRED_VOTES,
) -> VotingState:
    """Exhausted pairs override quota signalling."""
    if not has_enough_submissions(submission_count):
        return VotingState.NOT_ENOUGH_SUBMISSIONS

    if not has_more_pairs:
        return VotingState.NO_MORE_PAIRS

    if has_entered_ranking(vote_count, required):
        return VotingState.ENTERED_RANKING

    return VotingState.CAN_VOTE

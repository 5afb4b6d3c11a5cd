"""
Final rank resolution for a challenge-day.

Orders submissions by accumulated Elo rating. Equal ratings share a rank;
inside a tie the earlier submission is listed first, then the lower id.
"""

from collections.abc import Mapping, Sequence
from enum import Enum

from ..logging_config import get_logger
from ..models import RankedEntry, RatingRecord, Submission

logger = get_logger("rank_resolver")


class RankNumbering(Enum):
    """How ranks continue after a tie."""

    COMPETITION = "competition"  # 1, 1, 3
    DENSE = "dense"  # 1, 1, 2


def resolve_ranks(
    records: Sequence[RatingRecord],
    submissions: Mapping[str, Submission],
    numbering: RankNumbering = RankNumbering.COMPETITION,
    eligible_only: bool = True,
) -> list[RankedEntry]:
    """
    Compute final ranks from rating records.

    Args:
        records: Rating records of one challenge-day
        submissions: Submissions of that day keyed by submission_id
        numbering: Rank numbering scheme after ties
        eligible_only: Rank only submissions flagged included_in_ranking

    Returns:
        Ranked entries in rank order
    """
    candidates: list[tuple[RatingRecord, Submission]] = []
    for record in records:
        submission = submissions.get(record.submission_id)
        if submission is None:
            logger.warning(f"Rating record without submission: {record.submission_id}")
            continue
        if eligible_only and not submission.included_in_ranking:
            continue
        candidates.append((record, submission))

    candidates.sort(key=lambda pair: (-pair[0].rating, pair[1].created_at, pair[1].submission_id))

    entries: list[RankedEntry] = []
    rank = 0
    previous_rating: int | None = None
    for position, (record, submission) in enumerate(candidates, 1):
        if record.rating != previous_rating:
            rank = position if numbering is RankNumbering.COMPETITION else rank + 1
            previous_rating = record.rating
        entries.append(
            RankedEntry(
                submission_id=record.submission_id,
                user_id=submission.user_id,
                rank=rank,
                rating=record.rating,
                vote_count=record.vote_count,
            )
        )

    logger.debug(f"Resolved {len(entries)} ranks from {len(records)} rating records")
    return entries

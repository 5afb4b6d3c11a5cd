"""
Tests for final rank resolution.

Focus on ordering, ties and eligibility filtering.
"""

from datetime import date

from challenge_ranking.models import RatingRecord, Submission
from challenge_ranking.rankers.rank_resolver import RankNumbering, resolve_ranks

DAY = date(2024, 3, 1)


def make_day(ratings: dict[str, int], included: bool = True) -> tuple[list[RatingRecord], dict[str, Submission]]:
    """Build records and submissions; creation order follows dict order."""
    records = []
    submissions = {}
    for i, (submission_id, rating) in enumerate(ratings.items()):
        records.append(RatingRecord(submission_id=submission_id, challenge_date=DAY, rating=rating, vote_count=i))
        submissions[submission_id] = Submission(
            submission_id=submission_id,
            user_id=f"user_{submission_id}",
            challenge_date=DAY,
            created_at=100.0 + i,
            included_in_ranking=included,
        )
    return records, submissions


class TestRankResolver:
    """Test resolve_ranks behavior."""

    def test_orders_by_rating_descending(self) -> None:
        # Arrange
        records, submissions = make_day({"s1": 1000, "s2": 1040, "s3": 980})

        # Act
        entries = resolve_ranks(records, submissions)

        # Assert
        assert [e.submission_id for e in entries] == ["s2", "s1", "s3"]
        assert [e.rank for e in entries] == [1, 2, 3]
        assert entries[0].user_id == "user_s2"
        assert entries[0].rating == 1040

    def test_ties_share_rank_competition(self) -> None:
        """Equal ratings share a rank and the next rank skips."""
        records, submissions = make_day({"s1": 1016, "s2": 1016, "s3": 968})

        entries = resolve_ranks(records, submissions)

        assert [e.rank for e in entries] == [1, 1, 3]

    def test_ties_share_rank_dense(self) -> None:
        records, submissions = make_day({"s1": 1016, "s2": 1016, "s3": 968})

        entries = resolve_ranks(records, submissions, numbering=RankNumbering.DENSE)

        assert [e.rank for e in entries] == [1, 1, 2]

    def test_tie_listed_by_creation_time(self) -> None:
        """Inside a tie the earlier submission comes first, regardless of id."""
        # Arrange
        records, submissions = make_day({"zeta": 1000, "alpha": 1000})

        # Act
        entries = resolve_ranks(records, submissions)

        # Assert
        assert [e.submission_id for e in entries] == ["zeta", "alpha"]

    def test_tie_with_same_creation_time_uses_id(self) -> None:
        records, submissions = make_day({"zeta": 1000, "alpha": 1000})
        submissions["alpha"].created_at = submissions["zeta"].created_at

        entries = resolve_ranks(records, submissions)

        assert [e.submission_id for e in entries] == ["alpha", "zeta"]

    def test_ineligible_submissions_excluded(self) -> None:
        """Only submissions that entered the ranking are ranked by default."""
        # Arrange
        records, submissions = make_day({"s1": 1100, "s2": 1000, "s3": 900})
        submissions["s1"].included_in_ranking = False

        # Act
        eligible = resolve_ranks(records, submissions)
        everything = resolve_ranks(records, submissions, eligible_only=False)

        # Assert
        assert [e.submission_id for e in eligible] == ["s2", "s3"]
        assert [e.rank for e in eligible] == [1, 2]
        assert [e.submission_id for e in everything] == ["s1", "s2", "s3"]

    def test_records_without_submission_skipped(self) -> None:
        records, submissions = make_day({"s1": 1000, "s2": 1010})
        del submissions["s1"]

        entries = resolve_ranks(records, submissions)

        assert [e.submission_id for e in entries] == ["s2"]

    def test_empty_input(self) -> None:
        assert resolve_ranks([], {}) == []

    def test_idempotent(self) -> None:
        """Same input gives the same assignment."""
        records, submissions = make_day({"s1": 1000, "s2": 1000, "s3": 1032, "s4": 968})

        first = resolve_ranks(records, submissions)
        second = resolve_ranks(records, submissions)

        assert first == second

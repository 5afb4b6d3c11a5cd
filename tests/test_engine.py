"""
Tests for RankingEngine.

Focus on cast_vote atomicity, quota handling, bootstrap enrollment and final
rank resolution.
"""

import tempfile
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from pathlib import Path

import pytest

from challenge_ranking.engine import EngineConfig, RankingEngine, voting_challenge_date
from challenge_ranking.exceptions import (
    ConfigurationError,
    DuplicatePairError,
    InsufficientSubmissions,
    NoMorePairs,
    SelfPairingError,
    StoreError,
    ValidationError,
)
from challenge_ranking.interfaces import Store
from challenge_ranking.models import AdjacentRankingDates, RatingRecord, SubmissionRank
from challenge_ranking.rankers.rank_resolver import RankNumbering
from challenge_ranking.storage import MemoryStore, SQLiteStore
from challenge_ranking.voting_rules import VotingState

YESTERDAY = date(2024, 3, 1)
TODAY = date(2024, 3, 2)


def make_engine(
    store: Store | None = None,
    users: tuple[str, ...] = ("alice", "bob", "carol", "dave"),
    **config,
) -> RankingEngine:
    """Engine whose clock says TODAY, with one submission per user for YESTERDAY."""
    engine = RankingEngine(store or MemoryStore(), config=EngineConfig(seed=0, **config), today=lambda: TODAY)
    for user in users:
        _ = engine.submit(user, YESTERDAY, payload={"title": user}, submission_id=f"{user}-y")
    return engine


def ratings(engine: RankingEngine) -> dict[str, RatingRecord]:
    return {r.submission_id: r for r in engine.store.list_rating_records(YESTERDAY)}


RANKED_USERS = ("alice", "bob", "carol", "dave", "erin")


def play_ranked_day(engine: RankingEngine) -> None:
    """alice and carol each win once; erin votes but never enters the ranking."""
    # Everyone but erin already entered the ranking by voting
    for user in ("alice", "bob", "carol", "dave"):
        _ = engine.store.mark_submission_included_in_ranking(user, YESTERDAY)
    _ = engine.start_voting("erin", YESTERDAY)
    _ = engine.cast_vote("erin", YESTERDAY, "alice-y", "bob-y", "alice-y")
    _ = engine.cast_vote("erin", YESTERDAY, "carol-y", "dave-y", "carol-y")


class TestVotingSession:
    """Test start_voting and pair selection."""

    def test_start_voting_sets_quota_and_records(self) -> None:
        """Three other submissions give three pairs and a quota of three."""
        # Arrange
        engine = make_engine()

        # Act
        session = engine.start_voting("dave", YESTERDAY)

        # Assert
        assert session.total_submissions == 4
        assert session.other_submissions == 3
        assert session.required_votes == 3
        assert session.vote_count == 0
        assert not session.entered_ranking
        assert session.state is VotingState.CAN_VOTE
        assert {r.rating for r in ratings(engine).values()} == {1000}
        assert len(ratings(engine)) == 4

    def test_quota_capped_for_large_days(self) -> None:
        engine = make_engine(users=("a", "b", "c", "d", "e", "f", "voter"))

        session = engine.start_voting("voter", YESTERDAY)

        assert session.required_votes == 5

    def test_next_pair_excludes_own_submission(self) -> None:
        engine = make_engine()
        _ = engine.start_voting("dave", YESTERDAY)

        seen = set()
        for _ in range(3):
            pair = engine.next_pair("dave", YESTERDAY)
            assert "dave" not in (pair.submission_a.user_id, pair.submission_b.user_id)
            _ = engine.cast_vote("dave", YESTERDAY, pair.submission_a.submission_id, pair.submission_b.submission_id, None)
            seen.add(pair.key)

        assert len(seen) == 3
        with pytest.raises(NoMorePairs):
            _ = engine.next_pair("dave", YESTERDAY)

    def test_session_reports_exhaustion(self) -> None:
        engine = make_engine()
        for a, b in [("alice-y", "bob-y"), ("alice-y", "carol-y"), ("bob-y", "carol-y")]:
            _ = engine.cast_vote("dave", YESTERDAY, a, b, a)

        session = engine.start_voting("dave", YESTERDAY)

        assert session.entered_ranking
        assert session.state is VotingState.NO_MORE_PAIRS


class TestCastVote:
    """Test the atomic vote operation."""

    def test_first_vote_updates_both_ratings(self) -> None:
        # Arrange
        engine = make_engine()
        _ = engine.start_voting("dave", YESTERDAY)

        # Act
        result = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "alice-y")

        # Assert
        assert result.vote_count == 1
        assert result.required_votes == 3
        assert not result.entered_ranking
        records = ratings(engine)
        assert records["alice-y"].rating == 1016
        assert records["bob-y"].rating == 984
        assert records["alice-y"].vote_count == 1
        assert records["bob-y"].vote_count == 1
        assert records["carol-y"].rating == 1000

    def test_winner_b_updates_from_pre_comparison_ratings(self) -> None:
        engine = make_engine()
        _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "alice-y")

        _ = engine.cast_vote("carol", YESTERDAY, "alice-y", "bob-y", "bob-y")

        records = ratings(engine)
        # 1016 vs 984 with B winning: E(A)=0.546
        assert records["alice-y"].rating == 999
        assert records["bob-y"].rating == 1001

    def test_completing_quota_enters_ranking(self) -> None:
        """Third vote enters; the voter's current-day submission becomes eligible."""
        # Arrange
        engine = make_engine()
        _ = engine.submit("dave", TODAY, submission_id="dave-t")
        _ = engine.start_voting("dave", YESTERDAY)

        # Act
        results = [
            engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "alice-y"),
            engine.cast_vote("dave", YESTERDAY, "alice-y", "carol-y", "carol-y"),
            engine.cast_vote("dave", YESTERDAY, "bob-y", "carol-y", "bob-y"),
        ]

        # Assert
        assert [r.vote_count for r in results] == [1, 2, 3]
        assert [r.entered_ranking for r in results] == [False, False, True]
        today_submission = engine.store.get_submission("dave-t")
        assert today_submission is not None and today_submission.included_in_ranking

    def test_progress_is_monotonic(self) -> None:
        engine = make_engine(users=("a", "b", "c", "d", "e", "voter"))
        counts = []
        pairs = [("a-y", "b-y"), ("a-y", "c-y"), ("b-y", "c-y"), ("c-y", "d-y"), ("d-y", "e-y"), ("a-y", "e-y")]

        for i, (a, b) in enumerate(pairs):
            result = engine.cast_vote("voter", YESTERDAY, a, b, None if i == 2 else a)
            counts.append((result.vote_count, result.entered_ranking))

        assert [c for c, _ in counts] == [1, 2, 2, 3, 4, 5]
        assert [e for _, e in counts] == [False, False, False, False, False, True]

    def test_skip_leaves_ratings_unchanged(self) -> None:
        # Arrange
        engine = make_engine()
        _ = engine.start_voting("dave", YESTERDAY)

        # Act
        result = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", None)

        # Assert
        assert result.vote_count == 0
        records = ratings(engine)
        assert records["alice-y"].rating == 1000
        assert records["alice-y"].vote_count == 0
        assert len(engine.store.list_comparisons("dave", YESTERDAY)) == 1

    def test_duplicate_pair_rejected_without_side_effects(self) -> None:
        # Arrange
        engine = make_engine()
        _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "alice-y")

        # Act & Assert
        with pytest.raises(DuplicatePairError):
            _ = engine.cast_vote("dave", YESTERDAY, "bob-y", "alice-y", "bob-y")

        records = ratings(engine)
        assert records["alice-y"].rating == 1016
        progress = engine.store.get_voting_progress("dave", YESTERDAY)
        assert progress is not None and progress.vote_count == 1

    def test_skipped_pair_cannot_be_voted_later(self) -> None:
        engine = make_engine()
        _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", None)

        with pytest.raises(DuplicatePairError):
            _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "alice-y")

    def test_own_submission_rejected(self) -> None:
        engine = make_engine()

        with pytest.raises(SelfPairingError):
            _ = engine.cast_vote("dave", YESTERDAY, "dave-y", "alice-y", "dave-y")

        assert engine.store.list_comparisons("dave", YESTERDAY) == []

    def test_malformed_votes(self) -> None:
        engine = make_engine()

        with pytest.raises(ValidationError, match="itself"):
            _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "alice-y", "alice-y")
        with pytest.raises(ValidationError, match="winner_id"):
            _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "carol-y")
        with pytest.raises(ValidationError, match="Unknown submission"):
            _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "ghost", None)

    def test_submission_from_other_day_rejected(self) -> None:
        engine = make_engine()
        _ = engine.submit("erin", TODAY, submission_id="erin-t")

        with pytest.raises(ValidationError, match="belongs to"):
            _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "erin-t", "alice-y")

    def test_missing_rating_records_created_lazily(self) -> None:
        """Voting without start_voting still starts both sides at the initial rating."""
        engine = make_engine()

        _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "bob-y")

        records = ratings(engine)
        assert records["alice-y"].rating == 984
        assert records["bob-y"].rating == 1016
        assert "carol-y" not in records

    def test_store_failure_rolls_back_with_context(self) -> None:
        """A backend failure mid-vote leaves no comparison and reports the pair."""

        class FailingStore(MemoryStore):
            def upsert_rating_record(self, record: RatingRecord) -> None:
                raise StoreError("disk full")

        # Arrange
        engine = make_engine(store=FailingStore())

        # Act
        with pytest.raises(StoreError) as exc_info:
            _ = engine.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "alice-y")

        # Assert
        assert exc_info.value.challenge_date == YESTERDAY
        assert exc_info.value.submission_ids == ("alice-y", "bob-y")
        assert "disk full" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, StoreError)
        assert engine.store.list_comparisons("dave", YESTERDAY) == []
        assert engine.store.get_voting_progress("dave", YESTERDAY) is None


class TestCastVotePayload:
    """Test raw payload validation."""

    def test_valid_payload(self) -> None:
        engine = make_engine()

        result = engine.cast_vote_payload(
            "dave", YESTERDAY, {"submissionAId": "alice-y", "submissionBId": "bob-y", "winnerId": None}
        )

        assert result.vote_count == 0
        assert len(engine.store.list_comparisons("dave", YESTERDAY)) == 1

    def test_invalid_payloads(self) -> None:
        engine = make_engine()

        with pytest.raises(ValidationError, match="Invalid vote payload"):
            _ = engine.cast_vote_payload("dave", YESTERDAY, {"submissionAId": "alice-y", "submissionBId": "bob-y"})
        with pytest.raises(ValidationError, match="Invalid vote payload"):
            _ = engine.cast_vote_payload(
                "dave", YESTERDAY, {"submissionAId": 1, "submissionBId": "bob-y", "winnerId": None}
            )
        with pytest.raises(ValidationError, match="Missing required fields"):
            _ = engine.cast_vote_payload(
                "dave", YESTERDAY, {"submissionAId": "", "submissionBId": "bob-y", "winnerId": None}
            )


class TestBootstrap:
    """Test the opt-in flow when there is nothing to vote on."""

    def test_no_submissions(self) -> None:
        # Arrange
        engine = make_engine(users=())
        _ = engine.submit("alice", TODAY, submission_id="alice-t")

        # Act
        session = engine.start_voting("alice", YESTERDAY)

        # Assert
        assert session.needs_opt_in
        assert session.required_votes == 0
        assert engine.store.list_rating_records(YESTERDAY) == []
        with pytest.raises(InsufficientSubmissions):
            _ = engine.next_pair("alice", YESTERDAY)

    def test_single_other_submission(self) -> None:
        engine = make_engine(users=("alice", "bob"))

        session = engine.start_voting("bob", YESTERDAY)

        assert session.state is VotingState.NOT_ENOUGH_SUBMISSIONS
        assert session.other_submissions == 1

    def test_enroll_marks_current_submission(self) -> None:
        # Arrange
        engine = make_engine(users=("alice",))
        _ = engine.submit("alice", TODAY, submission_id="alice-t")

        # Act
        result = engine.enroll_without_voting("alice", YESTERDAY)

        # Assert
        assert result.entered_ranking
        assert result.required_votes == 0
        submission = engine.store.get_submission("alice-t")
        assert submission is not None and submission.included_in_ranking
        progress = engine.store.get_voting_progress("alice", YESTERDAY)
        assert progress is not None and progress.entered_ranking

    def test_enroll_refused_when_voting_possible(self) -> None:
        engine = make_engine()

        with pytest.raises(ValidationError, match="vote instead"):
            _ = engine.enroll_without_voting("dave", YESTERDAY)


class TestSubmit:
    """Test submission storage and carry-over eligibility."""

    def test_submit_after_entering_is_included(self) -> None:
        # Arrange
        engine = make_engine(users=("alice", "bob", "carol"))
        _ = engine.cast_vote("carol", YESTERDAY, "alice-y", "bob-y", "alice-y")

        # Act
        submission = engine.submit("carol", TODAY)

        # Assert
        assert submission.included_in_ranking
        assert not engine.submit("alice", TODAY).included_in_ranking

    def test_second_submission_same_day_rejected(self) -> None:
        engine = make_engine()

        with pytest.raises(ValidationError):
            _ = engine.submit("alice", YESTERDAY)


class TestResolveFinalRanks:
    """Test final rank resolution through the engine."""

    def test_ranks_persisted(self) -> None:
        # Arrange
        engine = make_engine(users=RANKED_USERS)
        play_ranked_day(engine)

        # Act
        entries = engine.resolve_final_ranks(YESTERDAY)

        # Assert
        assert [e.submission_id for e in entries] == ["alice-y", "carol-y", "bob-y", "dave-y"]
        assert [e.rank for e in entries] == [1, 1, 3, 3]
        records = ratings(engine)
        assert records["alice-y"].final_rank == 1
        assert records["carol-y"].final_rank == 1
        assert records["dave-y"].final_rank == 3
        assert records["erin-y"].final_rank is None

    def test_idempotent(self) -> None:
        engine = make_engine(users=RANKED_USERS)
        play_ranked_day(engine)

        first = engine.resolve_final_ranks(YESTERDAY)
        second = engine.resolve_final_ranks(YESTERDAY)

        assert first == second

    def test_dense_numbering_and_include_all(self) -> None:
        engine = make_engine(users=RANKED_USERS, rank_numbering=RankNumbering.DENSE, eligible_only=False)
        play_ranked_day(engine)

        entries = engine.resolve_final_ranks(YESTERDAY)

        assert [e.submission_id for e in entries] == ["alice-y", "carol-y", "erin-y", "bob-y", "dave-y"]
        assert [e.rank for e in entries] == [1, 1, 2, 3, 3]

    def test_empty_day(self) -> None:
        engine = make_engine(users=())

        assert engine.resolve_final_ranks(YESTERDAY) == []


class TestRankLookups:
    """Test reading published ranks back."""

    def _resolved_engine(self) -> RankingEngine:
        engine = make_engine(users=RANKED_USERS)
        play_ranked_day(engine)
        _ = engine.resolve_final_ranks(YESTERDAY)
        return engine

    def test_unresolved_day_has_no_ranking(self) -> None:
        engine = make_engine()

        assert engine.ranking(YESTERDAY) == []
        assert engine.top_three(YESTERDAY) == []
        assert engine.user_rank(YESTERDAY, "alice") is None
        assert engine.submission_rank("alice-y") is None

    def test_ranking_reads_persisted_ranks(self) -> None:
        # Arrange
        engine = self._resolved_engine()

        # Act
        entries = engine.ranking(YESTERDAY)

        # Assert
        assert [(e.submission_id, e.rank) for e in entries] == [
            ("alice-y", 1),
            ("carol-y", 1),
            ("bob-y", 3),
            ("dave-y", 3),
        ]
        assert entries[0].user_id == "alice"
        assert entries[0].rating == 1016
        assert [e.submission_id for e in engine.ranking(YESTERDAY, limit=2)] == ["alice-y", "carol-y"]
        assert engine.ranking(YESTERDAY) == engine.resolve_final_ranks(YESTERDAY)

    def test_negative_limit_rejected(self) -> None:
        engine = self._resolved_engine()

        with pytest.raises(ValidationError):
            _ = engine.ranking(YESTERDAY, limit=-1)

    def test_top_three_keeps_ties_for_third(self) -> None:
        engine = self._resolved_engine()

        top = engine.top_three(YESTERDAY)

        assert [e.rank for e in top] == [1, 1, 3, 3]

    def test_user_rank(self) -> None:
        engine = self._resolved_engine()

        assert engine.user_rank(YESTERDAY, "alice") == 1
        assert engine.user_rank(YESTERDAY, "dave") == 3
        assert engine.user_rank(YESTERDAY, "erin") is None
        assert engine.user_rank(YESTERDAY, "nobody") is None
        assert engine.user_rank(TODAY, "alice") is None

    def test_submission_rank_counts_every_rated_submission(self) -> None:
        """Total includes rated submissions that were left out of the ranking."""
        engine = self._resolved_engine()

        assert engine.submission_rank("bob-y") == SubmissionRank(challenge_date=YESTERDAY, rank=3, total=5)
        assert engine.submission_rank("erin-y") is None
        assert engine.submission_rank("missing") is None

    def test_adjacent_ranking_dates(self) -> None:
        # Arrange
        engine = self._resolved_engine()
        engine.store.upsert_rating_record(RatingRecord(submission_id="old", challenge_date=date(2024, 2, 20), final_rank=1))
        engine.store.upsert_rating_record(RatingRecord(submission_id="unresolved", challenge_date=date(2024, 2, 25)))

        # Act & Assert
        assert engine.adjacent_ranking_dates(TODAY) == AdjacentRankingDates(previous=YESTERDAY, next=None)
        assert engine.adjacent_ranking_dates(YESTERDAY) == AdjacentRankingDates(previous=date(2024, 2, 20), next=None)
        assert engine.adjacent_ranking_dates(date(2024, 2, 25)) == AdjacentRankingDates(
            previous=date(2024, 2, 20), next=YESTERDAY
        )
        assert engine.adjacent_ranking_dates(date(2024, 1, 1)) == AdjacentRankingDates(
            previous=None, next=date(2024, 2, 20)
        )


class TestConcurrency:
    """Test concurrent votes against a shared SQLite file."""

    def test_concurrent_duplicate_votes_count_once(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            db_path = Path(temp_dir) / "ranking.db"
            engine = make_engine(store=SQLiteStore(db_path))
            _ = engine.start_voting("dave", YESTERDAY)

            def vote(_: int) -> str:
                # Each worker gets its own engine and store handle
                worker = RankingEngine(SQLiteStore(db_path), config=EngineConfig(seed=0), today=lambda: TODAY)
                try:
                    _ = worker.cast_vote("dave", YESTERDAY, "alice-y", "bob-y", "alice-y")
                    return "ok"
                except DuplicatePairError:
                    return "duplicate"

            # Act
            with ThreadPoolExecutor(max_workers=8) as executor:
                outcomes = list(executor.map(vote, range(8)))

            # Assert
            assert outcomes.count("ok") == 1
            assert outcomes.count("duplicate") == 7
            records = ratings(engine)
            assert records["alice-y"].rating == 1016
            assert records["bob-y"].rating == 984
            progress = engine.store.get_voting_progress("dave", YESTERDAY)
            assert progress is not None and progress.vote_count == 1

    def test_concurrent_votes_from_different_voters(self) -> None:
        """Every accepted vote is reflected in the per-submission vote counts."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "ranking.db"
            users = ("a", "b", "c", "d", "e", "f")
            engine = make_engine(store=SQLiteStore(db_path), users=users)

            def vote_all(voter: str) -> int:
                worker = RankingEngine(SQLiteStore(db_path), config=EngineConfig(seed=0), today=lambda: TODAY)
                others = [f"{u}-y" for u in users if u != voter]
                cast = 0
                for a, b in zip(others, others[1:]):
                    _ = worker.cast_vote(voter, YESTERDAY, a, b, a)
                    cast += 1
                return cast

            with ThreadPoolExecutor(max_workers=len(users)) as executor:
                total = sum(executor.map(vote_all, users))

            assert total == len(users) * 4
            assert sum(r.vote_count for r in ratings(engine).values()) == 2 * total
            for user in users:
                progress = engine.store.get_voting_progress(user, YESTERDAY)
                assert progress is not None and progress.vote_count == 4


class TestEngineConfig:
    """Test configuration validation."""

    def test_defaults(self) -> None:
        config = EngineConfig()

        assert config.k_factor == 32
        assert config.initial_rating == 1000
        assert config.max_required_votes == 5
        assert config.rank_numbering is RankNumbering.COMPETITION
        assert config.eligible_only
        assert config.selector == "least-compared"

    def test_invalid_values(self) -> None:
        with pytest.raises(ConfigurationError):
            _ = EngineConfig(k_factor=0)
        with pytest.raises(ConfigurationError):
            _ = EngineConfig(max_required_votes=0)
        with pytest.raises(ConfigurationError):
            _ = EngineConfig(selector="best-first")

    def test_voting_targets_previous_day(self) -> None:
        assert voting_challenge_date(TODAY) == YESTERDAY
        assert voting_challenge_date(date(2024, 3, 1)) == date(2024, 2, 29)

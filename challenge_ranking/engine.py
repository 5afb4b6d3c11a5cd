"""
Ranking engine for daily challenges.

Coordinates store, progress tracker, pair selector, Elo updater and rank
resolver. Each public operation runs as one store transaction so concurrent
workers only coordinate through the store.
"""

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, cast

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

if TYPE_CHECKING:
    from loguru import Logger

from .exceptions import (
    ConfigurationError,
    InsufficientSubmissions,
    NoMorePairs,
    SelfPairingError,
    StoreError,
    ValidationError,
)
from .interfaces import PairSelector, Store, VoteRequest
from .logging_config import get_logger
from .models import (
    INITIAL_RATING,
    AdjacentRankingDates,
    RankedEntry,
    RatingRecord,
    Submission,
    SubmissionRank,
    VotePair,
    VoteResult,
    VotingProgress,
    Winner,
)
from .pair_selectors import SELECTOR_NAMES, create_selector
from .progress import VotingProgressTracker
from .rankers.elo import K_FACTOR, calculate_elo
from .rankers.rank_resolver import RankNumbering, resolve_ranks
from .voting_rules import (
    DEFAULT_REQUIRED_VOTES,
    VotingState,
    determine_voting_state,
    has_enough_submissions,
    is_valid_voting_pair,
    required_votes,
    unseen_pairs,
)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def voting_challenge_date(today: date) -> date:
    """Voting always happens on the previous day's submissions."""
    return today - timedelta(days=1)


@dataclass
class EngineConfig:
    """Configuration for the ranking engine."""

    k_factor: int = K_FACTOR
    initial_rating: int = INITIAL_RATING
    max_required_votes: int = DEFAULT_REQUIRED_VOTES
    rank_numbering: RankNumbering = RankNumbering.COMPETITION
    eligible_only: bool = True  # rank only submissions flagged included_in_ranking
    selector: str = "least-compared"
    seed: int | None = None

    def __post_init__(self):
        """Validate configuration."""
        if self.k_factor <= 0:
            raise ConfigurationError(f"k_factor must be positive, got {self.k_factor}")
        if self.max_required_votes <= 0:
            raise ConfigurationError(f"max_required_votes must be positive, got {self.max_required_votes}")
        if self.selector not in SELECTOR_NAMES:
            raise ConfigurationError(f"selector must be one of {SELECTOR_NAMES}, got {self.selector!r}")


@dataclass(frozen=True)
class VotingSession:
    """What a voter faces for one challenge-day."""

    challenge_date: date
    total_submissions: int
    other_submissions: int
    required_votes: int
    vote_count: int
    entered_ranking: bool
    state: VotingState

    @property
    def needs_opt_in(self) -> bool:
        return self.state is VotingState.NOT_ENOUGH_SUBMISSIONS


class RankingEngine:
    """Main entry point for voting and ranking a challenge-day."""

    def __init__(
        self,
        store: Store,
        config: EngineConfig | None = None,
        selector: PairSelector | None = None,
        today: Callable[[], date] = utc_today,
    ):
        """
        Initialize engine with its collaborators.

        Args:
            store: Transactional store holding all shared state
            config: Engine configuration (defaults if omitted)
            selector: Pair selection strategy (built from config if omitted)
            today: Clock returning the current challenge-day
        """
        self.store: Store = store
        self.config: EngineConfig = config or EngineConfig()
        self.selector: PairSelector = selector or create_selector(self.config.selector, self.config.seed)
        self.tracker: VotingProgressTracker = VotingProgressTracker(store)
        self._today: Callable[[], date] = today

        self.logger: Logger = get_logger("engine")

    def set_clock(self, today: Callable[[], date]) -> None:
        """Replace the clock that decides which day's submission enters the ranking."""
        self._today = today

    def submit(
        self,
        user_id: str,
        challenge_date: date,
        payload: Mapping[str, Any] | None = None,
        submission_id: str | None = None,
    ) -> Submission:
        """
        Store a user's submission for a challenge-day.

        A user who already entered the previous day's ranking by voting gets
        the new submission flagged as rank-eligible straight away.
        """
        with self.store.transaction():
            previous = self.store.get_voting_progress(user_id, voting_challenge_date(challenge_date))
            submission = Submission(
                submission_id=submission_id or str(uuid.uuid4()),
                user_id=user_id,
                challenge_date=challenge_date,
                payload=dict(payload or {}),
                included_in_ranking=previous is not None and previous.entered_ranking,
            )
            self.store.add_submission(submission)

        self.logger.info(f"Stored submission {submission.submission_id} by {user_id} for {challenge_date.isoformat()}")
        return submission

    def _initialize_rating_records(self, challenge_date: date) -> int:
        """Create default rating records for submissions that lack one. Returns how many were created."""
        submissions = self.store.list_submissions(challenge_date)
        if not has_enough_submissions(len(submissions)):
            return 0

        existing = {
            record.submission_id
            for record in self.store.get_rating_records([s.submission_id for s in submissions], challenge_date)
        }
        created = 0
        for submission in submissions:
            if submission.submission_id not in existing:
                self.store.upsert_rating_record(
                    RatingRecord(
                        submission_id=submission.submission_id,
                        challenge_date=challenge_date,
                        rating=self.config.initial_rating,
                    )
                )
                created += 1
        if created:
            self.logger.info(f"Initialized {created} rating records for {challenge_date.isoformat()}")
        return created

    def start_voting(self, voter_id: str, challenge_date: date) -> VotingSession:
        """
        Prepare a voter for a challenge-day.

        In the bootstrap case (no submissions, or fewer than 2 from others) no
        records are created and the session asks for opt-in enrollment.
        """
        with self.store.transaction():
            total = self.store.count_submissions(challenge_date)
            others = self.store.count_submissions(challenge_date, excluding_user=voter_id)

            if total == 0 or not has_enough_submissions(others):
                self.logger.info(
                    f"Bootstrap case for {voter_id} on {challenge_date.isoformat()}: "
                    f"{total} submissions, {others} from others"
                )
                progress = self.store.get_voting_progress(voter_id, challenge_date)
                return VotingSession(
                    challenge_date=challenge_date,
                    total_submissions=total,
                    other_submissions=others,
                    required_votes=0,
                    vote_count=progress.vote_count if progress else 0,
                    entered_ranking=progress.entered_ranking if progress else False,
                    state=VotingState.NOT_ENOUGH_SUBMISSIONS,
                )

            quota = required_votes(others, self.config.max_required_votes)
            _ = self._initialize_rating_records(challenge_date)
            progress = self.tracker.initialize(voter_id, challenge_date, quota)

            candidates = [s.submission_id for s in self._candidates(voter_id, challenge_date)]
            seen = {c.pair_key for c in self.store.list_comparisons(voter_id, challenge_date)}
            has_more = bool(unseen_pairs(candidates, seen))

        entered = progress.entered_ranking or progress.vote_count >= progress.required_votes
        session = VotingSession(
            challenge_date=challenge_date,
            total_submissions=total,
            other_submissions=others,
            required_votes=progress.required_votes,
            vote_count=progress.vote_count,
            entered_ranking=entered,
            state=determine_voting_state(others, progress.vote_count, has_more, progress.required_votes),
        )
        self.logger.debug(f"Voting session for {voter_id}: {session}")
        return session

    def _candidates(self, voter_id: str, challenge_date: date) -> list[Submission]:
        return [s for s in self.store.list_submissions(challenge_date) if s.user_id != voter_id]

    def next_pair(self, voter_id: str, challenge_date: date) -> VotePair:
        """
        Choose the next unseen pair for a voter.

        Raises:
            InsufficientSubmissions: Bootstrap case, offer opt-in instead
            NoMorePairs: Voter has compared or skipped every pair
        """
        with self.store.transaction():
            total = self.store.count_submissions(challenge_date)
            candidates = self._candidates(voter_id, challenge_date)
            if total == 0 or not has_enough_submissions(len(candidates)):
                raise InsufficientSubmissions(
                    f"{len(candidates)} submissions from others on {challenge_date.isoformat()}; at least 2 needed"
                )

            seen = {c.pair_key for c in self.store.list_comparisons(voter_id, challenge_date)}
            ratings = {
                record.submission_id: record
                for record in self.store.get_rating_records([s.submission_id for s in candidates], challenge_date)
            }

        selected = self.selector.select_pair(candidates, seen, ratings)
        if selected is None:
            self.logger.info(f"No more pairs for {voter_id} on {challenge_date.isoformat()}")
            raise NoMorePairs(f"{voter_id} has seen every pair for {challenge_date.isoformat()}")

        by_id = {s.submission_id: s for s in candidates}
        if selected[0] not in by_id or selected[1] not in by_id:
            raise SelfPairingError(f"Selector produced a pair outside the voter's candidates: {selected}")

        pair = VotePair(submission_a=by_id[selected[0]], submission_b=by_id[selected[1]])
        self.logger.debug(f"Next pair for {voter_id}: {pair.key}")
        return pair

    def cast_vote(
        self,
        voter_id: str,
        challenge_date: date,
        submission_a_id: str,
        submission_b_id: str,
        winner_id: str | None,
    ) -> VoteResult:
        """
        Record one comparison atomically.

        Inserts the comparison if absent, applies the Elo update to both
        submissions from their pre-comparison ratings (skips leave ratings
        alone) and advances the voter's progress.

        Raises:
            DuplicatePairError: Voter already recorded this pair
            SelfPairingError: Pair contains the voter's own submission
            ValidationError: Unknown submissions or winner outside the pair
            StoreError: Store failure, with challenge-day and submission context
        """
        if submission_a_id == submission_b_id:
            raise ValidationError(f"Cannot compare submission {submission_a_id} with itself")
        if winner_id is not None and winner_id not in (submission_a_id, submission_b_id):
            raise ValidationError("winner_id must match one of the submissions or be None")

        today = self._today()
        try:
            with self.store.transaction():
                submission_a = self._require_submission(submission_a_id, challenge_date)
                submission_b = self._require_submission(submission_b_id, challenge_date)
                if not is_valid_voting_pair(submission_a.user_id, submission_b.user_id, voter_id):
                    raise SelfPairingError(
                        f"Pair {submission_a_id}/{submission_b_id} contains a submission of voter {voter_id}"
                    )

                others = self.store.count_submissions(challenge_date, excluding_user=voter_id)
                quota = required_votes(others, self.config.max_required_votes)

                update = self.tracker.record_outcome(
                    voter_id,
                    challenge_date,
                    submission_a_id,
                    submission_b_id,
                    winner_id,
                    quota,
                    today,
                )

                if winner_id is not None:
                    winner = Winner.A if winner_id == submission_a_id else Winner.B
                    self._apply_rating_update(challenge_date, submission_a_id, submission_b_id, winner)
        except StoreError as e:
            self.logger.error(f"Vote by {voter_id} failed: {e}")
            raise StoreError(
                f"cast_vote failed: {e}",
                challenge_date=challenge_date,
                submission_ids=(submission_a_id, submission_b_id),
            ) from e

        self.logger.info(
            f"{'Skip' if winner_id is None else 'Vote'} by {voter_id} on {submission_a_id}/{submission_b_id}: "
            f"{update.vote_count}/{update.required_votes} votes, entered={update.entered_ranking}"
        )
        return VoteResult(
            vote_count=update.vote_count,
            required_votes=update.required_votes,
            entered_ranking=update.entered_ranking,
        )

    def cast_vote_payload(self, voter_id: str, challenge_date: date, payload: Mapping[str, object]) -> VoteResult:
        """Validate a raw {submissionAId, submissionBId, winnerId} payload and cast it."""
        try:
            request = TypeAdapter(VoteRequest).validate_python(dict(payload))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid vote payload: {e}") from e

        if not request["submissionAId"] or not request["submissionBId"]:
            raise ValidationError("Missing required fields")

        return self.cast_vote(
            voter_id,
            challenge_date,
            request["submissionAId"],
            request["submissionBId"],
            request["winnerId"],
        )

    def _require_submission(self, submission_id: str, challenge_date: date) -> Submission:
        submission = self.store.get_submission(submission_id)
        if submission is None:
            raise ValidationError(f"Unknown submission: {submission_id}")
        if submission.challenge_date != challenge_date:
            raise ValidationError(
                f"Submission {submission_id} belongs to {submission.challenge_date.isoformat()}, "
                f"not {challenge_date.isoformat()}"
            )
        return submission

    def _apply_rating_update(
        self,
        challenge_date: date,
        submission_a_id: str,
        submission_b_id: str,
        winner: Winner,
    ) -> None:
        """Read both ratings first, then write both."""
        records = {
            record.submission_id: record
            for record in self.store.get_rating_records([submission_a_id, submission_b_id], challenge_date)
        }
        record_a = records.get(submission_a_id) or RatingRecord(
            submission_id=submission_a_id, challenge_date=challenge_date, rating=self.config.initial_rating
        )
        record_b = records.get(submission_b_id) or RatingRecord(
            submission_id=submission_b_id, challenge_date=challenge_date, rating=self.config.initial_rating
        )

        result = calculate_elo(record_a.rating, record_b.rating, winner, self.config.k_factor)

        self.logger.debug(
            f"Rating update {submission_a_id} vs {submission_b_id} (winner {winner.value}): "
            f"{record_a.rating}->{result.new_rating_a}, {record_b.rating}->{result.new_rating_b}"
        )

        record_a.rating = result.new_rating_a
        record_a.vote_count += 1
        record_b.rating = result.new_rating_b
        record_b.vote_count += 1
        self.store.upsert_rating_record(record_a)
        self.store.upsert_rating_record(record_b)

    def enroll_without_voting(self, user_id: str, challenge_date: date) -> VoteResult:
        """
        Opt-in flow for the bootstrap case.

        With nothing to vote on, the user's current-day submission joins the
        ranking without a quota.

        Raises:
            ValidationError: Voting is possible for this challenge-day
        """
        today = self._today()
        with self.store.transaction():
            total = self.store.count_submissions(challenge_date)
            others = self.store.count_submissions(challenge_date, excluding_user=user_id)
            if total > 0 and has_enough_submissions(others):
                raise ValidationError(
                    f"{others} submissions from others on {challenge_date.isoformat()}; vote instead of opting in"
                )

            progress = self.store.get_voting_progress(user_id, challenge_date) or VotingProgress(
                user_id=user_id, challenge_date=challenge_date
            )
            progress.required_votes = 0
            progress.entered_ranking = True
            self.store.upsert_voting_progress(progress)
            marked = self.store.mark_submission_included_in_ranking(user_id, today)

        self.logger.info(f"{user_id} opted into the {today.isoformat()} ranking without voting ({marked} marked)")
        return VoteResult(vote_count=progress.vote_count, required_votes=0, entered_ranking=True)

    def resolve_final_ranks(self, challenge_date: date) -> list[RankedEntry]:
        """
        Compute and persist final ranks for a challenge-day.

        Idempotent: unchanged ratings give the same assignment. Records left
        out of the ranking get final_rank=None.
        """
        try:
            with self.store.transaction():
                records = self.store.list_rating_records(challenge_date)
                submissions = {s.submission_id: s for s in self.store.list_submissions(challenge_date)}
                entries = resolve_ranks(
                    records,
                    submissions,
                    numbering=self.config.rank_numbering,
                    eligible_only=self.config.eligible_only,
                )

                ranks = {entry.submission_id: entry.rank for entry in entries}
                for record in records:
                    final_rank = ranks.get(record.submission_id)
                    if record.final_rank != final_rank:
                        record.final_rank = final_rank
                        self.store.upsert_rating_record(record)
        except StoreError as e:
            self.logger.error(f"Resolving ranks failed: {e}")
            raise StoreError(f"resolve_final_ranks failed: {e}", challenge_date=challenge_date) from e

        self.logger.info(f"Resolved {len(entries)} final ranks for {challenge_date.isoformat()}")
        return entries

    def ranking(self, challenge_date: date, limit: int | None = None) -> list[RankedEntry]:
        """
        Read the published ranks of a challenge-day, best first.

        Only reads what resolve_final_ranks persisted, so an unresolved day
        gives an empty list.

        Args:
            challenge_date: Day whose ranking to read
            limit: Keep at most this many entries (all if None)
        """
        if limit is not None and limit < 0:
            raise ValidationError(f"limit cannot be negative, got {limit}")

        with self.store.transaction():
            records = self.store.list_ranked_records(challenge_date)
            submissions = {s.submission_id: s for s in self.store.list_submissions(challenge_date)}

        entries = [
            RankedEntry(
                submission_id=record.submission_id,
                user_id=submissions[record.submission_id].user_id,
                rank=cast(int, record.final_rank),
                rating=record.rating,
                vote_count=record.vote_count,
            )
            for record in records
            if record.submission_id in submissions
        ]
        entries.sort(key=lambda e: (e.rank, submissions[e.submission_id].created_at, e.submission_id))
        return entries if limit is None else entries[:limit]

    def top_three(self, challenge_date: date) -> list[RankedEntry]:
        """Winners of a challenge-day (more than three when ties share third place)."""
        return [entry for entry in self.ranking(challenge_date) if entry.rank <= 3]

    def user_rank(self, challenge_date: date, user_id: str) -> int | None:
        """Final rank of a user's submission for a day, None if unranked or absent."""
        with self.store.transaction():
            submission = next(
                (s for s in self.store.list_submissions(challenge_date) if s.user_id == user_id),
                None,
            )
            if submission is None:
                return None
            records = self.store.get_rating_records([submission.submission_id], challenge_date)
        return records[0].final_rank if records else None

    def submission_rank(self, submission_id: str) -> SubmissionRank | None:
        """
        Final rank of one submission out of every rated submission that day.

        Returns:
            SubmissionRank, or None if the submission is unknown or unranked
        """
        with self.store.transaction():
            submission = self.store.get_submission(submission_id)
            if submission is None:
                return None
            day_records = self.store.list_rating_records(submission.challenge_date)

        record = next((r for r in day_records if r.submission_id == submission_id), None)
        if record is None or record.final_rank is None:
            return None
        return SubmissionRank(challenge_date=submission.challenge_date, rank=record.final_rank, total=len(day_records))

    def adjacent_ranking_dates(self, challenge_date: date) -> AdjacentRankingDates:
        """Closest days before and after challenge_date that have published ranks."""
        previous, following = self.store.adjacent_ranked_dates(challenge_date)
        return AdjacentRankingDates(previous=previous, next=following)

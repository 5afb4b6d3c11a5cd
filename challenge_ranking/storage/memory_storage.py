"""
In-memory storage implementation.

Keeps all ranking state in dictionaries guarded by a re-entrant lock.
Useful for tests and single-process simulations; state is lost on exit.
"""

import threading
from collections.abc import Callable, Iterator, MutableMapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

from typing_extensions import override

from ..exceptions import ValidationError
from ..interfaces import Store
from ..logging_config import get_logger
from ..models import Comparison, RatingRecord, Submission, VotingProgress

# Module-level logger
logger = get_logger("memory_storage")

_MISSING = object()


@dataclass
class _State:
    submissions: dict[str, Submission] = field(default_factory=dict)
    ratings: dict[tuple[str, date], RatingRecord] = field(default_factory=dict)
    comparisons: list[Comparison] = field(default_factory=list)
    comparison_keys: set[tuple[str, date, str, str]] = field(default_factory=set)
    progress: dict[tuple[str, date], VotingProgress] = field(default_factory=dict)


class MemoryStore(Store):
    """
    Dictionary-backed store.

    transaction() holds the lock for its whole duration. Writes inside it log
    how to undo themselves, and the log is replayed backwards if the block
    raises, so a rollback costs only what the transaction wrote. Stored
    objects are never mutated in place; writes swap in fresh copies.
    """

    def __init__(self) -> None:
        self._state = _State()
        self._lock = threading.RLock()
        self._local = threading.local()

    @override
    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            depth = getattr(self._local, "depth", 0)
            if depth == 0:
                self._local.undo = []
            self._local.depth = depth + 1
            try:
                yield
            except BaseException:
                if depth == 0:
                    undo: list[Callable[[], None]] = self._local.undo
                    for step in reversed(undo):
                        step()
                    logger.debug(f"Transaction rolled back ({len(undo)} writes undone)")
                raise
            finally:
                self._local.depth = depth
                if depth == 0:
                    self._local.undo = None

    def _log_undo(self, step: Callable[[], None]) -> None:
        undo = getattr(self._local, "undo", None)
        if undo is not None:
            undo.append(step)

    def _put(self, mapping: MutableMapping[Any, Any], key: Any, value: Any) -> None:
        """Set mapping[key], remembering the previous value for rollback."""
        previous = mapping.get(key, _MISSING)

        def restore() -> None:
            if previous is _MISSING:
                del mapping[key]
            else:
                mapping[key] = previous

        self._log_undo(restore)
        mapping[key] = value

    @override
    def add_submission(self, submission: Submission) -> None:
        with self._lock:
            if submission.submission_id in self._state.submissions:
                raise ValidationError(f"Submission {submission.submission_id} already exists")
            for existing in self._state.submissions.values():
                if existing.user_id == submission.user_id and existing.challenge_date == submission.challenge_date:
                    raise ValidationError(
                        f"User {submission.user_id} already submitted for {submission.challenge_date.isoformat()}"
                    )
            self._put(self._state.submissions, submission.submission_id, replace(submission))

    @override
    def get_submission(self, submission_id: str) -> Submission | None:
        with self._lock:
            submission = self._state.submissions.get(submission_id)
            return replace(submission) if submission is not None else None

    @override
    def list_submissions(self, challenge_date: date) -> list[Submission]:
        with self._lock:
            found = [replace(s) for s in self._state.submissions.values() if s.challenge_date == challenge_date]
        return sorted(found, key=lambda s: (s.created_at, s.submission_id))

    @override
    def count_submissions(self, challenge_date: date, excluding_user: str | None = None) -> int:
        with self._lock:
            return sum(
                1
                for s in self._state.submissions.values()
                if s.challenge_date == challenge_date and s.user_id != excluding_user
            )

    @override
    def get_rating_records(self, submission_ids: Sequence[str], challenge_date: date) -> list[RatingRecord]:
        with self._lock:
            return [
                replace(self._state.ratings[(submission_id, challenge_date)])
                for submission_id in submission_ids
                if (submission_id, challenge_date) in self._state.ratings
            ]

    @override
    def list_rating_records(self, challenge_date: date) -> list[RatingRecord]:
        with self._lock:
            found = [replace(r) for (_, day), r in self._state.ratings.items() if day == challenge_date]
        return sorted(found, key=lambda r: r.submission_id)

    @override
    def list_ranked_records(self, challenge_date: date) -> list[RatingRecord]:
        with self._lock:
            found = [
                replace(r)
                for (_, day), r in self._state.ratings.items()
                if day == challenge_date and r.final_rank is not None
            ]
        return sorted(found, key=lambda r: (r.final_rank, r.submission_id))

    @override
    def adjacent_ranked_dates(self, challenge_date: date) -> tuple[date | None, date | None]:
        with self._lock:
            ranked_days = {day for (_, day), r in self._state.ratings.items() if r.final_rank is not None}
        before = [day for day in ranked_days if day < challenge_date]
        after = [day for day in ranked_days if day > challenge_date]
        return (max(before) if before else None, min(after) if after else None)

    @override
    def upsert_rating_record(self, record: RatingRecord) -> None:
        with self._lock:
            self._put(self._state.ratings, (record.submission_id, record.challenge_date), replace(record))

    @override
    def insert_comparison_if_absent(self, comparison: Comparison) -> bool:
        key = (comparison.voter_id, comparison.challenge_date, *comparison.pair_key)
        with self._lock:
            if key in self._state.comparison_keys:
                return False

            def remove() -> None:
                self._state.comparison_keys.discard(key)
                _ = self._state.comparisons.pop()

            self._log_undo(remove)
            self._state.comparison_keys.add(key)
            self._state.comparisons.append(comparison)
            return True

    @override
    def list_comparisons(self, voter_id: str, challenge_date: date) -> list[Comparison]:
        with self._lock:
            return [
                c
                for c in self._state.comparisons
                if c.voter_id == voter_id and c.challenge_date == challenge_date
            ]

    @override
    def get_voting_progress(self, user_id: str, challenge_date: date) -> VotingProgress | None:
        with self._lock:
            progress = self._state.progress.get((user_id, challenge_date))
            return replace(progress) if progress is not None else None

    @override
    def upsert_voting_progress(self, progress: VotingProgress) -> None:
        with self._lock:
            self._put(self._state.progress, (progress.user_id, progress.challenge_date), replace(progress))

    @override
    def mark_submission_included_in_ranking(self, user_id: str, challenge_date: date) -> int:
        with self._lock:
            matching = [
                s
                for s in self._state.submissions.values()
                if s.user_id == user_id and s.challenge_date == challenge_date
            ]
            for submission in matching:
                self._put(
                    self._state.submissions,
                    submission.submission_id,
                    replace(submission, included_in_ranking=True),
                )
        return len(matching)

"""
SQLite storage implementation.

Persists submissions, rating records, comparisons and voting progress in one
SQLite database file. Every transaction uses its own connection and starts
with BEGIN IMMEDIATE, so threads and processes can share the file. The unique
index on (voter, challenge-day, low id, high id) turns concurrent duplicate
votes into a detectable conflict.
"""

import json
import sqlite3
import threading
import typing
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any

from typing_extensions import override

from ..exceptions import StoreError, ValidationError
from ..interfaces import Store
from ..logging_config import get_logger
from ..models import Comparison, RatingRecord, Submission, VotingProgress, pair_key

# Module-level logger
logger = get_logger("sqlite_storage")

SCHEMA = """
CREATE TABLE IF NOT EXISTS submissions (
    submission_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    challenge_date TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    created_at REAL NOT NULL,
    included_in_ranking INTEGER NOT NULL DEFAULT 0,
    UNIQUE (user_id, challenge_date)
);
CREATE INDEX IF NOT EXISTS idx_submissions_date ON submissions (challenge_date);

CREATE TABLE IF NOT EXISTS rating_records (
    submission_id TEXT NOT NULL,
    challenge_date TEXT NOT NULL,
    rating INTEGER NOT NULL,
    vote_count INTEGER NOT NULL DEFAULT 0,
    final_rank INTEGER,
    PRIMARY KEY (submission_id, challenge_date)
);
CREATE INDEX IF NOT EXISTS idx_rating_records_ranked ON rating_records (challenge_date, final_rank);

CREATE TABLE IF NOT EXISTS comparisons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    voter_id TEXT NOT NULL,
    challenge_date TEXT NOT NULL,
    submission_a_id TEXT NOT NULL,
    submission_b_id TEXT NOT NULL,
    pair_low TEXT NOT NULL,
    pair_high TEXT NOT NULL,
    winner_id TEXT,
    created_at REAL NOT NULL,
    UNIQUE (voter_id, challenge_date, pair_low, pair_high)
);

CREATE TABLE IF NOT EXISTS voting_progress (
    user_id TEXT NOT NULL,
    challenge_date TEXT NOT NULL,
    vote_count INTEGER NOT NULL DEFAULT 0,
    entered_ranking INTEGER NOT NULL DEFAULT 0,
    required_votes INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, challenge_date)
);
"""


class SQLiteStore(Store):
    """
    SQLite-based store implementation.

    Operations called outside transaction() run in their own short transaction.
    """

    db_path: Path
    timeout: float

    def __init__(self, db_path: Path, timeout: float = 30.0):
        """
        Initialize SQLite storage.

        Args:
            db_path: Path to the database file (created if missing)
            timeout: Seconds to wait for a competing writer before failing
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._local = threading.local()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()

        logger.info(f"SQLite storage initialized: {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @override
    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        try:
            conn = self._connect()
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"Could not open transaction on {self.db_path}: {e}") from e

        self._local.conn = conn
        try:
            yield
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise StoreError(f"SQLite failure: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Connection]:
        with self.transaction():
            yield typing.cast(sqlite3.Connection, self._local.conn)

    @staticmethod
    def _to_submission(row: sqlite3.Row) -> Submission:
        return Submission(
            submission_id=row["submission_id"],
            user_id=row["user_id"],
            challenge_date=date.fromisoformat(row["challenge_date"]),
            payload=typing.cast(dict[str, Any], json.loads(row["payload"])),
            created_at=float(row["created_at"]),
            included_in_ranking=bool(row["included_in_ranking"]),
        )

    @staticmethod
    def _to_rating_record(row: sqlite3.Row) -> RatingRecord:
        return RatingRecord(
            submission_id=row["submission_id"],
            challenge_date=date.fromisoformat(row["challenge_date"]),
            rating=int(row["rating"]),
            vote_count=int(row["vote_count"]),
            final_rank=row["final_rank"],
        )

    @override
    def add_submission(self, submission: Submission) -> None:
        logger.debug(f"Adding submission {submission.submission_id} for {submission.user_id}")
        with self._cursor() as conn:
            try:
                conn.execute(
                    "INSERT INTO submissions (submission_id, user_id, challenge_date, payload, created_at, included_in_ranking) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        submission.submission_id,
                        submission.user_id,
                        submission.challenge_date.isoformat(),
                        json.dumps(submission.payload, ensure_ascii=False),
                        submission.created_at,
                        int(submission.included_in_ranking),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ValidationError(
                    f"Submission {submission.submission_id} conflicts with an existing one "
                    f"(user {submission.user_id}, {submission.challenge_date.isoformat()}): {e}"
                ) from e

    @override
    def get_submission(self, submission_id: str) -> Submission | None:
        with self._cursor() as conn:
            row = conn.execute(
                "SELECT * FROM submissions WHERE submission_id = ?", (submission_id,)
            ).fetchone()
        return self._to_submission(row) if row is not None else None

    @override
    def list_submissions(self, challenge_date: date) -> list[Submission]:
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM submissions WHERE challenge_date = ? ORDER BY created_at, submission_id",
                (challenge_date.isoformat(),),
            ).fetchall()
        return [self._to_submission(row) for row in rows]

    @override
    def count_submissions(self, challenge_date: date, excluding_user: str | None = None) -> int:
        with self._cursor() as conn:
            if excluding_user is None:
                row = conn.execute(
                    "SELECT COUNT(*) FROM submissions WHERE challenge_date = ?",
                    (challenge_date.isoformat(),),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM submissions WHERE challenge_date = ? AND user_id != ?",
                    (challenge_date.isoformat(), excluding_user),
                ).fetchone()
        return int(row[0])

    @override
    def get_rating_records(self, submission_ids: Sequence[str], challenge_date: date) -> list[RatingRecord]:
        if not submission_ids:
            return []
        placeholders = ", ".join("?" for _ in submission_ids)
        with self._cursor() as conn:
            rows = conn.execute(
                f"SELECT * FROM rating_records WHERE challenge_date = ? AND submission_id IN ({placeholders})",
                (challenge_date.isoformat(), *submission_ids),
            ).fetchall()
        return [self._to_rating_record(row) for row in rows]

    @override
    def list_rating_records(self, challenge_date: date) -> list[RatingRecord]:
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM rating_records WHERE challenge_date = ? ORDER BY submission_id",
                (challenge_date.isoformat(),),
            ).fetchall()
        return [self._to_rating_record(row) for row in rows]

    @override
    def list_ranked_records(self, challenge_date: date) -> list[RatingRecord]:
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM rating_records WHERE challenge_date = ? AND final_rank IS NOT NULL "
                "ORDER BY final_rank, submission_id",
                (challenge_date.isoformat(),),
            ).fetchall()
        return [self._to_rating_record(row) for row in rows]

    @override
    def adjacent_ranked_dates(self, challenge_date: date) -> tuple[date | None, date | None]:
        day = challenge_date.isoformat()
        with self._cursor() as conn:
            before = conn.execute(
                "SELECT MAX(challenge_date) FROM rating_records WHERE challenge_date < ? AND final_rank IS NOT NULL",
                (day,),
            ).fetchone()[0]
            after = conn.execute(
                "SELECT MIN(challenge_date) FROM rating_records WHERE challenge_date > ? AND final_rank IS NOT NULL",
                (day,),
            ).fetchone()[0]
        return (
            date.fromisoformat(before) if before is not None else None,
            date.fromisoformat(after) if after is not None else None,
        )

    @override
    def upsert_rating_record(self, record: RatingRecord) -> None:
        with self._cursor() as conn:
            conn.execute(
                "INSERT INTO rating_records (submission_id, challenge_date, rating, vote_count, final_rank) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT (submission_id, challenge_date) DO UPDATE SET "
                "rating = excluded.rating, vote_count = excluded.vote_count, final_rank = excluded.final_rank",
                (
                    record.submission_id,
                    record.challenge_date.isoformat(),
                    record.rating,
                    record.vote_count,
                    record.final_rank,
                ),
            )

    @override
    def insert_comparison_if_absent(self, comparison: Comparison) -> bool:
        low, high = comparison.pair_key
        with self._cursor() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO comparisons "
                "(voter_id, challenge_date, submission_a_id, submission_b_id, pair_low, pair_high, winner_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    comparison.voter_id,
                    comparison.challenge_date.isoformat(),
                    comparison.submission_a_id,
                    comparison.submission_b_id,
                    low,
                    high,
                    comparison.winner_id,
                    comparison.created_at,
                ),
            )
            inserted = cursor.rowcount == 1
        if not inserted:
            logger.debug(f"Comparison already recorded for {comparison.voter_id}: {pair_key(low, high)}")
        return inserted

    @override
    def list_comparisons(self, voter_id: str, challenge_date: date) -> list[Comparison]:
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM comparisons WHERE voter_id = ? AND challenge_date = ? ORDER BY id",
                (voter_id, challenge_date.isoformat()),
            ).fetchall()
        return [
            Comparison(
                voter_id=row["voter_id"],
                challenge_date=date.fromisoformat(row["challenge_date"]),
                submission_a_id=row["submission_a_id"],
                submission_b_id=row["submission_b_id"],
                winner_id=row["winner_id"],
                created_at=float(row["created_at"]),
            )
            for row in rows
        ]

    @override
    def get_voting_progress(self, user_id: str, challenge_date: date) -> VotingProgress | None:
        with self._cursor() as conn:
            row = conn.execute(
                "SELECT * FROM voting_progress WHERE user_id = ? AND challenge_date = ?",
                (user_id, challenge_date.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return VotingProgress(
            user_id=row["user_id"],
            challenge_date=date.fromisoformat(row["challenge_date"]),
            vote_count=int(row["vote_count"]),
            entered_ranking=bool(row["entered_ranking"]),
            required_votes=int(row["required_votes"]),
        )

    @override
    def upsert_voting_progress(self, progress: VotingProgress) -> None:
        with self._cursor() as conn:
            conn.execute(
                "INSERT INTO voting_progress (user_id, challenge_date, vote_count, entered_ranking, required_votes) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT (user_id, challenge_date) DO UPDATE SET "
                "vote_count = excluded.vote_count, entered_ranking = excluded.entered_ranking, "
                "required_votes = excluded.required_votes",
                (
                    progress.user_id,
                    progress.challenge_date.isoformat(),
                    progress.vote_count,
                    int(progress.entered_ranking),
                    progress.required_votes,
                ),
            )

    @override
    def mark_submission_included_in_ranking(self, user_id: str, challenge_date: date) -> int:
        with self._cursor() as conn:
            cursor = conn.execute(
                "UPDATE submissions SET included_in_ranking = 1 WHERE user_id = ? AND challenge_date = ?",
                (user_id, challenge_date.isoformat()),
            )
            return cursor.rowcount

"""
Multi-day simulation of the daily challenge.

Every simulated user submits each day, votes on the previous day's
submissions until entering the ranking (or opts in when there is nothing to
vote on), and the previous day is resolved once its voting is over.
"""

import json
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path

import numpy as np
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .engine import RankingEngine, voting_challenge_date
from .exceptions import ConfigurationError, DuplicatePairError, NoMorePairs, ValidationError
from .interfaces import GroundTruthEntry
from .logging_config import get_logger
from .models import RankedEntry
from .voters.sim_voter import SimulatedVoter

logger = get_logger("simulation")


def load_ground_truth(path: Path) -> list[GroundTruthEntry]:
    """Load and validate a JSON list of {user_id, quality, skip_rate?} entries."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = TypeAdapter(list[GroundTruthEntry]).validate_python(raw)
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise ValidationError(f"Invalid ground truth file {path}: {e}") from e

    if not entries:
        raise ValidationError(f"Ground truth file {path} has no entries")
    user_ids = [entry["user_id"] for entry in entries]
    if len(set(user_ids)) != len(user_ids):
        raise ValidationError(f"Ground truth file {path} repeats user ids")
    return entries


def rank_correlation(entries: list[RankedEntry], quality: dict[str, float]) -> float | None:
    """
    Spearman correlation between resolved ranks and latent quality.

    Returns None when fewer than two entries are ranked or either side is constant.
    """
    if len(entries) < 2:
        return None
    ranks = np.array([entry.rank for entry in entries], dtype=float)
    scores = np.array([quality.get(entry.user_id, 0.0) for entry in entries], dtype=float)
    # Higher quality should mean a lower (better) rank number
    score_ranks = (-scores).argsort().argsort().astype(float)
    if np.std(ranks) == 0 or np.std(score_ranks) == 0:
        return None
    return float(np.corrcoef(ranks, score_ranks)[0, 1])


@dataclass
class SimulationConfig:
    """Configuration for a simulation run."""

    days: int = 3
    start_date: date = field(default_factory=lambda: date(2024, 1, 1))
    noise: float = 0.1
    seed: int | None = None

    def __post_init__(self):
        if self.days < 1:
            raise ConfigurationError(f"days must be at least 1, got {self.days}")
        if self.noise < 0:
            raise ConfigurationError(f"noise cannot be negative, got {self.noise}")


@dataclass
class DayReport:
    """Resolved outcome of one challenge-day."""

    challenge_date: date
    entries: list[RankedEntry]
    correlation: float | None
    votes_cast: int = 0
    skips: int = 0
    enrolled: int = 0


class Simulation:
    """Drives a RankingEngine with simulated users over consecutive days."""

    def __init__(self, engine: RankingEngine, ground_truth: list[GroundTruthEntry], config: SimulationConfig):
        self.engine = engine
        self.config = config
        self.quality = {entry["user_id"]: entry["quality"] for entry in ground_truth}
        self.voters = {
            entry["user_id"]: SimulatedVoter(
                self.quality,
                noise=config.noise,
                skip_rate=entry.get("skip_rate", 0.0),
                seed=None if config.seed is None else config.seed + i,
            )
            for i, entry in enumerate(ground_truth)
        }
        self.current_day = config.start_date
        engine.set_clock(self.today)
        # Pending counters for the day being voted on
        self._votes = 0
        self._skips = 0
        self._enrolled = 0

    def today(self) -> date:
        """Clock handed to the engine."""
        return self.current_day

    def _vote_until_entered(self, user_id: str, challenge_date: date) -> None:
        session = self.engine.start_voting(user_id, challenge_date)
        if session.needs_opt_in:
            _ = self.engine.enroll_without_voting(user_id, challenge_date)
            self._enrolled += 1
            return

        voter = self.voters[user_id]
        entered = session.entered_ranking
        while not entered:
            try:
                pair = self.engine.next_pair(user_id, challenge_date)
            except NoMorePairs:
                logger.info(f"{user_id} ran out of pairs before entering the ranking")
                return

            winner_id = voter.choose(pair)
            try:
                result = self.engine.cast_vote(
                    user_id,
                    challenge_date,
                    pair.submission_a.submission_id,
                    pair.submission_b.submission_id,
                    winner_id,
                )
            except DuplicatePairError:
                logger.warning(f"Duplicate pair offered to {user_id}: {pair.key}")
                continue

            if winner_id is None:
                self._skips += 1
            else:
                self._votes += 1
            entered = result.entered_ranking

    def run_day(self) -> DayReport | None:
        """
        Simulate the current day and advance the clock.

        Returns:
            Report for the previous day, resolved after today's voting, or None on the first day
        """
        today = self.current_day
        yesterday = voting_challenge_date(today)
        logger.info(f"Simulating {today.isoformat()}")

        self._votes = self._skips = self._enrolled = 0
        for user_id in self.voters:
            _ = self.engine.submit(user_id, today, payload={"simulated": True})
            self._vote_until_entered(user_id, yesterday)

        report = None
        if self.engine.store.count_submissions(yesterday) > 0:
            entries = self.engine.resolve_final_ranks(yesterday)
            report = DayReport(
                challenge_date=yesterday,
                entries=entries,
                correlation=rank_correlation(entries, self.quality),
                votes_cast=self._votes,
                skips=self._skips,
                enrolled=self._enrolled,
            )

        self.current_day = today + timedelta(days=1)
        return report

    def run(self) -> list[DayReport]:
        """
        Run the configured number of days.

        One extra voting round follows the last submission day so every
        simulated day gets resolved.
        """
        reports: list[DayReport] = []
        for _ in range(self.config.days):
            report = self.run_day()
            if report is not None:
                reports.append(report)

        # Final round: vote on the last day without new submissions
        today = self.current_day
        yesterday = voting_challenge_date(today)
        self._votes = self._skips = self._enrolled = 0
        for user_id in self.voters:
            self._vote_until_entered(user_id, yesterday)
        entries = self.engine.resolve_final_ranks(yesterday)
        reports.append(
            DayReport(
                challenge_date=yesterday,
                entries=entries,
                correlation=rank_correlation(entries, self.quality),
                votes_cast=self._votes,
                skips=self._skips,
                enrolled=self._enrolled,
            )
        )

        for report in reports:
            logger.info(
                f"{report.challenge_date.isoformat()}: {len(report.entries)} ranked, "
                f"{report.votes_cast} votes, {report.skips} skips, correlation={report.correlation}"
            )
        return reports

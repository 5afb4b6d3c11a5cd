"""
Exception classes for the challenge ranking engine.

Centralized location for all custom exceptions to avoid circular imports.
"""

from collections.abc import Sequence
from datetime import date


class RankingError(Exception):
    """Base exception for all ranking-engine errors."""
    pass


class DuplicatePairError(RankingError):
    """Voter already recorded an outcome for this exact pair."""

    def __init__(self, voter_id: str, challenge_date: date, pair: tuple[str, str]):
        self.voter_id = voter_id
        self.challenge_date = challenge_date
        self.pair = pair
        super().__init__(
            f"Voter {voter_id} already voted on pair {pair[0]}/{pair[1]} for {challenge_date.isoformat()}"
        )


class SelfPairingError(RankingError):
    """A pair contains the voter's own submission (invariant violation)."""
    pass


class InsufficientSubmissions(RankingError):
    """Fewer than 2 eligible submissions; only opt-in enrollment is possible."""
    pass


class NoMorePairs(RankingError):
    """Voter has seen every eligible pair for the challenge-day."""
    pass


class ValidationError(Exception):
    """Base exception for validation-related errors."""
    pass


class ConfigurationError(Exception):
    """Base exception for configuration-related errors."""
    pass


class StoreError(RankingError):
    """Persistent store failure, carrying the challenge-day and submissions involved."""

    def __init__(
        self,
        message: str,
        *,
        challenge_date: date | None = None,
        submission_ids: Sequence[str] = (),
    ):
        self.challenge_date = challenge_date
        self.submission_ids = tuple(submission_ids)
        context = []
        if challenge_date is not None:
            context.append(f"challenge_date={challenge_date.isoformat()}")
        if self.submission_ids:
            context.append(f"submissions={','.join(self.submission_ids)}")
        if context:
            message = f"{message} ({'; '.join(context)})"
        super().__init__(message)

"""
Simulated voter implementation.

Decides pairwise comparisons from latent artist quality with Gaussian noise.
"""

import random

from ..interfaces import Voter
from ..models import VotePair


class SimulatedVoter(Voter):
    """
    Simulated voter for testing and simulation runs.

    Each submission is scored as its author's ground-truth quality plus
    Gaussian noise; the higher noisy score wins.
    """

    def __init__(
        self,
        ground_truth: dict[str, float],
        noise: float = 0.1,
        skip_rate: float = 0.0,
        seed: int | None = None,
    ):
        """
        Initialize simulated voter.

        Args:
            ground_truth: Dict mapping user_id to latent quality
            noise: Standard deviation of the Gaussian noise added per score
            skip_rate: Probability of skipping a pair (0-1)
            seed: Random seed for reproducibility
        """
        self.ground_truth = ground_truth
        self.noise = max(0.0, noise)
        self.skip_rate = max(0.0, min(1.0, skip_rate))  # Clamp to [0, 1]
        self.rng = random.Random(seed)

    def _noisy_score(self, user_id: str) -> float:
        score = self.ground_truth.get(user_id, 0.0)
        if self.noise == 0:
            return score
        return score + self.rng.gauss(0, self.noise)

    def choose(self, pair: VotePair) -> str | None:
        if self.skip_rate > 0 and self.rng.random() < self.skip_rate:
            return None

        score_a = self._noisy_score(pair.submission_a.user_id)
        score_b = self._noisy_score(pair.submission_b.user_id)

        # Ties go to A
        if score_a >= score_b:
            return pair.submission_a.submission_id
        return pair.submission_b.submission_id

    def get_ground_truth(self) -> dict[str, float]:
        """Get ground truth qualities for debugging."""
        return self.ground_truth.copy()

"""FSRS (Free Spaced Repetition Scheduler) memory model.

An implementation of FSRS-4.5 with long-term scheduling only: a new card
moves straight into the review phase after its first rating, and the
smallest interval is one day.
Reference: https://github.com/open-spaced-repetition/fsrs4anki

Key concepts:
- Stability (S): Days after which recall probability drops to 90%.
- Difficulty (D): Inherent item difficulty on a 1-10 scale.
- Retrievability (R): The probability of recall at a given time since last review.
- Rating: Again < Hard < Good < Easy
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from backend.config import utcnow

# FSRS-4.5 default parameters
# w[0..3]: initial stability for ratings Again/Hard/Good/Easy
# w[4..5]: initial difficulty and its per-grade slope
# w[6..7]: difficulty update step and mean reversion weight
# w[8..10]: stability growth after a successful recall
# w[11..14]: stability after a lapse
# w[15..16]: hard penalty / easy bonus
DEFAULT_WEIGHTS = (
    0.4872,
    1.4003,
    3.7145,
    13.8206,
    5.1618,
    1.2298,
    0.8975,
    0.031,
    1.6474,
    0.1367,
    1.0461,
    2.1072,
    0.0793,
    0.3246,
    1.587,
    0.2272,
    2.8755,
)

DEFAULT_TARGET_RETENTION = 0.9
DEFAULT_MAXIMUM_INTERVAL = 36500

# Power forgetting curve: R(t, S) = (1 + FACTOR * t / S) ** DECAY
DECAY = -0.5
FACTOR = 0.9 ** (1 / DECAY) - 1

MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
MIN_STABILITY = 0.01

# (start, end, factor): fuzz grows with the interval, more slowly for long ones
FUZZ_RANGES = (
    (2.5, 7.0, 0.15),
    (7.0, 20.0, 0.1),
    (20.0, math.inf, 0.05),
)


class Rating(Enum):
    """Qualitative review outcome, ordered again < hard < good < easy."""

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @property
    def grade(self) -> int:
        return _GRADES[self]


_GRADES = {Rating.AGAIN: 1, Rating.HARD: 2, Rating.GOOD: 3, Rating.EASY: 4}


class CardPhase(Enum):
    """Lifecycle phase of a card inside the memory model."""

    NEW = "new"
    REVIEW = "review"


@dataclass
class CardState:
    """The memory model's view of a card."""

    stability: float
    difficulty: float  # 1-10
    due: datetime
    reps: int
    phase: CardPhase
    last_review: datetime | None = None


@dataclass
class ReviewResult:
    """The result of applying a review to a card."""

    new_state: CardState
    interval_days: int
    retrievability: float  # Estimated recall probability at time of review


class FSRS:
    """Free Spaced Repetition Scheduler."""

    def __init__(
        self,
        weights: tuple[float, ...] | list[float] | None = None,
        target_retention: float = DEFAULT_TARGET_RETENTION,
        maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL,
        enable_fuzz: bool = True,
        seed: int | None = None,
    ) -> None:
        """Initialize FSRS with optional custom weights and target retention.

        Args:
            weights: 17 FSRS-4.5 parameters.
            target_retention: Desired recall probability at the due date.
            maximum_interval: Upper bound for any interval, in days.
            enable_fuzz: Jitter intervals of 3+ days to spread out due dates.
            seed: Seed for the fuzz generator, for reproducible schedules.
        """
        self.w = tuple(weights or DEFAULT_WEIGHTS)
        if len(self.w) != len(DEFAULT_WEIGHTS):
            raise ValueError(f"Expected {len(DEFAULT_WEIGHTS)} weights, got {len(self.w)}")
        if not 0 < target_retention < 1:
            raise ValueError(f"target_retention must be in (0, 1), got {target_retention}")
        self.target_retention = target_retention
        self.maximum_interval = maximum_interval
        self.enable_fuzz = enable_fuzz
        self._rng = random.Random(seed)
        self._interval_modifier = (target_retention ** (1 / DECAY) - 1) / FACTOR

    def review(
        self,
        state: CardState,
        rating: Rating,
        review_time: datetime | None = None,
    ) -> ReviewResult:
        """Apply a review rating to a card.

        Intervals for all four ratings are computed together so they can be
        kept strictly ordered after fuzzing; only the requested one is used.

        Args:
            state: Current card state.
            rating: Review rating.
            review_time: When the review happened (defaults to now).

        Returns:
            ReviewResult with the new card state.
        """
        review_time = review_time or utcnow()

        if state.phase is CardPhase.NEW:
            elapsed_days = 0
            retrievability = 1.0
            candidates = {
                r: (self._initial_stability(r), self._initial_difficulty(r)) for r in Rating
            }
        else:
            last_review = state.last_review or state.due
            elapsed_days = max(0, (review_time - last_review).days)
            retrievability = self._retrievability(elapsed_days, state.stability)
            candidates = {
                r: (
                    self._next_stability(state.stability, state.difficulty, retrievability, r),
                    self._next_difficulty(state.difficulty, r),
                )
                for r in Rating
            }

        intervals = self._ordered_intervals(
            {r: stability for r, (stability, _) in candidates.items()}, elapsed_days
        )
        stability, difficulty = candidates[rating]
        interval = intervals[rating]

        new_state = CardState(
            stability=stability,
            difficulty=difficulty,
            due=review_time + timedelta(days=interval),
            reps=state.reps + 1,
            phase=CardPhase.REVIEW,
            last_review=review_time,
        )
        return ReviewResult(
            new_state=new_state,
            interval_days=interval,
            retrievability=retrievability,
        )

    def _initial_stability(self, rating: Rating) -> float:
        return max(MIN_STABILITY, self.w[rating.grade - 1])

    def _initial_difficulty(self, rating: Rating) -> float:
        """D0 = w4 - (G - 3) * w5"""
        return _clamp_difficulty(self.w[4] - (rating.grade - 3) * self.w[5])

    def _next_difficulty(self, difficulty: float, rating: Rating) -> float:
        """Step difficulty by grade, then revert toward the Good baseline.

        D' = w7 * D0(Good) + (1 - w7) * (D - w6 * (G - 3))
        """
        stepped = difficulty - self.w[6] * (rating.grade - 3)
        baseline = self.w[4]
        return _clamp_difficulty(self.w[7] * baseline + (1 - self.w[7]) * stepped)

    def _retrievability(self, elapsed_days: float, stability: float) -> float:
        """Probability of recall after elapsed_days for the given stability."""
        if stability <= 0 or elapsed_days <= 0:
            return 1.0
        return (1 + FACTOR * elapsed_days / stability) ** DECAY

    def _next_stability(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
        rating: Rating,
    ) -> float:
        if rating is Rating.AGAIN:
            return self._stability_after_fail(stability, difficulty, retrievability)
        return self._stability_after_success(stability, difficulty, retrievability, rating)

    def _stability_after_success(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
        rating: Rating,
    ) -> float:
        """S' = S * (1 + e^w8 * (11 - D) * S^-w9 * (e^(w10 * (1 - R)) - 1) * penalty * bonus)"""
        hard_penalty = self.w[15] if rating is Rating.HARD else 1.0
        easy_bonus = self.w[16] if rating is Rating.EASY else 1.0
        growth = (
            math.exp(self.w[8])
            * (11 - difficulty)
            * stability ** (-self.w[9])
            * (math.exp(self.w[10] * (1 - retrievability)) - 1)
            * hard_penalty
            * easy_bonus
        )
        return max(MIN_STABILITY, stability * (1 + growth))

    def _stability_after_fail(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
    ) -> float:
        """S' = w11 * D^-w12 * ((S + 1)^w13 - 1) * e^(w14 * (1 - R))"""
        new_s = (
            self.w[11]
            * difficulty ** (-self.w[12])
            * ((stability + 1) ** self.w[13] - 1)
            * math.exp(self.w[14] * (1 - retrievability))
        )
        # Forgetting never increases stability
        return max(MIN_STABILITY, min(new_s, stability))

    def _next_interval(self, stability: float, elapsed_days: int) -> int:
        interval = round(stability * self._interval_modifier)
        interval = min(max(1, interval), self.maximum_interval)
        return self._apply_fuzz(interval, elapsed_days)

    def _ordered_intervals(
        self, stabilities: dict[Rating, float], elapsed_days: int
    ) -> dict[Rating, int]:
        again = self._next_interval(stabilities[Rating.AGAIN], elapsed_days)
        hard = self._next_interval(stabilities[Rating.HARD], elapsed_days)
        good = self._next_interval(stabilities[Rating.GOOD], elapsed_days)
        easy = self._next_interval(stabilities[Rating.EASY], elapsed_days)

        again = min(again, hard)
        hard = max(hard, again + 1)
        good = max(good, hard + 1)
        easy = max(easy, good + 1)
        ordered = {Rating.AGAIN: again, Rating.HARD: hard, Rating.GOOD: good, Rating.EASY: easy}
        # Ordering collapses at the cap
        return {r: min(ivl, self.maximum_interval) for r, ivl in ordered.items()}

    def _fuzz_range(self, interval: int, elapsed_days: int) -> tuple[int, int]:
        delta = 1.0
        for start, end, factor in FUZZ_RANGES:
            delta += factor * max(min(interval, end) - start, 0.0)
        interval = min(interval, self.maximum_interval)
        min_ivl = max(2, round(interval - delta))
        max_ivl = min(round(interval + delta), self.maximum_interval)
        if interval > elapsed_days:
            min_ivl = max(min_ivl, elapsed_days + 1)
        return min(min_ivl, max_ivl), max_ivl

    def _apply_fuzz(self, interval: int, elapsed_days: int) -> int:
        if not self.enable_fuzz or interval < 2.5:
            return interval
        min_ivl, max_ivl = self._fuzz_range(interval, elapsed_days)
        return int(self._rng.random() * (max_ivl - min_ivl + 1) + min_ivl)


def _clamp_difficulty(difficulty: float) -> float:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, difficulty))

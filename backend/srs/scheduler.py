"""Scheduling transition for reviewed topics.

Maps a topic's persisted memory state and a qualitative rating to the next
memory state and due date. Pure apart from the fuzz generator, which is
seeded for reproducible results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from backend.config import Settings, utcnow
from backend.srs.fsrs import (
    FSRS,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    CardPhase,
    CardState,
    Rating,
)

logger = logging.getLogger(__name__)

# State of a topic that has never been reviewed
NEW_INTERVAL = 1
NEW_STABILITY = 2.5
NEW_DIFFICULTY = 5.0


@dataclass(frozen=True)
class MemoryState:
    """Scheduling state persisted alongside each topic marker."""

    next_review: datetime
    rating: Rating | None
    interval: int
    stability: float
    difficulty: float
    reps: int

    @classmethod
    def new(cls, now: datetime | None = None) -> MemoryState:
        """State of a never-reviewed topic, due immediately."""
        return cls(
            next_review=now or utcnow(),
            rating=None,
            interval=NEW_INTERVAL,
            stability=NEW_STABILITY,
            difficulty=NEW_DIFFICULTY,
            reps=0,
        )

    @property
    def is_new(self) -> bool:
        return self.reps == 0


class Scheduler:
    """Wraps the FSRS memory model for topic reviews."""

    def __init__(self, fsrs: FSRS | None = None) -> None:
        self.fsrs = fsrs or FSRS()

    @classmethod
    def from_settings(cls, config: Settings) -> Scheduler:
        return cls(
            FSRS(
                target_retention=config.target_retention,
                maximum_interval=config.maximum_interval,
                enable_fuzz=config.enable_fuzz,
                seed=config.fuzz_seed,
            )
        )

    def next(self, state: MemoryState, rating: Rating, now: datetime | None = None) -> MemoryState:
        """Compute the memory state after rating a topic at ``now``.

        Raises:
            ValueError: If ``state`` is outside the model's valid ranges.
        """
        _validate(state)
        now = now or utcnow()

        card = CardState(
            stability=state.stability,
            difficulty=state.difficulty,
            due=state.next_review,
            reps=state.reps,
            phase=CardPhase.NEW if state.reps == 0 else CardPhase.REVIEW,
            last_review=state.next_review - timedelta(days=state.interval),
        )
        result = self.fsrs.review(card, rating, review_time=now)
        interval = max(1, result.interval_days)
        next_review = (now + timedelta(days=interval)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )

        logger.debug(
            "Scheduled rating=%s reps=%d: interval %d days, S=%.2f, D=%.2f",
            rating.value,
            result.new_state.reps,
            interval,
            result.new_state.stability,
            result.new_state.difficulty,
        )
        return MemoryState(
            next_review=next_review,
            rating=rating,
            interval=interval,
            stability=result.new_state.stability,
            difficulty=result.new_state.difficulty,
            reps=result.new_state.reps,
        )


def _validate(state: MemoryState) -> None:
    if state.interval < 1:
        raise ValueError(f"interval must be >= 1, got {state.interval}")
    if state.stability <= 0:
        raise ValueError(f"stability must be > 0, got {state.stability}")
    if not MIN_DIFFICULTY <= state.difficulty <= MAX_DIFFICULTY:
        raise ValueError(f"difficulty must be in [1, 10], got {state.difficulty}")
    if state.reps < 0:
        raise ValueError(f"reps must be >= 0, got {state.reps}")

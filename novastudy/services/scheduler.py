"""
SM-2 style review scheduler.

Pure state transition for one card and one quality rating:

    new_state = apply(card.scheduling(), Quality.EASY, now)

Ratings use the four-point scale Again=0, Hard=1, Good=2, Easy=3, while the
ease-factor update keeps the five-point SM-2 form (5 - quality). Only ratings
at or above SUCCESS_THRESHOLD advance the schedule; Good is handled like a
lapse.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from novastudy.models.flashcard import Quality, SchedulingState

SUCCESS_THRESHOLD = Quality.EASY
MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5
DEFAULT_INTERVAL = 1


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds (storage resolution)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def ease_delta(quality: int) -> float:
    miss = 5 - quality
    return 0.1 - miss * (0.08 + miss * 0.02)


def apply(state: SchedulingState, quality: Quality | int, now: datetime) -> SchedulingState:
    """Compute the next scheduling state. Never raises for quality in 0..3."""
    prior_reps = state.repetitions if state.repetitions is not None else 0
    prior_interval = state.interval if state.interval is not None else DEFAULT_INTERVAL
    prior_ease = state.ease_factor if state.ease_factor is not None else DEFAULT_EASE_FACTOR

    repetitions = prior_reps + 1
    ease_factor = prior_ease

    if quality >= SUCCESS_THRESHOLD:
        if prior_reps == 0:
            interval = 1
        elif prior_reps == 1:
            interval = 6
        else:
            interval = round_half_up(prior_interval * prior_ease)
        ease_factor = max(MIN_EASE_FACTOR, prior_ease + ease_delta(int(quality)))
    else:
        repetitions = 0
        interval = 1

    return SchedulingState(
        interval=interval,
        ease_factor=ease_factor,
        repetitions=repetitions,
        due_date=now + timedelta(days=interval),
        last_reviewed_at=now,
    )

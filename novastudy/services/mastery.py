from __future__ import annotations

from collections.abc import Iterable

from novastudy.models.flashcard import Flashcard, MasterySummary, SchedulingState
from novastudy.services.scheduler import round_half_up

MASTERED_INTERVAL_DAYS = 21
MASTERED_MIN_REPETITIONS = 3
MASTERED_MIN_INTERVAL_DAYS = 7


def is_mastered(card: Flashcard | SchedulingState) -> bool:
    """A card is mastered at a 21+ day interval, or 3+ repetitions with a 7+ day interval."""
    interval = card.interval
    if interval is None:
        return False
    if interval >= MASTERED_INTERVAL_DAYS:
        return True
    repetitions = card.repetitions or 0
    return repetitions >= MASTERED_MIN_REPETITIONS and interval >= MASTERED_MIN_INTERVAL_DAYS


def aggregate_mastery(cards: Iterable[Flashcard | SchedulingState]) -> MasterySummary:
    total = 0
    mastered = 0
    for card in cards:
        total += 1
        if is_mastered(card):
            mastered += 1
    percentage = round_half_up(100 * mastered / total) if total else 0
    return MasterySummary(
        mastered_count=mastered, total_cards=total, mastery_percentage=percentage
    )

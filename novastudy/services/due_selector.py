"""
Due-card selection.

A card is due when it has never been reviewed (due_date is None) or its
due_date is at or before `now`. Ordering: never-reviewed cards first, treated
as most overdue, then due_date ascending; ties by created_at, then id. The
multi-set variant merges all sets into one ordering and tags each card with
the title of its set. Sets the user does not own are filtered out silently.
"""
from __future__ import annotations

from datetime import datetime

import aiosqlite

from novastudy.db.sqlite import get_due_flashcards
from novastudy.errors import InvalidInputError
from novastudy.models.flashcard import DueCard, Flashcard


def _normalize_set_ids(set_ids: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for set_id in set_ids or []:
        if set_id:
            seen.setdefault(set_id, None)
    if not seen:
        raise InvalidInputError("At least one set id is required to select due cards")
    return list(seen)


async def select_due(
    db: aiosqlite.Connection,
    set_id: str,
    user_id: str,
    now: datetime,
) -> list[Flashcard]:
    if not set_id:
        raise InvalidInputError("Set id is required to select due cards")
    cards = await get_due_flashcards(db, [set_id], user_id, now)
    return [Flashcard(**c.model_dump(exclude={"set_title"})) for c in cards]


async def select_due_across_sets(
    db: aiosqlite.Connection,
    set_ids: list[str],
    user_id: str,
    now: datetime,
) -> list[DueCard]:
    """Due cards across several sets in one query, each carrying set_id and set_title."""
    return await get_due_flashcards(db, _normalize_set_ids(set_ids), user_id, now)


def set_titles_of(cards: list[DueCard]) -> dict[str, str]:
    titles: dict[str, str] = {}
    for card in cards:
        titles.setdefault(card.set_id, card.set_title)
    return titles

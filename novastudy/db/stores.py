"""
Card Store and Session Store contracts used by the study session orchestrator,
with their SQLite implementations.

Store writes raise PersistenceError on driver failure; ownership and existence
are reported through WriteStatus / None rather than exceptions.
"""
from __future__ import annotations

import logging
from typing import Protocol

import aiosqlite

from novastudy.db import sqlite
from novastudy.errors import PersistenceError
from novastudy.models.flashcard import Flashcard, SchedulingState, WriteStatus
from novastudy.models.session import SessionSummary

logger = logging.getLogger(__name__)


class CardStore(Protocol):
    async def load_scheduling(self, card_id: str, user_id: str) -> SchedulingState | None: ...

    async def write_scheduling(
        self, card_id: str, user_id: str, state: SchedulingState
    ) -> WriteStatus: ...

    async def card_exists(self, card_id: str) -> bool: ...

    async def list_cards_for_sets(self, set_ids: list[str], user_id: str) -> list[Flashcard]: ...


class SessionStore(Protocol):
    async def save_summary(self, summary: SessionSummary) -> None: ...


class SqliteCardStore:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def load_scheduling(self, card_id: str, user_id: str) -> SchedulingState | None:
        try:
            return await sqlite.get_scheduling(self.db, card_id, user_id)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not load card {card_id}: {e}") from e

    async def write_scheduling(
        self, card_id: str, user_id: str, state: SchedulingState
    ) -> WriteStatus:
        try:
            return await sqlite.update_flashcard_scheduling(self.db, card_id, user_id, state)
        except aiosqlite.Error as e:
            logger.warning("Scheduling write failed for card %s: %s", card_id, e)
            raise PersistenceError(f"Could not save review for card {card_id}: {e}") from e

    async def card_exists(self, card_id: str) -> bool:
        try:
            return await sqlite.flashcard_exists(self.db, card_id)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not load card {card_id}: {e}") from e

    async def list_cards_for_sets(self, set_ids: list[str], user_id: str) -> list[Flashcard]:
        try:
            return await sqlite.list_flashcards_for_sets(self.db, set_ids, user_id)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not load cards: {e}") from e


class SqliteSessionStore:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def save_summary(self, summary: SessionSummary) -> None:
        try:
            await sqlite.insert_study_session(self.db, summary)
        except aiosqlite.Error as e:
            logger.warning("Session summary write failed for %s: %s", summary.id, e)
            raise PersistenceError(f"Could not save study session: {e}") from e

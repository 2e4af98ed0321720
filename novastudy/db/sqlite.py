import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from novastudy.config import settings
from novastudy.models.flashcard import (
    DueCard,
    Flashcard,
    FlashcardCreate,
    FlashcardSet,
    FlashcardSetCreate,
    FlashcardUpdate,
    SchedulingState,
    WriteStatus,
)
from novastudy.models.session import (
    PerformanceSnapshot,
    Profile,
    SessionSummary,
    StudySessionSnapshot,
)

_db_path: Path | None = None

TS_FORMAT = "%Y-%m-%d %H:%M:%S"

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS flashcard_sets (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    title       TEXT NOT NULL,
    description TEXT,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_sets_user ON flashcard_sets(user_id);

CREATE TABLE IF NOT EXISTS flashcards (
    id               TEXT PRIMARY KEY,
    set_id           TEXT NOT NULL REFERENCES flashcard_sets(id) ON DELETE CASCADE,
    user_id          TEXT NOT NULL,
    question         TEXT NOT NULL,
    answer           TEXT NOT NULL,
    due_date         TEXT,
    interval         INTEGER,
    ease_factor      REAL,
    repetitions      INTEGER,
    last_reviewed_at TEXT,
    created_at       TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at       TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_flashcards_set ON flashcards(set_id, user_id);
CREATE INDEX IF NOT EXISTS idx_flashcards_due ON flashcards(due_date);

CREATE TABLE IF NOT EXISTS study_sessions (
    id                     TEXT PRIMARY KEY,
    user_id                TEXT NOT NULL,
    set_id                 TEXT REFERENCES flashcard_sets(id) ON DELETE SET NULL,
    cards_reviewed         INTEGER NOT NULL,
    performance_snapshot   TEXT NOT NULL,
    mastery_at_session_end INTEGER,
    session_completed_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_study_sessions_user ON study_sessions(user_id, set_id);

CREATE TABLE IF NOT EXISTS active_sessions (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    snapshot      TEXT NOT NULL,
    version       INTEGER NOT NULL DEFAULT 1,
    claimed_until TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS profiles (
    user_id     TEXT PRIMARY KEY,
    grade_level TEXT,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
INSERT OR IGNORE INTO schema_version(version) VALUES (1);
"""


async def init_sqlite(data_dir: Path) -> None:
    global _db_path
    _db_path = data_dir / settings.sqlite_filename
    async with aiosqlite.connect(_db_path) as db:
        await db.executescript(SCHEMA_SQL)
        await db.commit()


async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    assert _db_path is not None, "SQLite not initialized"
    async with aiosqlite.connect(_db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
        yield db


def to_db_ts(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TS_FORMAT)


def from_db_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, TS_FORMAT).replace(tzinfo=timezone.utc)


def _now() -> str:
    return datetime.now(timezone.utc).strftime(TS_FORMAT)


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


# --- Flashcard sets ---


def _row_to_set(row: aiosqlite.Row) -> FlashcardSet:
    d = dict(row)
    d["created_at"] = from_db_ts(d["created_at"])
    d["updated_at"] = from_db_ts(d["updated_at"])
    return FlashcardSet(**d)


async def create_set(
    db: aiosqlite.Connection, user_id: str, body: FlashcardSetCreate
) -> FlashcardSet:
    set_id = str(uuid.uuid4())
    now = _now()
    await db.execute(
        """INSERT INTO flashcard_sets (id, user_id, title, description, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (set_id, user_id, body.title.strip(), body.description, now, now),
    )
    await db.commit()
    return await get_set(db, set_id, user_id)  # type: ignore[return-value]


async def get_set(
    db: aiosqlite.Connection, set_id: str, user_id: str
) -> FlashcardSet | None:
    cursor = await db.execute(
        "SELECT * FROM flashcard_sets WHERE id = ? AND user_id = ?", (set_id, user_id)
    )
    row = await cursor.fetchone()
    return _row_to_set(row) if row else None


async def set_exists(db: aiosqlite.Connection, set_id: str) -> bool:
    cursor = await db.execute("SELECT 1 FROM flashcard_sets WHERE id = ?", (set_id,))
    return (await cursor.fetchone()) is not None


async def list_sets(
    db: aiosqlite.Connection, user_id: str
) -> list[FlashcardSet]:
    cursor = await db.execute(
        "SELECT * FROM flashcard_sets WHERE user_id = ? ORDER BY created_at DESC, id ASC",
        (user_id,),
    )
    rows = await cursor.fetchall()
    return [_row_to_set(r) for r in rows]


async def get_set_titles(
    db: aiosqlite.Connection, set_ids: list[str], user_id: str
) -> dict[str, str]:
    if not set_ids:
        return {}
    cursor = await db.execute(
        f"SELECT id, title FROM flashcard_sets WHERE id IN ({_placeholders(set_ids)}) AND user_id = ?",  # noqa: S608
        [*set_ids, user_id],
    )
    rows = await cursor.fetchall()
    return {row[0]: row[1] for row in rows}


async def delete_set(db: aiosqlite.Connection, set_id: str, user_id: str) -> bool:
    cursor = await db.execute(
        "DELETE FROM flashcard_sets WHERE id = ? AND user_id = ?", (set_id, user_id)
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


# --- Flashcards ---


def _row_to_flashcard(row: aiosqlite.Row) -> Flashcard:
    d = dict(row)
    for key in ("due_date", "last_reviewed_at", "created_at", "updated_at"):
        d[key] = from_db_ts(d[key])
    if "set_title" in d:
        return DueCard(**d)
    return Flashcard(**d)


async def create_flashcard(
    db: aiosqlite.Connection, set_id: str, user_id: str, body: FlashcardCreate
) -> Flashcard:
    """Insert a new card with null scheduling state (always due)."""
    card_id = str(uuid.uuid4())
    now = _now()
    await db.execute(
        """INSERT INTO flashcards
           (id, set_id, user_id, question, answer, due_date, interval,
            ease_factor, repetitions, last_reviewed_at, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, NULL, NULL, NULL, NULL, NULL, ?, ?)""",
        (card_id, set_id, user_id, body.question.strip(), body.answer.strip(), now, now),
    )
    await db.commit()
    return await get_flashcard(db, card_id, user_id)  # type: ignore[return-value]


async def get_flashcard(
    db: aiosqlite.Connection, card_id: str, user_id: str
) -> Flashcard | None:
    cursor = await db.execute(
        "SELECT * FROM flashcards WHERE id = ? AND user_id = ?", (card_id, user_id)
    )
    row = await cursor.fetchone()
    return _row_to_flashcard(row) if row else None


async def flashcard_exists(db: aiosqlite.Connection, card_id: str) -> bool:
    cursor = await db.execute("SELECT 1 FROM flashcards WHERE id = ?", (card_id,))
    return (await cursor.fetchone()) is not None


async def list_flashcards_for_sets(
    db: aiosqlite.Connection, set_ids: list[str], user_id: str
) -> list[Flashcard]:
    if not set_ids:
        return []
    cursor = await db.execute(
        f"""SELECT * FROM flashcards
            WHERE set_id IN ({_placeholders(set_ids)}) AND user_id = ?
            ORDER BY created_at ASC, id ASC""",  # noqa: S608
        [*set_ids, user_id],
    )
    rows = await cursor.fetchall()
    return [_row_to_flashcard(r) for r in rows]


async def update_flashcard_content(
    db: aiosqlite.Connection,
    card_id: str,
    user_id: str,
    update: FlashcardUpdate,
) -> Flashcard | None:
    card = await get_flashcard(db, card_id, user_id)
    if not card:
        return None
    new_q = update.question.strip() if update.question is not None else card.question
    new_a = update.answer.strip() if update.answer is not None else card.answer
    await db.execute(
        "UPDATE flashcards SET question = ?, answer = ?, updated_at = ? WHERE id = ? AND user_id = ?",
        (new_q, new_a, _now(), card_id, user_id),
    )
    await db.commit()
    return await get_flashcard(db, card_id, user_id)


async def delete_flashcard(db: aiosqlite.Connection, card_id: str, user_id: str) -> bool:
    cursor = await db.execute(
        "DELETE FROM flashcards WHERE id = ? AND user_id = ?", (card_id, user_id)
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


# --- Scheduling ---


async def get_scheduling(
    db: aiosqlite.Connection, card_id: str, user_id: str
) -> SchedulingState | None:
    cursor = await db.execute(
        """SELECT interval, ease_factor, repetitions, due_date, last_reviewed_at
           FROM flashcards WHERE id = ? AND user_id = ?""",
        (card_id, user_id),
    )
    row = await cursor.fetchone()
    if row is None:
        return None
    return SchedulingState(
        interval=row["interval"],
        ease_factor=row["ease_factor"],
        repetitions=row["repetitions"],
        due_date=from_db_ts(row["due_date"]),
        last_reviewed_at=from_db_ts(row["last_reviewed_at"]),
    )


async def update_flashcard_scheduling(
    db: aiosqlite.Connection,
    card_id: str,
    user_id: str,
    state: SchedulingState,
) -> WriteStatus:
    """Write the scheduling fields. Last write wins; there is no version check."""
    cursor = await db.execute(
        """UPDATE flashcards
           SET due_date = ?, interval = ?, ease_factor = ?, repetitions = ?,
               last_reviewed_at = ?, updated_at = ?
           WHERE id = ? AND user_id = ?""",
        (
            to_db_ts(state.due_date) if state.due_date else None,
            state.interval,
            state.ease_factor,
            state.repetitions,
            to_db_ts(state.last_reviewed_at) if state.last_reviewed_at else None,
            _now(),
            card_id,
            user_id,
        ),
    )
    await db.commit()
    if (cursor.rowcount or 0) > 0:
        return WriteStatus.SUCCESS
    if await flashcard_exists(db, card_id):
        return WriteStatus.FORBIDDEN
    return WriteStatus.NOT_FOUND


async def get_due_flashcards(
    db: aiosqlite.Connection,
    set_ids: list[str],
    user_id: str,
    now: datetime,
) -> list[DueCard]:
    """Cards due at `now` (due_date <= now or never reviewed) in the given sets.

    Never-reviewed cards sort first, then due_date ascending. Sets the user does
    not own contribute no rows.
    """
    cursor = await db.execute(
        f"""SELECT f.*, s.title AS set_title
            FROM flashcards f
            JOIN flashcard_sets s ON s.id = f.set_id
            WHERE f.set_id IN ({_placeholders(set_ids)})
              AND f.user_id = ? AND s.user_id = ?
              AND (f.due_date IS NULL OR f.due_date <= ?)
            ORDER BY f.due_date IS NOT NULL, f.due_date ASC, f.created_at ASC, f.id ASC""",  # noqa: S608
        [*set_ids, user_id, user_id, to_db_ts(now)],
    )
    rows = await cursor.fetchall()
    return [_row_to_flashcard(r) for r in rows]  # type: ignore[misc]


# --- Session summaries ---


def _row_to_summary(row: aiosqlite.Row) -> SessionSummary:
    return SessionSummary(
        id=row["id"],
        user_id=row["user_id"],
        set_id=row["set_id"],
        cards_reviewed=row["cards_reviewed"],
        performance_snapshot=PerformanceSnapshot(**json.loads(row["performance_snapshot"])),
        mastery_at_session_end=row["mastery_at_session_end"],
        completed_at=from_db_ts(row["session_completed_at"]),
    )


async def insert_study_session(db: aiosqlite.Connection, summary: SessionSummary) -> None:
    await db.execute(
        """INSERT INTO study_sessions
           (id, user_id, set_id, cards_reviewed, performance_snapshot,
            mastery_at_session_end, session_completed_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            summary.id,
            summary.user_id,
            summary.set_id,
            summary.cards_reviewed,
            summary.performance_snapshot.model_dump_json(),
            summary.mastery_at_session_end,
            to_db_ts(summary.completed_at),
        ),
    )
    await db.commit()


async def list_study_sessions(
    db: aiosqlite.Connection,
    user_id: str,
    set_id: str | None = None,
    limit: int = 15,
) -> list[SessionSummary]:
    """Most recent `limit` summaries, returned oldest first."""
    if set_id:
        cursor = await db.execute(
            """SELECT * FROM study_sessions WHERE user_id = ? AND set_id = ?
               ORDER BY session_completed_at DESC, id DESC LIMIT ?""",
            (user_id, set_id, limit),
        )
    else:
        cursor = await db.execute(
            """SELECT * FROM study_sessions WHERE user_id = ?
               ORDER BY session_completed_at DESC, id DESC LIMIT ?""",
            (user_id, limit),
        )
    rows = await cursor.fetchall()
    return [_row_to_summary(r) for r in reversed(rows)]


# --- Active session snapshots ---
#
# A row carries a version that every successful save bumps. A request that
# mutates a session first claims the row for `lease_seconds`; a second
# request arriving meanwhile fails its claim instead of working on the same
# snapshot. The claim lapses on save, on release, or when the lease runs out.


async def save_active_session(
    db: aiosqlite.Connection, snapshot: StudySessionSnapshot
) -> bool:
    """Insert a new snapshot (version 0) or overwrite the row at `snapshot.version`.

    Returns False when the row has moved on to another version.
    """
    now = _now()
    data = snapshot.model_dump_json(exclude={"version"})
    if snapshot.version == 0:
        await db.execute(
            "INSERT INTO active_sessions(id, user_id, snapshot, version, created_at, updated_at) "
            "VALUES (?, ?, ?, 1, ?, ?)",
            (snapshot.session_id, snapshot.user_id, data, now, now),
        )
        await db.commit()
        return True
    cursor = await db.execute(
        """UPDATE active_sessions
           SET snapshot = ?, version = version + 1, claimed_until = NULL, updated_at = ?
           WHERE id = ? AND version = ?""",
        (data, now, snapshot.session_id, snapshot.version),
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


async def get_active_session(
    db: aiosqlite.Connection, session_id: str
) -> StudySessionSnapshot | None:
    cursor = await db.execute(
        "SELECT snapshot, version FROM active_sessions WHERE id = ?", (session_id,)
    )
    row = await cursor.fetchone()
    if row is None:
        return None
    snapshot = StudySessionSnapshot.model_validate_json(row[0])
    snapshot.version = row[1]
    return snapshot


async def claim_active_session(
    db: aiosqlite.Connection, session_id: str, version: int, lease_seconds: int
) -> bool:
    now = datetime.now(timezone.utc)
    cursor = await db.execute(
        """UPDATE active_sessions SET claimed_until = ?
           WHERE id = ? AND version = ?
             AND (claimed_until IS NULL OR claimed_until < ?)""",
        (to_db_ts(now + timedelta(seconds=lease_seconds)), session_id, version, to_db_ts(now)),
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


async def release_active_session(
    db: aiosqlite.Connection, session_id: str, version: int
) -> None:
    await db.execute(
        "UPDATE active_sessions SET claimed_until = NULL WHERE id = ? AND version = ?",
        (session_id, version),
    )
    await db.commit()


async def delete_active_session(
    db: aiosqlite.Connection, session_id: str, version: int | None = None
) -> bool:
    if version is None:
        cursor = await db.execute("DELETE FROM active_sessions WHERE id = ?", (session_id,))
    else:
        cursor = await db.execute(
            "DELETE FROM active_sessions WHERE id = ? AND version = ?", (session_id, version)
        )
    await db.commit()
    return (cursor.rowcount or 0) > 0


# --- Profiles ---


async def get_profile(db: aiosqlite.Connection, user_id: str) -> Profile:
    cursor = await db.execute(
        "SELECT grade_level FROM profiles WHERE user_id = ?", (user_id,)
    )
    row = await cursor.fetchone()
    return Profile(user_id=user_id, grade_level=row[0] if row else None)


async def set_grade_level(
    db: aiosqlite.Connection, user_id: str, grade_level: str | None
) -> Profile:
    await db.execute(
        "INSERT INTO profiles(user_id, grade_level, updated_at) VALUES (?, ?, ?) "
        "ON CONFLICT(user_id) DO UPDATE SET grade_level = excluded.grade_level, updated_at = excluded.updated_at",
        (user_id, grade_level, _now()),
    )
    await db.commit()
    return await get_profile(db, user_id)

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from novastudy.models.flashcard import Quality, SchedulingState


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    REVIEWING = "reviewing"
    NAVIGATING = "navigating"
    COMPLETING = "completing"
    CLOSED = "closed"
    EMPTY = "empty"


class RateOutcome(str, Enum):
    RATED = "rated"
    SKIPPED = "skipped"                  # card vanished from the store
    UNAUTHORIZED = "unauthorized"
    PERSISTENCE_FAILED = "persistence_failed"


class CompleteOutcome(str, Enum):
    COMMITTED = "committed"
    PERSISTENCE_FAILED = "persistence_failed"


class SessionCard(BaseModel):
    """Presentation snapshot of a queued card. Scheduling state is reloaded at rating time."""

    id: str
    set_id: str
    set_title: str = ""
    question: str
    answer: str


class PerformanceEntry(BaseModel):
    card_id: str
    question: str
    quality: Quality


class PerformanceSnapshot(BaseModel):
    again: int = 0
    hard: int = 0
    good: int = 0
    easy: int = 0


class SessionSummary(BaseModel):
    id: str
    user_id: str
    set_id: str | None
    cards_reviewed: int
    performance_snapshot: PerformanceSnapshot
    mastery_at_session_end: int | None
    completed_at: datetime


class SessionHistory(BaseModel):
    items: list[SessionSummary]
    total: int


class StudySessionSnapshot(BaseModel):
    session_id: str
    user_id: str
    set_ids: list[str]
    set_titles: dict[str, str] = Field(default_factory=dict)
    state: SessionState
    cards: list[SessionCard] = Field(default_factory=list)
    position: int = 0
    performance: list[PerformanceEntry] = Field(default_factory=list)
    skipped_ids: list[str] = Field(default_factory=list)
    pending_summary: SessionSummary | None = None  # built but not yet committed
    version: int = 0  # row version in active_sessions; 0 until first stored


# --- API bodies ---


class OpenSessionRequest(BaseModel):
    set_ids: list[str]
    shuffle: bool | None = None  # None = settings.shuffle_sessions


class NavigateRequest(BaseModel):
    direction: Literal["next", "prev"]


class RateRequest(BaseModel):
    card_id: str
    quality: Quality


class SkipRequest(BaseModel):
    card_id: str


class SessionView(BaseModel):
    id: str | None
    state: SessionState
    position: int
    total: int
    current: SessionCard | None
    rated_count: int
    skipped_card_ids: list[str]
    set_titles: dict[str, str]


class RateResponse(BaseModel):
    outcome: RateOutcome
    error: str | None = None
    card_id: str
    scheduling: SchedulingState | None = None
    session: SessionView
    summary: SessionSummary | None = None
    report: str | None = None
    report_error: str | None = None


class CompleteResponse(BaseModel):
    outcome: CompleteOutcome
    error: str | None = None
    session: SessionView
    summary: SessionSummary
    report: str | None = None
    report_error: str | None = None


class Profile(BaseModel):
    user_id: str
    grade_level: str | None = None


class ProfileUpdate(BaseModel):
    grade_level: str | None = None

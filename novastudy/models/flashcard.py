from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, Field


class Quality(IntEnum):
    AGAIN = 0
    HARD = 1
    GOOD = 2
    EASY = 3


class WriteStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


class SchedulingState(BaseModel):
    """Scheduling fields of a card. All None means the card was never reviewed."""

    interval: int | None = None          # days until next review
    ease_factor: float | None = None     # floor 1.3
    repetitions: int | None = None       # consecutive successful reviews
    due_date: datetime | None = None
    last_reviewed_at: datetime | None = None


class Flashcard(BaseModel):
    id: str
    set_id: str
    user_id: str
    question: str
    answer: str
    due_date: datetime | None = None
    interval: int | None = None
    ease_factor: float | None = None
    repetitions: int | None = None
    last_reviewed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    def scheduling(self) -> SchedulingState:
        return SchedulingState(
            interval=self.interval,
            ease_factor=self.ease_factor,
            repetitions=self.repetitions,
            due_date=self.due_date,
            last_reviewed_at=self.last_reviewed_at,
        )


class DueCard(Flashcard):
    set_title: str


class FlashcardCreate(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)


class FlashcardUpdate(BaseModel):
    question: str | None = None
    answer: str | None = None


class DueCardList(BaseModel):
    items: list[DueCard]
    total: int
    set_titles: dict[str, str]


class FlashcardSetCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None


class FlashcardSet(BaseModel):
    id: str
    user_id: str
    title: str
    description: str | None
    created_at: datetime
    updated_at: datetime


class FlashcardSetList(BaseModel):
    items: list[FlashcardSet]
    total: int


class MasterySummary(BaseModel):
    mastered_count: int
    total_cards: int
    mastery_percentage: int


class FlashcardSetDetail(FlashcardSet):
    flashcards: list[Flashcard]
    mastered_count: int
    total_cards: int
    mastery_percentage: int


class ReviewRequest(BaseModel):
    quality: Quality  # 0=Again, 1=Hard, 2=Good, 3=Easy


class ReviewResult(BaseModel):
    id: str
    interval: int
    ease_factor: float
    repetitions: int
    due_date: datetime
    last_reviewed_at: datetime

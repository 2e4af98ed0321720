from novastudy.models.flashcard import (
    DueCard,
    DueCardList,
    Flashcard,
    FlashcardCreate,
    FlashcardSet,
    FlashcardSetCreate,
    FlashcardSetDetail,
    FlashcardSetList,
    FlashcardUpdate,
    MasterySummary,
    Quality,
    ReviewRequest,
    ReviewResult,
    SchedulingState,
    WriteStatus,
)
from novastudy.models.session import (
    PerformanceEntry,
    PerformanceSnapshot,
    RateOutcome,
    SessionCard,
    SessionState,
    SessionSummary,
    StudySessionSnapshot,
)

__all__ = [
    "DueCard",
    "DueCardList",
    "Flashcard",
    "FlashcardCreate",
    "FlashcardSet",
    "FlashcardSetCreate",
    "FlashcardSetDetail",
    "FlashcardSetList",
    "FlashcardUpdate",
    "MasterySummary",
    "PerformanceEntry",
    "PerformanceSnapshot",
    "Quality",
    "RateOutcome",
    "ReviewRequest",
    "ReviewResult",
    "SchedulingState",
    "SessionCard",
    "SessionState",
    "SessionSummary",
    "StudySessionSnapshot",
    "WriteStatus",
]

"""
Study session orchestrator.

One StudySession instance drives one review session for one user:

    session = StudySession(user_id, set_ids, card_store, session_store)
    session.start(due_cards, shuffle=True)
    result = await session.rate(session.current().id, Quality.GOOD)

States: LOADING -> READY -> (REVIEWING <-> NAVIGATING) -> COMPLETING -> CLOSED,
or LOADING -> EMPTY when there is nothing to review. CLOSED and EMPTY are
terminal; a closed instance is discarded by its owner.

Caller mistakes (wrong card, out-of-range quality, operation in the wrong
state) raise InvalidInputError before anything changes. Store failures are
returned as RateResult / CompleteResult outcomes and never advance the
position, so the caller can retry or explicitly skip the card.
"""
from __future__ import annotations

import logging
import random
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from novastudy.db.stores import CardStore, SessionStore
from novastudy.errors import InvalidInputError, PersistenceError
from novastudy.models.flashcard import Flashcard, Quality, SchedulingState, WriteStatus
from novastudy.models.session import (
    CompleteOutcome,
    PerformanceEntry,
    PerformanceSnapshot,
    RateOutcome,
    SessionCard,
    SessionState,
    SessionSummary,
    SessionView,
    StudySessionSnapshot,
)
from novastudy.services import scheduler
from novastudy.services.mastery import aggregate_mastery

logger = logging.getLogger(__name__)

ACTIVE_STATES = {SessionState.READY, SessionState.REVIEWING, SessionState.NAVIGATING}


@dataclass
class CompleteResult:
    outcome: CompleteOutcome
    summary: SessionSummary
    error: str | None = None


@dataclass
class RateResult:
    outcome: RateOutcome
    card_id: str
    scheduling: SchedulingState | None = None
    completion: CompleteResult | None = None
    error: str | None = None


def performance_snapshot(entries: Sequence[PerformanceEntry]) -> PerformanceSnapshot:
    counts = PerformanceSnapshot()
    for entry in entries:
        name = Quality(entry.quality).name.lower()
        setattr(counts, name, getattr(counts, name) + 1)
    return counts


def _session_card(card: Flashcard) -> SessionCard:
    return SessionCard(
        id=card.id,
        set_id=card.set_id,
        set_title=getattr(card, "set_title", ""),
        question=card.question,
        answer=card.answer,
    )


class StudySession:
    def __init__(
        self,
        user_id: str,
        set_ids: Sequence[str],
        card_store: CardStore,
        session_store: SessionStore,
        *,
        session_id: str | None = None,
        clock: Callable[[], datetime] = scheduler.utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self.user_id = user_id
        self.set_ids = list(set_ids)
        self.card_store = card_store
        self.session_store = session_store
        self.clock = clock
        self.rng = rng or random.Random()
        self.version = 0

        self.state = SessionState.LOADING
        self.set_titles: dict[str, str] = {}
        self._cards: list[SessionCard] = []
        self._position = 0
        self._performance: list[PerformanceEntry] = []
        self._skipped: list[str] = []
        self._pending_summary: SessionSummary | None = None

    # --- Queue ---

    def start(self, cards: Sequence[Flashcard], shuffle: bool = False) -> SessionState:
        if self.state is not SessionState.LOADING:
            raise InvalidInputError(f"Session cannot start from state '{self.state.value}'")

        queue: list[SessionCard] = []
        seen: set[str] = set()
        for card in cards:
            if card.id in seen:
                continue
            seen.add(card.id)
            queue.append(_session_card(card))
            if queue[-1].set_title:
                self.set_titles.setdefault(card.set_id, queue[-1].set_title)

        if not queue:
            self.state = SessionState.EMPTY
            return self.state

        if shuffle:
            self.rng.shuffle(queue)
        self._cards = queue
        self._position = 0
        self._performance = []
        self._skipped = []
        self.state = SessionState.READY
        return self.state

    @property
    def cards(self) -> list[SessionCard]:
        return list(self._cards)

    @property
    def position(self) -> int:
        return self._position

    @property
    def performance(self) -> list[PerformanceEntry]:
        return list(self._performance)

    @property
    def skipped_card_ids(self) -> list[str]:
        return list(self._skipped)

    def _handled_ids(self) -> set[str]:
        return {e.card_id for e in self._performance} | set(self._skipped)

    def current(self) -> SessionCard | None:
        if 0 <= self._position < len(self._cards):
            return self._cards[self._position]
        return None

    def _require_active(self, operation: str) -> None:
        if self.state not in ACTIVE_STATES:
            raise InvalidInputError(
                f"Cannot {operation} a session in state '{self.state.value}'"
            )

    def navigate(self, direction: str) -> SessionCard | None:
        """Move the presentation cursor by one. Never rates or changes a card."""
        self._require_active("navigate")
        if direction == "next":
            self._position = min(self._position + 1, len(self._cards) - 1)
        elif direction == "prev":
            self._position = max(self._position - 1, 0)
        else:
            raise InvalidInputError("direction must be 'next' or 'prev'")
        self.state = SessionState.NAVIGATING
        return self.current()

    def shuffle(self) -> None:
        """Reorder the cards not yet rated or skipped; handled cards keep their slots."""
        self._require_active("shuffle")
        handled = self._handled_ids()
        slots = [i for i, c in enumerate(self._cards) if c.id not in handled]
        remaining = [self._cards[i] for i in slots]
        self.rng.shuffle(remaining)
        for i, card in zip(slots, remaining):
            self._cards[i] = card
        if slots:
            self._position = slots[0]

    # --- Rating ---

    def _validate_target(self, card_id: str, operation: str) -> SessionCard:
        self._require_active(operation)
        card = self.current()
        if card is None or card.id != card_id:
            raise InvalidInputError(f"Card {card_id} is not the current card")
        if card_id in self._handled_ids():
            raise InvalidInputError(f"Card {card_id} was already handled in this session")
        return card

    async def _advance(self) -> CompleteResult | None:
        handled = self._handled_ids()
        for i in range(self._position + 1, len(self._cards)):
            if self._cards[i].id not in handled:
                self._position = i
                return None
        return await self.complete()

    async def rate(self, card_id: str, quality: Quality | int) -> RateResult:
        try:
            quality = Quality(quality)
        except ValueError:
            raise InvalidInputError(f"Quality must be 0-3, got {quality!r}") from None
        card = self._validate_target(card_id, "rate")

        new_state: SchedulingState | None = None
        status = WriteStatus.NOT_FOUND
        try:
            prior = await self.card_store.load_scheduling(card_id, self.user_id)
            if prior is None:
                if await self.card_store.card_exists(card_id):
                    status = WriteStatus.FORBIDDEN
            else:
                new_state = scheduler.apply(prior, quality, self.clock())
                status = await self.card_store.write_scheduling(card_id, self.user_id, new_state)
        except PersistenceError as e:
            logger.warning("Review of card %s not saved in session %s: %s", card_id, self.session_id, e)
            return RateResult(RateOutcome.PERSISTENCE_FAILED, card_id, error=str(e))

        if status is WriteStatus.NOT_FOUND:
            return await self._skip_missing(card_id)
        if status is WriteStatus.FORBIDDEN:
            return RateResult(
                RateOutcome.UNAUTHORIZED, card_id, error="Flashcard not owned by this user"
            )

        self._performance.append(
            PerformanceEntry(card_id=card_id, question=card.question, quality=quality)
        )
        self.state = SessionState.REVIEWING
        completion = await self._advance()
        return RateResult(RateOutcome.RATED, card_id, scheduling=new_state, completion=completion)

    async def _skip_missing(self, card_id: str) -> RateResult:
        logger.info("Card %s no longer exists, skipping in session %s", card_id, self.session_id)
        self._skipped.append(card_id)
        self.state = SessionState.REVIEWING
        completion = await self._advance()
        return RateResult(
            RateOutcome.SKIPPED, card_id, completion=completion, error="Flashcard not found"
        )

    async def skip(self, card_id: str) -> RateResult:
        """Move past the current card without saving a rating for it."""
        self._validate_target(card_id, "skip")
        self._skipped.append(card_id)
        self.state = SessionState.REVIEWING
        completion = await self._advance()
        return RateResult(RateOutcome.SKIPPED, card_id, completion=completion)

    # --- Completion ---

    async def _mastery_at_end(self) -> int | None:
        try:
            cards = await self.card_store.list_cards_for_sets(self.set_ids, self.user_id)
        except PersistenceError as e:
            logger.warning("Mastery unavailable for session %s: %s", self.session_id, e)
            return None
        return aggregate_mastery(cards).mastery_percentage

    async def complete(self) -> CompleteResult:
        if self.state is SessionState.CLOSED:
            raise InvalidInputError("Session already completed")
        if self.state not in ACTIVE_STATES and self.state is not SessionState.COMPLETING:
            raise InvalidInputError(f"Cannot complete a session in state '{self.state.value}'")

        self.state = SessionState.COMPLETING
        if self._pending_summary is None:
            self._pending_summary = SessionSummary(
                id=str(uuid.uuid4()),
                user_id=self.user_id,
                set_id=self.set_ids[0] if len(self.set_ids) == 1 else None,
                cards_reviewed=len(self._performance),
                performance_snapshot=performance_snapshot(self._performance),
                mastery_at_session_end=await self._mastery_at_end(),
                completed_at=self.clock(),
            )
        summary = self._pending_summary

        try:
            await self.session_store.save_summary(summary)
        except PersistenceError as e:
            logger.warning("Summary for session %s not saved: %s", self.session_id, e)
            return CompleteResult(CompleteOutcome.PERSISTENCE_FAILED, summary, error=str(e))

        self.state = SessionState.CLOSED
        return CompleteResult(CompleteOutcome.COMMITTED, summary)

    # --- Views and snapshots ---

    def view(self) -> SessionView:
        return SessionView(
            id=self.session_id,
            state=self.state,
            position=self._position,
            total=len(self._cards),
            current=self.current() if self.state in ACTIVE_STATES else None,
            rated_count=len(self._performance),
            skipped_card_ids=list(self._skipped),
            set_titles=dict(self.set_titles),
        )

    def snapshot(self) -> StudySessionSnapshot:
        return StudySessionSnapshot(
            session_id=self.session_id,
            user_id=self.user_id,
            set_ids=list(self.set_ids),
            set_titles=dict(self.set_titles),
            state=self.state,
            cards=list(self._cards),
            position=self._position,
            performance=list(self._performance),
            skipped_ids=list(self._skipped),
            pending_summary=self._pending_summary,
            version=self.version,
        )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: StudySessionSnapshot,
        card_store: CardStore,
        session_store: SessionStore,
        **kwargs,
    ) -> StudySession:
        session = cls(
            snapshot.user_id,
            snapshot.set_ids,
            card_store,
            session_store,
            session_id=snapshot.session_id,
            **kwargs,
        )
        session.state = snapshot.state
        session.set_titles = dict(snapshot.set_titles)
        session._cards = list(snapshot.cards)
        session._position = snapshot.position
        session._performance = list(snapshot.performance)
        session._skipped = list(snapshot.skipped_ids)
        session._pending_summary = snapshot.pending_summary
        session.version = snapshot.version
        return session

"""
Flashcard sets, cards & single-card review router.

Endpoints:
  POST   /sets                  — create a set
  GET    /sets                  — list the caller's sets
  GET    /sets/{id}             — set with its cards and mastery
  GET    /sets/{id}/mastery     — aggregate mastery only
  DELETE /sets/{id}             — delete a set and its cards
  POST   /sets/{id}/cards       — add a card by hand (never reviewed)
  GET    /cards/due             — due cards for one or more sets (?set_id=a&set_id=b)
  GET    /cards/{id}            — single card
  POST   /cards/{id}/review     — rate one card outside a study session
  PATCH  /cards/{id}            — edit question / answer
  DELETE /cards/{id}            — delete card
"""
from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Query

from novastudy.db.sqlite import (
    create_flashcard,
    create_set,
    delete_flashcard,
    delete_set,
    flashcard_exists,
    get_db,
    get_flashcard,
    get_scheduling,
    get_set,
    list_flashcards_for_sets,
    list_sets,
    set_exists,
    update_flashcard_content,
    update_flashcard_scheduling,
)
from novastudy.dependencies import get_current_user
from novastudy.errors import InvalidInputError
from novastudy.models.flashcard import (
    DueCardList,
    Flashcard,
    FlashcardCreate,
    FlashcardSet,
    FlashcardSetCreate,
    FlashcardSetDetail,
    FlashcardSetList,
    FlashcardUpdate,
    MasterySummary,
    ReviewRequest,
    ReviewResult,
    WriteStatus,
)
from novastudy.services import scheduler
from novastudy.services.due_selector import select_due_across_sets, set_titles_of
from novastudy.services.mastery import aggregate_mastery

logger = logging.getLogger(__name__)
router = APIRouter()


async def _require_set(db: aiosqlite.Connection, set_id: str, user_id: str) -> FlashcardSet:
    flashcard_set = await get_set(db, set_id, user_id)
    if flashcard_set:
        return flashcard_set
    if await set_exists(db, set_id):
        raise HTTPException(status_code=403, detail="Flashcard set not owned by this user")
    raise HTTPException(status_code=404, detail="Flashcard set not found")


async def _card_missing(db: aiosqlite.Connection, card_id: str) -> HTTPException:
    if await flashcard_exists(db, card_id):
        return HTTPException(status_code=403, detail="Flashcard not owned by this user")
    return HTTPException(status_code=404, detail="Flashcard not found")


# --- Sets ---


@router.post("/sets", response_model=FlashcardSet, status_code=201)
async def create_flashcard_set(
    body: FlashcardSetCreate,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardSet:
    return await create_set(db, user_id, body)


@router.get("/sets", response_model=FlashcardSetList)
async def list_flashcard_sets(
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardSetList:
    items = await list_sets(db, user_id)
    return FlashcardSetList(items=items, total=len(items))


@router.get("/sets/{set_id}", response_model=FlashcardSetDetail)
async def get_flashcard_set(
    set_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardSetDetail:
    """Set details with cards and mastery recomputed from the current scheduling state."""
    flashcard_set = await _require_set(db, set_id, user_id)
    cards = await list_flashcards_for_sets(db, [set_id], user_id)
    mastery = aggregate_mastery(cards)
    return FlashcardSetDetail(
        **flashcard_set.model_dump(),
        flashcards=cards,
        **mastery.model_dump(),
    )


@router.get("/sets/{set_id}/mastery", response_model=MasterySummary)
async def get_set_mastery(
    set_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> MasterySummary:
    await _require_set(db, set_id, user_id)
    return aggregate_mastery(await list_flashcards_for_sets(db, [set_id], user_id))


@router.delete("/sets/{set_id}", status_code=204)
async def remove_flashcard_set(
    set_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> None:
    await _require_set(db, set_id, user_id)
    await delete_set(db, set_id, user_id)


@router.post("/sets/{set_id}/cards", response_model=Flashcard, status_code=201)
async def add_card(
    set_id: str,
    body: FlashcardCreate,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> Flashcard:
    await _require_set(db, set_id, user_id)
    return await create_flashcard(db, set_id, user_id, body)


# --- Cards ---


@router.get("/cards/due", response_model=DueCardList)
async def get_due(
    set_id: list[str] = Query(default=[]),
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> DueCardList:
    """Due and never-reviewed cards across the given sets, most overdue first."""
    try:
        items = await select_due_across_sets(db, set_id, user_id, scheduler.utcnow())
    except InvalidInputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return DueCardList(items=items, total=len(items), set_titles=set_titles_of(items))


@router.get("/cards/{card_id}", response_model=Flashcard)
async def get_card(
    card_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> Flashcard:
    card = await get_flashcard(db, card_id, user_id)
    if not card:
        raise await _card_missing(db, card_id)
    return card


@router.post("/cards/{card_id}/review", response_model=ReviewResult)
async def review_card(
    card_id: str,
    body: ReviewRequest,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewResult:
    """Submit a quality rating for one card and store its next schedule."""
    prior = await get_scheduling(db, card_id, user_id)
    if prior is None:
        raise await _card_missing(db, card_id)

    new_state = scheduler.apply(prior, body.quality, scheduler.utcnow())
    status = await update_flashcard_scheduling(db, card_id, user_id, new_state)
    if status is WriteStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    if status is WriteStatus.FORBIDDEN:
        raise HTTPException(status_code=403, detail="Flashcard not owned by this user")

    return ReviewResult(id=card_id, **new_state.model_dump())


@router.patch("/cards/{card_id}", response_model=Flashcard)
async def edit_card(
    card_id: str,
    body: FlashcardUpdate,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> Flashcard:
    if (body.question is not None and not body.question.strip()) or (
        body.answer is not None and not body.answer.strip()
    ):
        raise HTTPException(status_code=422, detail="Question and answer cannot be empty")
    updated = await update_flashcard_content(db, card_id, user_id, body)
    if not updated:
        raise await _card_missing(db, card_id)
    return updated


@router.delete("/cards/{card_id}", status_code=204)
async def remove_card(
    card_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> None:
    deleted = await delete_flashcard(db, card_id, user_id)
    if not deleted:
        raise await _card_missing(db, card_id)

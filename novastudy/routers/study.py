"""
Study session router.

Endpoints:
  POST   /study/sessions                 — select due cards and open a session
  GET    /study/sessions/{id}            — current session view
  POST   /study/sessions/{id}/navigate   — move the presentation cursor
  POST   /study/sessions/{id}/shuffle    — reorder the cards not yet handled
  POST   /study/sessions/{id}/rate       — rate the current card
  POST   /study/sessions/{id}/skip       — move on without saving a rating
  POST   /study/sessions/{id}/complete   — finish early and commit the summary
  DELETE /study/sessions/{id}            — abandon (no summary)
  GET    /study/history                  — recent session summaries

Each request rebuilds the StudySession from its snapshot row and stores the
new snapshot afterwards; the row is removed once the session is closed or
abandoned. Requests that change a session claim its row first, so a second
request for the same session in the meantime gets 409 instead of acting on
the same snapshot.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Query, Response

from novastudy.config import settings
from novastudy.db.sqlite import (
    claim_active_session,
    delete_active_session,
    get_active_session,
    get_db,
    get_profile,
    get_set_titles,
    list_study_sessions,
    release_active_session,
    save_active_session,
)
from novastudy.db.stores import SqliteCardStore, SqliteSessionStore
from novastudy.dependencies import get_current_user
from novastudy.errors import InvalidInputError
from novastudy.models.session import (
    CompleteOutcome,
    CompleteResponse,
    NavigateRequest,
    OpenSessionRequest,
    RateRequest,
    RateResponse,
    SessionHistory,
    SessionState,
    SessionView,
    SkipRequest,
)
from novastudy.services import scheduler
from novastudy.services.due_selector import select_due_across_sets
from novastudy.services.report_generator import ReportGenerationError, generate_study_report
from novastudy.services.study_session import CompleteResult, RateResult, StudySession

logger = logging.getLogger(__name__)
router = APIRouter()

SESSION_BUSY = "Study session is being updated by another request"


async def _load_session(
    db: aiosqlite.Connection, session_id: str, user_id: str
) -> StudySession:
    snapshot = await get_active_session(db, session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Study session not found")
    if snapshot.user_id != user_id:
        raise HTTPException(status_code=403, detail="Study session not owned by this user")
    return StudySession.from_snapshot(
        snapshot, SqliteCardStore(db), SqliteSessionStore(db)
    )


async def _claim(db: aiosqlite.Connection, session: StudySession) -> None:
    claimed = await claim_active_session(
        db, session.session_id, session.version, settings.session_claim_seconds
    )
    if not claimed:
        raise HTTPException(status_code=409, detail=SESSION_BUSY)


async def _store_session(db: aiosqlite.Connection, session: StudySession) -> bool:
    if session.state in (SessionState.CLOSED, SessionState.EMPTY):
        return await delete_active_session(db, session.session_id, session.version)
    return await save_active_session(db, session.snapshot())


@asynccontextmanager
async def _claimed_session(
    db: aiosqlite.Connection, session_id: str, user_id: str
) -> AsyncIterator[StudySession]:
    """Load and claim a session for one request; store it when the block exits cleanly."""
    session = await _load_session(db, session_id, user_id)
    await _claim(db, session)
    try:
        yield session
    except Exception:
        await release_active_session(db, session_id, session.version)
        raise
    if not await _store_session(db, session):
        logger.warning("Study session %s changed while claimed, update dropped", session_id)
        raise HTTPException(status_code=409, detail=SESSION_BUSY)


async def _report_for(
    db: aiosqlite.Connection,
    session: StudySession,
    completion: CompleteResult | None,
    wanted: bool,
) -> tuple[str | None, str | None]:
    """Generate the optional study report once the summary is committed."""
    if not wanted or completion is None or completion.outcome is not CompleteOutcome.COMMITTED:
        return None, None
    profile = await get_profile(db, session.user_id)
    titles = list(session.set_titles.values())
    try:
        report = await generate_study_report(titles, session.performance, profile.grade_level)
    except ReportGenerationError as e:
        logger.warning("Study report failed for session %s: %s", session.session_id, e)
        return None, str(e)
    return report, None


async def _rate_response(
    db: aiosqlite.Connection,
    session: StudySession,
    result: RateResult,
    generate_report: bool,
) -> RateResponse:
    report, report_error = await _report_for(db, session, result.completion, generate_report)
    return RateResponse(
        outcome=result.outcome,
        error=result.error,
        card_id=result.card_id,
        scheduling=result.scheduling,
        session=session.view(),
        summary=result.completion.summary if result.completion else None,
        report=report,
        report_error=report_error,
    )


@router.post("/sessions", response_model=SessionView, status_code=201)
async def open_session(
    body: OpenSessionRequest,
    response: Response,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> SessionView:
    """Load the due cards of the given sets. Nothing due returns an 'empty' view and no session."""
    try:
        cards = await select_due_across_sets(db, body.set_ids, user_id, scheduler.utcnow())
    except InvalidInputError as e:
        raise HTTPException(status_code=422, detail=str(e))

    titles = await get_set_titles(db, list(dict.fromkeys(body.set_ids)), user_id)
    session = StudySession(
        user_id, list(titles), SqliteCardStore(db), SqliteSessionStore(db)
    )
    session.set_titles.update(titles)
    shuffle = settings.shuffle_sessions if body.shuffle is None else body.shuffle
    state = session.start(cards, shuffle=shuffle)

    if state is SessionState.EMPTY:
        response.status_code = 200
        view = session.view()
        view.id = None
        return view

    await _store_session(db, session)
    logger.info("Opened study session %s with %d cards", session.session_id, len(cards))
    return session.view()


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> SessionView:
    session = await _load_session(db, session_id, user_id)
    return session.view()


@router.post("/sessions/{session_id}/navigate", response_model=SessionView)
async def navigate_session(
    session_id: str,
    body: NavigateRequest,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> SessionView:
    async with _claimed_session(db, session_id, user_id) as session:
        try:
            session.navigate(body.direction)
        except InvalidInputError as e:
            raise HTTPException(status_code=422, detail=str(e))
    return session.view()


@router.post("/sessions/{session_id}/shuffle", response_model=SessionView)
async def shuffle_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> SessionView:
    async with _claimed_session(db, session_id, user_id) as session:
        try:
            session.shuffle()
        except InvalidInputError as e:
            raise HTTPException(status_code=422, detail=str(e))
    return session.view()


@router.post("/sessions/{session_id}/rate", response_model=RateResponse)
async def rate_card(
    session_id: str,
    body: RateRequest,
    generate_report: bool = Query(default=False),
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> RateResponse:
    """Rate the current card. A failed save keeps the session on the same card."""
    async with _claimed_session(db, session_id, user_id) as session:
        try:
            result = await session.rate(body.card_id, body.quality)
        except InvalidInputError as e:
            raise HTTPException(status_code=422, detail=str(e))
    return await _rate_response(db, session, result, generate_report)


@router.post("/sessions/{session_id}/skip", response_model=RateResponse)
async def skip_card(
    session_id: str,
    body: SkipRequest,
    generate_report: bool = Query(default=False),
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> RateResponse:
    async with _claimed_session(db, session_id, user_id) as session:
        try:
            result = await session.skip(body.card_id)
        except InvalidInputError as e:
            raise HTTPException(status_code=422, detail=str(e))
    return await _rate_response(db, session, result, generate_report)


@router.post("/sessions/{session_id}/complete", response_model=CompleteResponse)
async def complete_session(
    session_id: str,
    generate_report: bool = Query(default=False),
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> CompleteResponse:
    async with _claimed_session(db, session_id, user_id) as session:
        try:
            completion = await session.complete()
        except InvalidInputError as e:
            raise HTTPException(status_code=422, detail=str(e))
    report, report_error = await _report_for(db, session, completion, generate_report)
    return CompleteResponse(
        outcome=completion.outcome,
        error=completion.error,
        session=session.view(),
        summary=completion.summary,
        report=report,
        report_error=report_error,
    )


@router.delete("/sessions/{session_id}", status_code=204)
async def abandon_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> None:
    """Drop the session. Ratings already saved stay saved; no summary is written."""
    session = await _load_session(db, session_id, user_id)
    await _claim(db, session)
    await delete_active_session(db, session_id, session.version)


@router.get("/history", response_model=SessionHistory)
async def session_history(
    set_id: str | None = Query(default=None),
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
) -> SessionHistory:
    items = await list_study_sessions(db, user_id, set_id, limit=settings.history_limit)
    return SessionHistory(items=items, total=len(items))

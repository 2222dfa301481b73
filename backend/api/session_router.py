"""API routes for review sessions."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from backend.api.deps import get_registry, get_services
from backend.api.schemas import (
    ErrorResponse,
    EventResponse,
    ReplyRequest,
    ReplyResponse,
    SessionResponse,
    TurnResponse,
)
from backend.errors import MalformedOutputError
from backend.services import ReviewServices, SessionRegistry
from backend.srs.session import ReviewSession, SessionPhase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["session"])


def _session_response(session_id: str, session: ReviewSession, registry: SessionRegistry) -> dict:
    error = None
    if session.error is not None:
        error = ErrorResponse(
            kind=type(session.error).__name__,
            message=str(session.error),
            raw=session.error.raw if isinstance(session.error, MalformedOutputError) else None,
        )
    current = session.current_topic
    return {
        "session_id": session_id,
        "phase": session.phase.value,
        "cursor": session.cursor,
        "total_topics": len(session.queue),
        "remaining": session.remaining,
        "current_topic": current.name if current else None,
        "transcript": [TurnResponse(speaker=t.speaker.value, text=t.text) for t in session.transcript],
        "input_enabled": session.input_enabled,
        "awaiting_reply": session.awaiting_reply,
        "error": error,
        "events": [
            EventResponse(kind=e.kind.value, text=e.text, topic=e.topic)
            for e in registry.events(session_id)
        ],
        "topics_reviewed": session.stats.topics_reviewed,
    }


def _active_session(session_id: str, registry: SessionRegistry) -> ReviewSession:
    review_session = registry.get(session_id)
    if review_session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if review_session.phase is SessionPhase.FINISHED:
        raise HTTPException(status_code=410, detail="Session is complete")
    return review_session


@router.post("/start", response_model=SessionResponse)
async def session_start(
    services: ReviewServices = Depends(get_services),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """Start a review session over every topic due now and ask the first question."""
    due = await run_in_threadpool(services.store.get_due_topics)
    session_id, review_session = registry.create(services)
    logger.info("Session %s started with %d due topics", session_id, len(due))
    await review_session.load_queue(due)
    return SessionResponse(**_session_response(session_id, review_session, registry))


@router.get("/{session_id}", response_model=SessionResponse)
async def session_get(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """Get the current state of a session."""
    review_session = registry.get(session_id)
    if review_session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionResponse(**_session_response(session_id, review_session, registry))


@router.post("/{session_id}/reply", response_model=ReplyResponse)
async def session_reply(
    session_id: str,
    request: ReplyRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ReplyResponse:
    """Submit the student's answer to the current question."""
    review_session = _active_session(session_id, registry)
    accepted = await review_session.submit_student_reply(request.text)
    if not accepted:
        logger.debug("Session %s ignored a reply", session_id)
    return ReplyResponse(accepted=accepted, **_session_response(session_id, review_session, registry))


@router.post("/{session_id}/restart", response_model=ReplyResponse)
async def session_restart(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> ReplyResponse:
    """Discard the current topic's dialogue and ask a new first question."""
    review_session = _active_session(session_id, registry)
    accepted = await review_session.restart_topic()
    return ReplyResponse(accepted=accepted, **_session_response(session_id, review_session, registry))


@router.post("/{session_id}/end", response_model=SessionResponse)
async def session_end(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """End a session and return its final state."""
    review_session = registry.get(session_id)
    if review_session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    response = SessionResponse(**_session_response(session_id, review_session, registry))
    registry.remove(session_id)
    logger.info(
        "Session %s ended: %d topics reviewed, ratings %s",
        session_id,
        review_session.stats.topics_reviewed,
        dict(review_session.stats.ratings),
    )
    return response

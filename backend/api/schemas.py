"""Pydantic schemas for API request/response models."""

from datetime import datetime

from pydantic import BaseModel

# --- Topics ---


class TopicResponse(BaseModel):
    """A topic discovered in the vault."""

    name: str
    source_ref: str
    next_review: datetime
    rating: str | None
    interval: int
    stability: float
    difficulty: float
    reps: int
    is_due: bool


# --- Session ---


class TurnResponse(BaseModel):
    """One transcript entry."""

    speaker: str  # student, tutor
    text: str


class EventResponse(BaseModel):
    """A session event for the UI to display."""

    kind: str
    text: str
    topic: str | None = None


class ErrorResponse(BaseModel):
    """The error that halted the current topic."""

    kind: str  # TransportError, MalformedOutputError, PersistenceNotFoundError
    message: str
    raw: str | None = None


class SessionResponse(BaseModel):
    """Current state of a review session."""

    session_id: str
    phase: str  # idle, topic_active, finished
    cursor: int
    total_topics: int
    remaining: int
    current_topic: str | None
    transcript: list[TurnResponse]
    input_enabled: bool
    awaiting_reply: bool
    error: ErrorResponse | None = None
    events: list[EventResponse]
    topics_reviewed: int


class ReplyRequest(BaseModel):
    """A student answer."""

    text: str


class ReplyResponse(SessionResponse):
    """Session state after a reply, and whether the reply was taken."""

    accepted: bool

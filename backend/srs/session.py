"""Review session state machine.

Walks a queue of due topics. For each topic the tutor asks one question,
the student answers once, and the tutor is instructed to rate that answer
in its next reply. The rating is scheduled and written back to the topic's
note before the session moves on. Exactly one completion request is in
flight at a time; attempts to start another while one is outstanding are
ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from agents.tutor_agent import TutorAgent
from backend.config import utcnow
from backend.errors import TutorError
from backend.srs.assessment import Verdict
from backend.srs.scheduler import MemoryState, Scheduler
from backend.srs.topic_store import TopicCard, TopicStore
from backend.srs.transcript import Speaker, Turn

logger = logging.getLogger(__name__)

FINISHED_MESSAGE = "That's every due topic for today. Nice work!"
NOTHING_TO_REVIEW_MESSAGE = "No topics due for review."


class SessionPhase(Enum):
    IDLE = "idle"
    TOPIC_ACTIVE = "topic_active"
    FINISHED = "finished"


class EventKind(Enum):
    TOPIC_STARTED = "topic_started"
    TUTOR_MESSAGE = "tutor_message"
    TOPIC_SCHEDULED = "topic_scheduled"
    ERROR = "error"
    FINISHED = "finished"
    NOTHING_TO_REVIEW = "nothing_to_review"


@dataclass(frozen=True)
class SessionEvent:
    """Something the hosting UI should show."""

    kind: EventKind
    text: str
    topic: str | None = None
    error: TutorError | None = None


@dataclass(frozen=True)
class SessionState:
    """Resumable snapshot of a session."""

    queue: tuple[TopicCard, ...]
    cursor: int


@dataclass
class SessionStats:
    """Statistics for the current review session."""

    topics_reviewed: int = 0
    ratings: Counter = field(default_factory=Counter)


@dataclass
class ReviewSession:
    """Drives the tutoring dialogue over a queue of topics."""

    tutor: TutorAgent
    scheduler: Scheduler
    store: TopicStore
    listener: Callable[[SessionEvent], None] | None = None
    clock: Callable[[], datetime] = utcnow
    queue: tuple[TopicCard, ...] = ()
    cursor: int = 0
    transcript: list[Turn] = field(default_factory=list)
    awaiting_reply: bool = False
    input_enabled: bool = False
    error: TutorError | None = None
    stats: SessionStats = field(default_factory=SessionStats)

    @property
    def phase(self) -> SessionPhase:
        if not self.queue:
            return SessionPhase.IDLE
        if self.cursor >= len(self.queue):
            return SessionPhase.FINISHED
        return SessionPhase.TOPIC_ACTIVE

    @property
    def current_topic(self) -> TopicCard | None:
        """Return the topic under discussion, or None if there is none."""
        if self.cursor < len(self.queue):
            return self.queue[self.cursor]
        return None

    @property
    def remaining(self) -> int:
        """Return the number of topics left, including the current one."""
        return max(0, len(self.queue) - self.cursor)

    @property
    def is_halted(self) -> bool:
        """True when the current topic stopped on an error."""
        return self.error is not None

    def get_state(self) -> SessionState:
        return SessionState(queue=self.queue, cursor=self.cursor)

    async def load_queue(self, topics: list[TopicCard]) -> None:
        """Start a session over ``topics`` and ask the first question."""
        await self._start(tuple(topics), 0)

    async def resume(self, state: SessionState) -> None:
        """Reload a saved session and restart the topic at its cursor."""
        await self._start(tuple(state.queue), min(max(0, state.cursor), len(state.queue)))

    async def submit_student_reply(self, text: str) -> bool:
        """Record the student's answer and fetch the tutor's verdict.

        Returns False, without doing anything, while a reply is outstanding,
        when input is disabled, or for blank text.
        """
        text = text.strip()
        if not text or self.awaiting_reply or not self.input_enabled:
            return False
        self.transcript.append(self.tutor.student_turn(text))
        await self._drive()
        return True

    async def restart_topic(self) -> bool:
        """Discard the current topic's dialogue and ask a fresh first question."""
        if self.awaiting_reply or self.phase is not SessionPhase.TOPIC_ACTIVE:
            return False
        logger.info("Restarting topic %r", self.current_topic.name)
        self._begin_topic()
        await self._drive()
        return True

    async def _start(self, queue: tuple[TopicCard, ...], cursor: int) -> None:
        if self.awaiting_reply:
            logger.debug("Ignoring queue load while a reply is outstanding")
            return
        self.queue = queue
        self.cursor = cursor
        self.transcript = []
        self.error = None
        self.input_enabled = False
        self.stats = SessionStats()

        if not queue:
            self._emit(EventKind.NOTHING_TO_REVIEW, NOTHING_TO_REVIEW_MESSAGE)
            return
        if self.phase is SessionPhase.FINISHED:
            self._emit(EventKind.FINISHED, FINISHED_MESSAGE)
            return

        logger.info("Started session: %d topics queued, cursor at %d", len(queue), cursor)
        self._begin_topic()
        await self._drive()

    def _begin_topic(self) -> None:
        self.transcript = []
        self.error = None
        self.input_enabled = False
        topic = self.current_topic
        self._emit(EventKind.TOPIC_STARTED, topic.name, topic=topic.name)

    async def _drive(self) -> None:
        """Run tutor turns until one needs the student or the queue ends."""
        while await self._tutor_turn():
            if not self._advance():
                return

    async def _tutor_turn(self) -> bool:
        """Request one tutor turn. Returns True once the topic is scheduled."""
        if self.awaiting_reply:
            return False
        topic = self.current_topic
        answered = any(turn.speaker is Speaker.STUDENT for turn in self.transcript)

        self.awaiting_reply = True
        self.input_enabled = False
        try:
            try:
                verdict, turn = await self.tutor.take_turn(topic, self.transcript)
            except TutorError as exc:
                self._halt(exc)
                return False

            self.transcript.append(turn)
            self._emit(EventKind.TUTOR_MESSAGE, verdict.message, topic=topic.name)

            if not verdict.is_terminal:
                if answered:
                    logger.warning("Tutor replied to an answer on %r without a rating", topic.name)
                self.input_enabled = True
                return False
            return await self._schedule(topic, verdict)
        finally:
            self.awaiting_reply = False

    async def _schedule(self, topic: TopicCard, verdict: Verdict) -> bool:
        new_state: MemoryState = self.scheduler.next(
            topic.memory_state, verdict.rating, self.clock()
        )
        try:
            await asyncio.to_thread(self.store.persist, topic, new_state)
        except TutorError as exc:
            self._halt(exc)
            return False

        self.stats.topics_reviewed += 1
        self.stats.ratings[verdict.rating.value] += 1
        self._emit(
            EventKind.TOPIC_SCHEDULED,
            f"Updated {topic.name} - next review: {new_state.next_review.date().isoformat()}",
            topic=topic.name,
        )
        return True

    def _advance(self) -> bool:
        """Move to the next topic. Returns False when the queue is exhausted."""
        if self.cursor + 1 < len(self.queue):
            self.cursor += 1
            self._begin_topic()
            return True
        self.cursor = len(self.queue)
        self.transcript = []
        self.input_enabled = False
        logger.info("Session finished: %d topics reviewed", self.stats.topics_reviewed)
        self._emit(EventKind.FINISHED, FINISHED_MESSAGE)
        return False

    def _halt(self, exc: TutorError) -> None:
        topic = self.current_topic
        logger.warning("Review of %r halted: %s", topic.name if topic else None, exc)
        self.error = exc
        self.input_enabled = False
        self._emit(
            EventKind.ERROR,
            f"Error: {exc}",
            topic=topic.name if topic else None,
            error=exc,
        )

    def _emit(self, kind: EventKind, text: str, topic: str | None = None, error: TutorError | None = None) -> None:
        if self.listener is not None:
            self.listener(SessionEvent(kind=kind, text=text, topic=topic, error=error))

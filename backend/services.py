"""Construction of the review engine from settings.

The hosting shell (API app or CLI) builds one ``ReviewServices`` and owns
every ``ReviewSession`` it creates; nothing here is module-level state.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from agents.tutor_agent import TutorAgent
from backend.config import Settings, settings
from backend.llm_client import CompletionClient, create_llm_client
from backend.srs.documents import VaultDocumentStore
from backend.srs.scheduler import Scheduler
from backend.srs.session import ReviewSession, SessionEvent
from backend.srs.topic_store import TopicStore

logger = logging.getLogger(__name__)


@dataclass
class ReviewServices:
    """Everything a review session needs."""

    store: TopicStore
    scheduler: Scheduler
    tutor: TutorAgent

    def new_session(self, listener: Callable[[SessionEvent], None] | None = None) -> ReviewSession:
        return ReviewSession(
            tutor=self.tutor,
            scheduler=self.scheduler,
            store=self.store,
            listener=listener,
            clock=self.store.clock,
        )


def build_services(config: Settings = settings, llm: CompletionClient | None = None) -> ReviewServices:
    """Wire the vault, scheduler and tutor described by ``config``."""
    documents = VaultDocumentStore(config.vault_path, pattern=config.note_pattern)
    tutor = TutorAgent(
        llm=llm if llm is not None else create_llm_client(config),
        wrap_student_replies=config.wrap_student_replies,
    )
    logger.info("Using vault %s with %s completions", config.vault_path, config.llm_provider)
    return ReviewServices(
        store=TopicStore(documents),
        scheduler=Scheduler.from_settings(config),
        tutor=tutor,
    )


@dataclass
class _Entry:
    session: ReviewSession
    events: list[SessionEvent]
    touched: float


@dataclass
class SessionRegistry:
    """In-memory sessions keyed by id, expiring after ``ttl_seconds`` idle."""

    ttl_seconds: int = settings.session_ttl_seconds
    _entries: dict[str, _Entry] = field(default_factory=dict)

    def create(self, services: ReviewServices) -> tuple[str, ReviewSession]:
        self.purge_expired()
        session_id = str(uuid.uuid4())
        events: list[SessionEvent] = []
        session = services.new_session(listener=events.append)
        self._entries[session_id] = _Entry(session=session, events=events, touched=time.monotonic())
        return session_id, session

    def get(self, session_id: str) -> ReviewSession | None:
        self.purge_expired()
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        entry.touched = time.monotonic()
        return entry.session

    def events(self, session_id: str) -> list[SessionEvent]:
        entry = self._entries.get(session_id)
        return list(entry.events) if entry else []

    def remove(self, session_id: str) -> ReviewSession | None:
        entry = self._entries.pop(session_id, None)
        return entry.session if entry else None

    def purge_expired(self) -> None:
        cutoff = time.monotonic() - self.ttl_seconds
        expired = [sid for sid, entry in self._entries.items() if entry.touched < cutoff]
        for sid in expired:
            logger.info("Expiring idle session %s", sid)
            del self._entries[sid]

    def __len__(self) -> int:
        return len(self._entries)

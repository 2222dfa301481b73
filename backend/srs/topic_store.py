"""Topic discovery, due filtering and write-back of scheduling state.

Topics live inside notes: every ``> [!topic] Name`` callout declares one,
and the comment line right after it stores its scheduling state. Cards are
rebuilt from the documents on every scan; nothing is cached.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from backend.config import utcnow
from backend.errors import PersistenceNotFoundError
from backend.srs.documents import DocumentStore
from backend.srs.encoding import decode_state, encode_state, is_state_line, parse_marker
from backend.srs.fsrs import Rating
from backend.srs.scheduler import MemoryState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicCard:
    """One reviewable topic and its scheduling state."""

    name: str
    source_ref: str
    content: str  # Full text of the owning document
    next_review: datetime
    rating: Rating | None
    interval: int
    stability: float
    difficulty: float
    reps: int

    @classmethod
    def from_state(cls, name: str, source_ref: str, content: str, state: MemoryState) -> TopicCard:
        return cls(
            name=name,
            source_ref=source_ref,
            content=content,
            next_review=state.next_review,
            rating=state.rating,
            interval=state.interval,
            stability=state.stability,
            difficulty=state.difficulty,
            reps=state.reps,
        )

    @property
    def memory_state(self) -> MemoryState:
        return MemoryState(
            next_review=self.next_review,
            rating=self.rating,
            interval=self.interval,
            stability=self.stability,
            difficulty=self.difficulty,
            reps=self.reps,
        )

    @property
    def is_new(self) -> bool:
        return self.reps == 0

    def is_due(self, now: datetime) -> bool:
        return self.next_review <= now


class TopicStore:
    """Reads topics out of a document store and writes updated state back."""

    def __init__(
        self,
        documents: DocumentStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.documents = documents
        self.clock = clock

    def get_all_topics(self, now: datetime | None = None) -> list[TopicCard]:
        """Scan every document for topic markers.

        Topics without a state comment are new and due at ``now``.
        """
        now = now or self.clock()
        topics: list[TopicCard] = []
        for ref in self.documents.list_documents():
            try:
                content = self.documents.read(ref)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable document %s: %s", ref, exc)
                continue
            topics.extend(parse_topics(ref, content, now))
        logger.debug("Discovered %d topics", len(topics))
        return topics

    def get_due_topics(self, now: datetime | None = None) -> list[TopicCard]:
        """Return topics whose next review is at or before ``now``."""
        now = now or self.clock()
        return [topic for topic in self.get_all_topics(now) if topic.is_due(now)]

    def persist(self, topic: TopicCard, state: MemoryState) -> None:
        """Write ``state`` back under the first marker named ``topic.name``.

        The document is read once and rewritten once. If the marker (or the
        whole document) is gone, nothing is written.

        Raises:
            PersistenceNotFoundError: If the marker cannot be found.
        """
        try:
            content = self.documents.read(topic.source_ref)
        except FileNotFoundError as exc:
            raise PersistenceNotFoundError(topic.name, topic.source_ref) from exc

        updated = rewrite_state(content, topic.name, state)
        if updated is None:
            logger.warning("Topic %r no longer present in %s", topic.name, topic.source_ref)
            raise PersistenceNotFoundError(topic.name, topic.source_ref)

        self.documents.write(topic.source_ref, updated)
        logger.info(
            "Updated %s - next review: %s",
            topic.name,
            state.next_review.date().isoformat(),
        )


def parse_topics(ref: str, content: str, now: datetime) -> list[TopicCard]:
    """Extract every topic declared in one document."""
    lines = content.split("\n")
    topics = []
    for i, line in enumerate(lines):
        name = parse_marker(line)
        if name is None:
            continue
        state = decode_state(lines[i + 1]) if i + 1 < len(lines) else None
        topics.append(TopicCard.from_state(name, ref, content, state or MemoryState.new(now)))
    return topics


def rewrite_state(content: str, name: str, state: MemoryState) -> str | None:
    """Return ``content`` with the state comment under ``name`` replaced or inserted.

    Returns None if no marker carries that name. Only the first matching
    marker is touched; duplicates further down keep their old state.
    """
    lines = content.split("\n")
    encoded = encode_state(state)

    for i, line in enumerate(lines):
        if parse_marker(line) != name:
            continue

        # Keep CRLF notes CRLF
        cr = "\r" if line.endswith("\r") else ""
        if i + 1 < len(lines) and is_state_line(lines[i + 1]):
            cr = "\r" if lines[i + 1].endswith("\r") else cr
            lines[i + 1] = encoded + cr
        else:
            lines.insert(i + 1, encoded + cr)
        return "\n".join(lines)

    return None

"""Parser and serializer for topic markers and their encoded state comments.

A topic is declared in a note by a callout line, optionally followed by a
single comment line holding its scheduling state::

    > [!topic] Binary search
    > <!--2026-10-21,hard,2,1.4,6.4,1-->

The comment fields are next review date, last rating (empty when never
reviewed), interval in days, stability, difficulty and reps. A comment that
does not decode to a consistent state is treated as absent, so the topic
starts over as new.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime

from backend.srs.fsrs import MAX_DIFFICULTY, MIN_DIFFICULTY, Rating
from backend.srs.scheduler import MemoryState

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"^>\s*\[!topic\]\s*(.+)$")
STATE_PATTERN = re.compile(r"^>\s*<!--(.*)-->\s*$")

STATE_FIELD_COUNT = 6
# Tokens meaning "never rated"
EMPTY_RATING_TOKENS = {"", "-", "none", "null", "new", "undefined"}
# Smallest stability that survives one-decimal formatting
MIN_ENCODED_STABILITY = 0.1


def _strip_eol(line: str) -> str:
    return line.rstrip("\r\n")


def parse_marker(line: str) -> str | None:
    """Return the topic name declared on ``line``, or None."""
    match = MARKER_PATTERN.match(_strip_eol(line))
    if not match:
        return None
    name = match.group(1).strip()
    return name or None


def is_state_line(line: str) -> bool:
    """Return True if ``line`` is an encoded state comment, valid or not."""
    return STATE_PATTERN.match(_strip_eol(line)) is not None


def decode_state(line: str) -> MemoryState | None:
    """Decode an encoded state comment.

    Returns None when the line is not a state comment or its payload is
    malformed.
    """
    match = STATE_PATTERN.match(_strip_eol(line))
    if not match:
        return None

    fields = [f.strip() for f in match.group(1).split(",")]
    if len(fields) != STATE_FIELD_COUNT:
        logger.warning("Ignoring state comment with %d fields: %r", len(fields), line)
        return None

    raw_date, raw_rating, raw_interval, raw_stability, raw_difficulty, raw_reps = fields
    try:
        state = MemoryState(
            next_review=_parse_day(raw_date),
            rating=_parse_rating(raw_rating),
            interval=int(raw_interval),
            stability=float(raw_stability),
            difficulty=float(raw_difficulty),
            reps=int(raw_reps),
        )
    except ValueError:
        logger.warning("Ignoring unparseable state comment: %r", line)
        return None

    if not _is_consistent(state):
        logger.warning("Ignoring inconsistent state comment: %r", line)
        return None
    return state


def encode_state(state: MemoryState) -> str:
    """Serialize ``state`` as a state comment line, without a line ending."""
    fields = [
        state.next_review.date().isoformat(),
        state.rating.value if state.rating else "",
        str(max(1, state.interval)),
        f"{max(state.stability, MIN_ENCODED_STABILITY):.1f}",
        f"{state.difficulty:.1f}",
        str(state.reps),
    ]
    return f"> <!--{','.join(fields)}-->"


def _parse_day(raw: str) -> datetime:
    """Parse an ISO date (or timestamp) to naive UTC midnight."""
    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _parse_rating(raw: str) -> Rating | None:
    token = raw.lower()
    if token in EMPTY_RATING_TOKENS:
        return None
    return Rating(token)


def _is_consistent(state: MemoryState) -> bool:
    if (state.reps == 0) != (state.rating is None):
        return False
    return (
        state.interval >= 1
        and state.stability > 0
        and MIN_DIFFICULTY <= state.difficulty <= MAX_DIFFICULTY
        and state.reps >= 0
    )

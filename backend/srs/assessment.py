"""Decoding of tutor replies into verdicts.

Every tutor turn must decode to a message plus an optional terminal rating.
Replies produced under the JSON schema constraint decode directly; free-text
replies are scanned for ``<message>`` / ``<rating>`` tags as a fallback.
"""

import logging
import re
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from backend.errors import MalformedOutputError
from backend.srs.fsrs import Rating

logger = logging.getLogger(__name__)

TUTOR_RESPONSE_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "message": {
            "type": "string",
            "description": "Question, explanation, or feedback in Markdown. Use LaTeX for math.",
        },
        "rating": {
            "type": ["string", "null"],
            "enum": ["again", "hard", "good", "easy", None],
            "description": "Spaced repetition rating, or null to continue the dialogue.",
        },
    },
    "required": ["message", "rating"],
    "additionalProperties": False,
}

_MESSAGE_TAG = re.compile(r"<message>(.*?)</message>", re.DOTALL | re.IGNORECASE)
_RATING_TAG = re.compile(r"<rating>(.*?)</rating>", re.DOTALL | re.IGNORECASE)
_NULL_RATINGS = {"", "null", "none"}


@dataclass(frozen=True)
class Verdict:
    """A decoded tutor turn."""

    message: str
    rating: Rating | None

    @property
    def is_terminal(self) -> bool:
        return self.rating is not None


class _VerdictPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str
    rating: Rating | None

    @field_validator("rating", mode="before")
    @classmethod
    def _normalize_rating(cls, value: object) -> object:
        if isinstance(value, str):
            token = value.strip().lower()
            return None if token in _NULL_RATINGS else token
        return value


def decode_verdict(raw: str) -> Verdict:
    """Decode a completion reply into a Verdict.

    Raises:
        MalformedOutputError: If the reply has neither a valid JSON verdict
            nor tagged fields.
    """
    text = _strip_code_fence(raw)

    if text.startswith("{"):
        try:
            payload = _VerdictPayload.model_validate_json(text)
        except ValidationError as exc:
            logger.debug("Reply failed verdict validation: %s", exc)
            raise MalformedOutputError(
                f"Tutor reply is not a valid verdict: {exc.error_count()} field error(s)",
                raw=raw,
            ) from exc
        return Verdict(message=payload.message, rating=payload.rating)

    return _decode_tagged(raw)


def _decode_tagged(raw: str) -> Verdict:
    message = _MESSAGE_TAG.search(raw)
    rating = _RATING_TAG.search(raw)
    if message is None or rating is None:
        raise MalformedOutputError("Tutor reply is missing a message or rating", raw=raw)
    try:
        payload = _VerdictPayload(message=message.group(1).strip(), rating=rating.group(1))
    except ValidationError as exc:
        raise MalformedOutputError(f"Unknown rating {rating.group(1).strip()!r}", raw=raw) from exc
    return Verdict(message=payload.message, rating=payload.rating)


def _strip_code_fence(response: str) -> str:
    text = response.strip()
    if text.startswith("```"):
        # Remove opening fence and optional language identifier
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text

"""Transcript entries of a topic review."""

from dataclasses import dataclass
from enum import Enum


class Speaker(Enum):
    STUDENT = "student"
    TUTOR = "tutor"


@dataclass(frozen=True)
class Turn:
    """One dialogue turn.

    ``encoded_text`` is what was actually exchanged with the completion
    service when it differs from the displayed text.
    """

    speaker: Speaker
    text: str
    encoded_text: str | None = None

    @property
    def wire_text(self) -> str:
        return self.encoded_text if self.encoded_text is not None else self.text

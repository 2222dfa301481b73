"""Failures that halt the topic under review.

None of these are fatal to the engine: the session records the error,
disables input for the current topic and waits for an explicit restart.
"""

from __future__ import annotations


class TutorError(Exception):
    """Base class for per-topic review failures."""


class TransportError(TutorError):
    """The completion service could not be reached or answered with an error."""


class MalformedOutputError(TutorError):
    """A completion reply did not decode into a tutor verdict."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class PersistenceNotFoundError(TutorError):
    """The topic marker could not be found when writing the schedule back."""

    def __init__(self, topic: str, source_ref: str) -> None:
        super().__init__(f'Could not find topic "{topic}" in {source_ref}')
        self.topic = topic
        self.source_ref = source_ref

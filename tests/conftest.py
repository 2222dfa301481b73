"""Shared fixtures: a scripted completion service and temporary vaults."""

import json
from datetime import datetime
from pathlib import Path

import pytest

from agents.tutor_agent import TutorAgent
from backend.errors import TransportError
from backend.llm_client import Message
from backend.services import ReviewServices
from backend.srs.documents import VaultDocumentStore
from backend.srs.fsrs import FSRS
from backend.srs.scheduler import Scheduler
from backend.srs.topic_store import TopicStore

NOW = datetime(2026, 10, 19, 9, 30)


def reply(message: str, rating: str | None = None) -> str:
    """A well-formed tutor reply as the completion service returns it."""
    return json.dumps({"message": message, "rating": rating})


class ScriptedCompletionClient:
    """Replays canned replies in order and records every request.

    A reply that is an exception instance is raised instead of returned.
    """

    def __init__(self, replies: list[str | Exception] | None = None) -> None:
        self.replies = list(replies or [])
        self.requests: list[list[Message]] = []
        self.schemas: list[dict | None] = []

    async def complete(self, messages: list[Message], response_schema: dict | None = None) -> str:
        self.requests.append(list(messages))
        self.schemas.append(response_schema)
        if not self.replies:
            raise TransportError("No scripted reply left")
        next_reply = self.replies.pop(0)
        if isinstance(next_reply, Exception):
            raise next_reply
        return next_reply

    def system_prompt(self, index: int = -1) -> str:
        return self.requests[index][0].text


def write_note(vault: Path, ref: str, text: str) -> Path:
    path = vault / ref
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))
    return path


def read_note(vault: Path, ref: str) -> str:
    return (vault / ref).read_bytes().decode("utf-8")


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def llm() -> ScriptedCompletionClient:
    return ScriptedCompletionClient()


@pytest.fixture
def store(vault: Path) -> TopicStore:
    return TopicStore(VaultDocumentStore(vault), clock=lambda: NOW)


@pytest.fixture
def scheduler() -> Scheduler:
    return Scheduler(FSRS(seed=42))


@pytest.fixture
def services(store: TopicStore, scheduler: Scheduler, llm: ScriptedCompletionClient) -> ReviewServices:
    return ReviewServices(store=store, scheduler=scheduler, tutor=TutorAgent(llm=llm))

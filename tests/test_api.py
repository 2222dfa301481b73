"""Tests for the HTTP API."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from backend.main import app
from backend.services import ReviewServices, SessionRegistry
from tests.conftest import ScriptedCompletionClient, read_note, reply, write_note


@pytest_asyncio.fixture
async def client(services: ReviewServices) -> AsyncGenerator[AsyncClient, None]:
    app.state.services = services
    app.state.sessions = SessionRegistry(ttl_seconds=3600)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.state.services = None
    app.state.sessions = None


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestTopics:
    @pytest.mark.asyncio
    async def test_list_topics(self, client: AsyncClient, vault: Path) -> None:
        write_note(vault, "a.md", "> [!topic] Fresh\n")
        write_note(vault, "b.md", "> [!topic] Later\n> <!--2099-01-01,easy,30,25.0,3.0,5-->\n")

        response = await client.get("/api/topics")

        assert response.status_code == 200
        data = {t["name"]: t for t in response.json()}
        assert data["Fresh"]["rating"] is None
        assert data["Fresh"]["is_due"] is True
        assert data["Later"]["rating"] == "easy"
        assert data["Later"]["reps"] == 5
        assert data["Later"]["source_ref"] == "b.md"
        assert data["Later"]["is_due"] is False

    @pytest.mark.asyncio
    async def test_due_topics(self, client: AsyncClient, vault: Path) -> None:
        write_note(vault, "a.md", "> [!topic] Fresh\n")
        write_note(vault, "b.md", "> [!topic] Later\n> <!--2099-01-01,easy,30,25.0,3.0,5-->\n")

        response = await client.get("/api/topics/due")

        assert [t["name"] for t in response.json()] == ["Fresh"]


    @pytest.mark.asyncio
    async def test_unreadable_note_does_not_break_listing(self, client: AsyncClient, vault: Path) -> None:
        write_note(vault, "a.md", "> [!topic] Fresh\n")
        (vault / "legacy.md").write_bytes(b"> [!topic] Caf\xe9\n")

        response = await client.get("/api/topics/due")

        assert response.status_code == 200
        assert [t["name"] for t in response.json()] == ["Fresh"]


class TestSession:
    @pytest.mark.asyncio
    async def test_full_review(
        self, client: AsyncClient, vault: Path, llm: ScriptedCompletionClient
    ) -> None:
        write_note(vault, "a.md", "> [!topic] Fresh\nNotes\n")
        llm.replies = [reply("What is it?"), reply("Solid.", "good")]

        start = await client.post("/api/session/start")
        assert start.status_code == 200
        data = start.json()
        session_id = data["session_id"]
        assert data["phase"] == "topic_active"
        assert data["current_topic"] == "Fresh"
        assert data["input_enabled"] is True
        assert data["transcript"] == [{"speaker": "tutor", "text": "What is it?"}]

        answer = await client.post(f"/api/session/{session_id}/reply", json={"text": "An answer"})
        assert answer.status_code == 200
        data = answer.json()
        assert data["accepted"] is True
        assert data["phase"] == "finished"
        assert data["topics_reviewed"] == 1
        assert data["events"][-1]["kind"] == "finished"
        assert ",good," in read_note(vault, "a.md")

        gone = await client.post(f"/api/session/{session_id}/reply", json={"text": "More"})
        assert gone.status_code == 410

    @pytest.mark.asyncio
    async def test_nothing_due(self, client: AsyncClient) -> None:
        response = await client.post("/api/session/start")
        data = response.json()
        assert data["phase"] == "idle"
        assert data["events"][0]["kind"] == "nothing_to_review"

    @pytest.mark.asyncio
    async def test_error_reported(
        self, client: AsyncClient, vault: Path, llm: ScriptedCompletionClient
    ) -> None:
        write_note(vault, "a.md", "> [!topic] Fresh\n")
        llm.replies = ["not a verdict", reply("Q?")]

        data = (await client.post("/api/session/start")).json()
        assert data["error"]["kind"] == "MalformedOutputError"
        assert data["error"]["raw"] == "not a verdict"
        assert data["input_enabled"] is False

        restarted = await client.post(f"/api/session/{data['session_id']}/restart")
        assert restarted.json()["accepted"] is True
        assert restarted.json()["error"] is None
        assert restarted.json()["input_enabled"] is True

    @pytest.mark.asyncio
    async def test_get_and_end(self, client: AsyncClient, vault: Path, llm: ScriptedCompletionClient) -> None:
        write_note(vault, "a.md", "> [!topic] Fresh\n")
        llm.replies = [reply("Q?")]
        session_id = (await client.post("/api/session/start")).json()["session_id"]

        current = await client.get(f"/api/session/{session_id}")
        assert current.status_code == 200
        assert current.json()["remaining"] == 1

        ended = await client.post(f"/api/session/{session_id}/end")
        assert ended.status_code == 200
        assert (await client.get(f"/api/session/{session_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: AsyncClient) -> None:
        response = await client.post("/api/session/nope/reply", json={"text": "hi"})
        assert response.status_code == 404


class TestSessionRegistry:
    def test_expiry(self, services: ReviewServices) -> None:
        registry = SessionRegistry(ttl_seconds=0)
        session_id, _ = registry.create(services)
        registry._entries[session_id].touched -= 1
        assert registry.get(session_id) is None
        assert len(registry) == 0

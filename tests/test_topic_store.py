"""Tests for topic discovery, due filtering and write-back."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from backend.errors import PersistenceNotFoundError
from backend.srs.documents import VaultDocumentStore
from backend.srs.fsrs import Rating
from backend.srs.scheduler import NEW_DIFFICULTY, NEW_INTERVAL, NEW_STABILITY, MemoryState
from backend.srs.topic_store import TopicStore, parse_topics, rewrite_state
from tests.conftest import NOW, read_note, write_note

REVIEWED = MemoryState(
    next_review=datetime(2026, 10, 25),
    rating=Rating.GOOD,
    interval=4,
    stability=3.7,
    difficulty=5.2,
    reps=2,
)


class TestParseTopics:
    def test_new_topic_defaults(self) -> None:
        topics = parse_topics("a.md", "# Notes\n> [!topic] Recursion\nBody text\n", NOW)
        assert len(topics) == 1
        topic = topics[0]
        assert topic.name == "Recursion"
        assert topic.source_ref == "a.md"
        assert topic.rating is None
        assert topic.interval == NEW_INTERVAL
        assert topic.stability == NEW_STABILITY
        assert topic.difficulty == NEW_DIFFICULTY
        assert topic.reps == 0
        assert topic.next_review == NOW
        assert topic.is_due(NOW)

    def test_state_comment_read(self) -> None:
        content = "> [!topic] Recursion\n> <!--2026-10-25,good,4,3.7,5.2,2-->\n"
        topic = parse_topics("a.md", content, NOW)[0]
        assert topic.memory_state == REVIEWED

    def test_content_is_whole_document(self) -> None:
        content = "Intro\n> [!topic] A\nabout A\n> [!topic] B\nabout B\n"
        topics = parse_topics("a.md", content, NOW)
        assert [t.name for t in topics] == ["A", "B"]
        assert all(t.content == content for t in topics)

    def test_malformed_comment_means_new(self) -> None:
        content = "> [!topic] Recursion\n> <!--garbage-->\n"
        topic = parse_topics("a.md", content, NOW)[0]
        assert topic.is_new
        assert topic.next_review == NOW

    def test_comment_must_be_adjacent(self) -> None:
        content = "> [!topic] Recursion\n\n> <!--2026-10-25,good,4,3.7,5.2,2-->\n"
        assert parse_topics("a.md", content, NOW)[0].is_new


class TestRewriteState:
    def test_inserts_after_marker(self) -> None:
        content = "# T\n> [!topic] A\nbody\n"
        updated = rewrite_state(content, "A", REVIEWED)
        assert updated == "# T\n> [!topic] A\n> <!--2026-10-25,good,4,3.7,5.2,2-->\nbody\n"

    def test_replaces_existing_comment(self) -> None:
        content = "> [!topic] A\n> <!--2026-10-20,hard,2,1.4,6.4,1-->\nbody\n"
        updated = rewrite_state(content, "A", REVIEWED)
        assert updated == "> [!topic] A\n> <!--2026-10-25,good,4,3.7,5.2,2-->\nbody\n"

    def test_replaces_malformed_comment(self) -> None:
        content = "> [!topic] A\n> <!--garbage-->\nbody\n"
        updated = rewrite_state(content, "A", REVIEWED)
        assert "garbage" not in updated
        assert updated.count("<!--") == 1

    def test_marker_on_last_line(self) -> None:
        updated = rewrite_state("intro\n> [!topic] A", "A", REVIEWED)
        assert updated == "intro\n> [!topic] A\n> <!--2026-10-25,good,4,3.7,5.2,2-->"

    def test_crlf_preserved(self) -> None:
        content = "# T\r\n> [!topic] A\r\nbody\r\n"
        updated = rewrite_state(content, "A", REVIEWED)
        assert updated == "# T\r\n> [!topic] A\r\n> <!--2026-10-25,good,4,3.7,5.2,2-->\r\nbody\r\n"

    def test_other_lines_untouched(self) -> None:
        content = "> [!topic] A\nbody\n> [!topic] B\n> <!--2026-10-20,hard,2,1.4,6.4,1-->\n"
        updated = rewrite_state(content, "A", REVIEWED)
        assert updated.endswith("> [!topic] B\n> <!--2026-10-20,hard,2,1.4,6.4,1-->\n")

    def test_duplicate_names_first_wins(self) -> None:
        content = "> [!topic] A\none\n> [!topic] A\ntwo\n"
        updated = rewrite_state(content, "A", REVIEWED)
        lines = updated.split("\n")
        assert lines[1].startswith("> <!--2026-10-25")
        assert lines[4] == "two"

    def test_missing_marker(self) -> None:
        assert rewrite_state("> [!topic] B\n", "A", REVIEWED) is None

    def test_name_match_is_exact(self) -> None:
        assert rewrite_state("> [!topic] Abc\n", "A", REVIEWED) is None


class TestTopicStore:
    def test_topics_across_documents(self, vault: Path, store: TopicStore) -> None:
        write_note(vault, "b.md", "> [!topic] Two\n")
        write_note(vault, "sub/a.md", "> [!topic] One\n")
        write_note(vault, ".obsidian/hidden.md", "> [!topic] Hidden\n")
        write_note(vault, "notes.txt", "> [!topic] Not markdown\n")

        topics = store.get_all_topics()
        assert sorted((t.name, t.source_ref) for t in topics) == [
            ("One", "sub/a.md"),
            ("Two", "b.md"),
        ]

    def test_due_filtering(self, vault: Path, store: TopicStore) -> None:
        due_at = datetime(2026, 10, 25)
        write_note(
            vault,
            "a.md",
            "> [!topic] Reviewed\n> <!--2026-10-25,good,4,3.7,5.2,2-->\n> [!topic] Fresh\n",
        )

        before = store.get_due_topics(due_at - timedelta(seconds=1))
        assert [t.name for t in before] == ["Fresh"]

        at = store.get_due_topics(due_at)
        assert sorted(t.name for t in at) == ["Fresh", "Reviewed"]

        after = store.get_due_topics(due_at + timedelta(seconds=1))
        assert sorted(t.name for t in after) == ["Fresh", "Reviewed"]

    def test_unreadable_document_skipped(self, vault: Path, store: TopicStore) -> None:
        write_note(vault, "a.md", "> [!topic] A\n")
        (vault / "legacy.md").write_bytes(b"> [!topic] Caf\xe9\n")

        topics = store.get_all_topics()

        assert [(t.name, t.source_ref) for t in topics] == [("A", "a.md")]

    def test_new_topic_due_now(self, vault: Path, store: TopicStore) -> None:
        write_note(vault, "a.md", "> [!topic] Fresh\n")
        assert [t.name for t in store.get_due_topics()] == ["Fresh"]

    def test_persist_round_trip(self, vault: Path, store: TopicStore) -> None:
        write_note(vault, "a.md", "# Heading\n> [!topic] Recursion\nA function calling itself.\n")
        topic = store.get_all_topics()[0]

        store.persist(topic, REVIEWED)

        assert read_note(vault, "a.md") == (
            "# Heading\n> [!topic] Recursion\n> <!--2026-10-25,good,4,3.7,5.2,2-->\n"
            "A function calling itself.\n"
        )
        reloaded = store.get_all_topics()[0]
        assert reloaded.memory_state == REVIEWED

    def test_persist_keeps_crlf(self, vault: Path, store: TopicStore) -> None:
        write_note(vault, "a.md", "> [!topic] A\r\nbody\r\n")
        store.persist(store.get_all_topics()[0], REVIEWED)
        assert read_note(vault, "a.md") == "> [!topic] A\r\n> <!--2026-10-25,good,4,3.7,5.2,2-->\r\nbody\r\n"

    def test_persist_after_marker_removed(self, vault: Path, store: TopicStore) -> None:
        write_note(vault, "a.md", "> [!topic] A\nbody\n")
        topic = store.get_all_topics()[0]
        write_note(vault, "a.md", "> [!topic] Renamed\nbody\n")

        with pytest.raises(PersistenceNotFoundError) as exc_info:
            store.persist(topic, REVIEWED)

        assert str(exc_info.value) == 'Could not find topic "A" in a.md'
        assert read_note(vault, "a.md") == "> [!topic] Renamed\nbody\n"

    def test_persist_after_document_deleted(self, vault: Path, store: TopicStore) -> None:
        path = write_note(vault, "a.md", "> [!topic] A\n")
        topic = store.get_all_topics()[0]
        path.unlink()

        with pytest.raises(PersistenceNotFoundError):
            store.persist(topic, REVIEWED)


class TestVaultDocumentStore:
    def test_missing_vault_lists_nothing(self, tmp_path: Path) -> None:
        assert VaultDocumentStore(tmp_path / "nope").list_documents() == []

    def test_write_leaves_no_temp_files(self, vault: Path) -> None:
        write_note(vault, "a.md", "old")
        documents = VaultDocumentStore(vault)
        documents.write("a.md", "new\r\n")
        assert read_note(vault, "a.md") == "new\r\n"
        assert [p.name for p in vault.iterdir()] == ["a.md"]

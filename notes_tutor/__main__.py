"""CLI interface for Notes Tutor.

Usage:
    python -m notes_tutor review            Review every topic due now
    python -m notes_tutor due               List topics due for review
    python -m notes_tutor topics            List every topic in the vault
"""

import argparse
import asyncio
import logging
from pathlib import Path

from backend.config import settings, utcnow
from backend.services import ReviewServices, build_services
from backend.srs.session import EventKind, ReviewSession, SessionEvent, SessionPhase
from backend.srs.topic_store import TopicCard

QUIT_COMMANDS = {"q", "quit", "exit"}
RESTART_COMMAND = "r"


def print_event(event: SessionEvent) -> None:
    """Render one session event in the terminal."""
    if event.kind is EventKind.TOPIC_STARTED:
        print(f"\n  == {event.text} ==\n")
    elif event.kind is EventKind.TUTOR_MESSAGE:
        print(f"{event.text}\n")
    elif event.kind is EventKind.ERROR:
        print(f"  {event.text}")
        print("  Type 'r' to retry this topic or 'q' to quit.\n")
    else:
        print(f"  {event.text}")


def format_topic(topic: TopicCard) -> str:
    last = topic.rating.value if topic.rating else "new"
    return (
        f"  {topic.name:<40} {topic.next_review.date().isoformat()}  "
        f"{last:<6} {topic.interval:>5}d  reps={topic.reps}  ({topic.source_ref})"
    )


def load_services(args: argparse.Namespace) -> ReviewServices:
    config = settings
    if args.vault:
        config = settings.model_copy(update={"vault_path": Path(args.vault)})
    return build_services(config)


async def run_dialogue(session: ReviewSession, read_line=input) -> None:
    """Feed terminal input to ``session`` until it finishes or the user quits."""
    while session.phase is SessionPhase.TOPIC_ACTIVE:
        try:
            line = read_line("> ").strip()
        except EOFError:
            line = "q"
        if line.lower() in QUIT_COMMANDS:
            print("\n  Session ended early.")
            return
        if line.lower() == RESTART_COMMAND:
            await session.restart_topic()
            continue
        if session.is_halted:
            print("  Type 'r' to retry this topic or 'q' to quit.")
            continue
        await session.submit_student_reply(line)


async def cmd_review(args: argparse.Namespace) -> None:
    """Run an interactive review session."""
    services = load_services(args)
    due = services.store.get_due_topics()

    print("\n  Review Session")
    print(f"  {len(due)} topics due")
    print("  Type 'r' to restart the current topic, 'q' to quit")

    session = services.new_session(listener=print_event)
    await session.load_queue(due)
    await run_dialogue(session)

    stats = session.stats
    if stats.topics_reviewed:
        ratings = "  ".join(f"{name}={count}" for name, count in sorted(stats.ratings.items()))
        print(f"\n  Reviewed: {stats.topics_reviewed}  {ratings}")

    llm = services.tutor.llm
    if hasattr(llm, "get_cost_estimate"):
        cost = llm.get_cost_estimate()
        print(
            f"  Tokens: {cost['input_tokens']} in / {cost['output_tokens']} out"
            f"  (~${cost['estimated_cost_usd']:.4f})\n"
        )
    if hasattr(llm, "aclose"):
        await llm.aclose()


async def cmd_due(args: argparse.Namespace) -> None:
    """List topics due for review."""
    services = load_services(args)
    due = services.store.get_due_topics()
    if not due:
        print("  No topics due for review.")
        return
    print(f"  {len(due)} topics due\n")
    for topic in due:
        print(format_topic(topic))


async def cmd_topics(args: argparse.Namespace) -> None:
    """List every topic in the vault."""
    services = load_services(args)
    topics = services.store.get_all_topics()
    now = utcnow()
    due = sum(1 for t in topics if t.is_due(now))
    new = sum(1 for t in topics if t.is_new)
    print(f"  {len(topics)} topics, {due} due, {new} new\n")
    for topic in topics:
        print(format_topic(topic))


def main() -> None:
    """Entry point for the Notes Tutor CLI application."""
    parser = argparse.ArgumentParser(
        prog="notes_tutor",
        description="Spaced repetition tutoring over your Markdown notes",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--vault", default=None, help="Vault directory (overrides settings)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("review", help="Review every topic due now")
    subparsers.add_parser("due", help="List topics due for review")
    subparsers.add_parser("topics", help="List every topic in the vault")

    args = parser.parse_args()

    if args.verbose or settings.debug:
        logging.basicConfig(level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return

    cmd_map = {
        "review": cmd_review,
        "due": cmd_due,
        "topics": cmd_topics,
    }

    asyncio.run(cmd_map[args.command](args))


if __name__ == "__main__":
    main()

"""Tutor Agent: runs the question-and-grade dialogue for one topic.

Responsibilities:
- Build the system instruction from the topic's notes and last rating
- Calibrate question difficulty to the previous outcome
- Send the transcript to the completion service and decode the verdict
"""

from __future__ import annotations

from agents.base import BaseAgent
from backend.errors import TransportError
from backend.llm_client import CompletionClient, Message
from backend.srs.assessment import TUTOR_RESPONSE_SCHEMA, Verdict, decode_verdict
from backend.srs.fsrs import Rating
from backend.srs.topic_store import TopicCard
from backend.srs.transcript import Speaker, Turn

CALIBRATION = {
    None: (
        "This topic is new. Ask a question that gauges their level: something "
        "a person who truly understands the idea answers easily and a person "
        "who memorised a definition cannot."
    ),
    Rating.AGAIN: (
        "They struggled last time. Ask an easier question that tests a "
        "prerequisite or a core definition."
    ),
    Rating.HARD: (
        "They found it hard last time. Ask an easier question about the "
        "fundamentals before anything else."
    ),
    Rating.GOOD: (
        "They did well last time. Ask a harder question: an application, an "
        "edge case or a connection to a related idea."
    ),
    Rating.EASY: (
        "It was easy for them last time. Ask a hard question that requires "
        "synthesis or handling an unusual case."
    ),
}

SYSTEM_TEMPLATE = """\
You are running a spaced repetition review. Keep it short: ask one question, \
read their answer, then give one complete assessment.

## Topic

Topic: {name}
Last rating: {last_rating}

Their notes on it:
{content}

Test whether they understand the concept, not whether they remember what \
they wrote. Never quote the notes or ask them to recall specific points from them.

## Question

{calibration}

Ask exactly one self-contained question about "{name}". Not a multi-part \
question, not "part A/B", not "first X, then Y".

## Assessment

Once they answer, your very next reply is the final assessment. Take their \
answer as final and never ask a follow-up. In the assessment, say what is \
right, correct what is wrong, and give them the mental model they are \
missing. A vague answer or an unexplained buzzword does not earn a good rating.

## Ratings

again: fundamental gaps, could not articulate the basics
hard: partial understanding, key connections missing
good: solid grasp with minor gaps, reasoning explained
easy: deep understanding, handled edge cases, made connections on their own

Rate only what their answer demonstrated.

## Response format

Reply with a JSON object with two fields:
- "message": your question or assessment, in Markdown (LaTeX for math)
- "rating": null while you are asking the question; one of "again", "hard", \
"good", "easy" together with the assessment

Write like a knowledgeable peer. Be direct and concise, and skip preambles \
and summaries."""

STUDENT_ENVELOPE = "<student_answer>\n{text}\n</student_answer>"


class TutorAgent(BaseAgent):
    """Asks one calibrated question per topic and grades the answer."""

    def __init__(
        self,
        llm: CompletionClient | None = None,
        use_schema: bool = True,
        wrap_student_replies: bool = False,
    ) -> None:
        super().__init__(llm)
        self.use_schema = use_schema
        self.wrap_student_replies = wrap_student_replies

    @property
    def name(self) -> str:
        """Return the agent identifier."""
        return "tutor"

    @property
    def description(self) -> str:
        """Return what this agent does."""
        return "Asks calibrated review questions and rates the answers"

    def system_instruction(self, topic: TopicCard) -> str:
        return SYSTEM_TEMPLATE.format(
            name=topic.name,
            last_rating=topic.rating.value if topic.rating else "new",
            content=topic.content,
            calibration=CALIBRATION[topic.rating],
        )

    def student_turn(self, text: str) -> Turn:
        """Build the transcript entry for a student answer."""
        encoded = STUDENT_ENVELOPE.format(text=text) if self.wrap_student_replies else None
        return Turn(speaker=Speaker.STUDENT, text=text, encoded_text=encoded)

    def build_messages(self, topic: TopicCard, transcript: list[Turn]) -> list[Message]:
        messages = [Message(role="system", text=self.system_instruction(topic))]
        for turn in transcript:
            role = "assistant" if turn.speaker is Speaker.TUTOR else "user"
            messages.append(Message(role=role, text=turn.wire_text))
        return messages

    async def take_turn(self, topic: TopicCard, transcript: list[Turn]) -> tuple[Verdict, Turn]:
        """Request the next tutor turn.

        Returns the decoded verdict and the transcript entry to append.

        Raises:
            TransportError: If the completion service fails.
            MalformedOutputError: If the reply does not decode to a verdict.
        """
        if self.llm is None:
            raise TransportError("No completion service configured")

        messages = self.build_messages(topic, transcript)
        schema = TUTOR_RESPONSE_SCHEMA if self.use_schema else None
        raw = await self.llm.complete(messages, schema)
        self.logger.debug("Tutor reply for %r: %s", topic.name, raw[:500])

        verdict = decode_verdict(raw)
        encoded = raw if raw != verdict.message else None
        return verdict, Turn(speaker=Speaker.TUTOR, text=verdict.message, encoded_text=encoded)

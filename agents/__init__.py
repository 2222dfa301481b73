"""Agents driving the conversational review.

- TutorAgent: asks one calibrated question per topic and grades the answer
"""

from agents.base import BaseAgent
from agents.tutor_agent import TutorAgent

__all__ = [
    "BaseAgent",
    "TutorAgent",
]

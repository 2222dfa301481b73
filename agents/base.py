"""Base agent protocol.

Defines the common interface agents implement: a name, a description and
access to a completion service.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from backend.llm_client import CompletionClient

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """Abstract base class for all agents.

    Each agent talks to the completion service through ``self.llm`` and logs
    under ``agents.<name>``.
    """

    def __init__(self, llm: CompletionClient | None = None) -> None:
        """Initialize the agent with an optional completion client."""
        self.llm = llm
        self.logger = logging.getLogger(f"agents.{self.name}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique agent identifier."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """What this agent does, for logging and debugging."""
        ...

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from sparkagent.errors import SparkAgentError
from sparkagent.models import Source

ChatTurn = dict[str, str]


class BackendExecutionError(SparkAgentError):
    """Raised when a backend request fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.retriable = retriable


class BackendTimeoutError(BackendExecutionError):
    """Raised when backend execution exceeds configured timeout."""


class BackendProcessError(BackendExecutionError):
    """Raised when the backend client cannot be created or reached."""


@dataclass(slots=True)
class BackendReply:
    text: str
    sources: list[Source] = field(default_factory=list)


class AgentBackend(ABC):
    @abstractmethod
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        history: list[ChatTurn] | None = None,
        web_search: bool = False,
    ) -> BackendReply:
        """Run one generation, optionally grounded with web search."""

    @abstractmethod
    async def execute_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
    ) -> Any:
        """Run one generation constrained to ``schema`` and return the decoded JSON."""

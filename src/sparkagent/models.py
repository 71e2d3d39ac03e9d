from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urlparse

TaskStatus = Literal["pending", "running", "completed", "failed"]
TaskPriority = Literal["normal", "high"]
MessageRole = Literal["user", "model"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


def _hostname(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host.removeprefix("www.")


@dataclass(slots=True)
class Source:
    title: str
    url: str
    snippet: str = ""
    source: str = ""

    def __post_init__(self) -> None:
        if not self.source:
            self.source = _hostname(self.url)

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "source": self.source,
        }


def dedupe_sources(sources: list[Source]) -> list[Source]:
    """Drop sources whose url was already seen, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[Source] = []
    for item in sources:
        if item.url in seen:
            continue
        seen.add(item.url)
        unique.append(item)
    return unique


@dataclass(slots=True)
class ResearchResult:
    text: str
    sources: list[Source] = field(default_factory=list)
    # Set when ``text`` is a placeholder substituted for a failed call.
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text": self.text,
            "sources": [item.to_dict() for item in self.sources],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class AgentTask:
    id: str
    title: str
    agent_role: str
    goal: str
    description: str = ""
    status: TaskStatus = "pending"
    priority: TaskPriority = "normal"
    dependencies: list[str] = field(default_factory=list)
    result: ResearchResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "agent_role": self.agent_role,
            "description": self.description,
            "goal": self.goal,
            "status": self.status,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
        }
        if self.result is not None:
            payload["result"] = self.result.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AgentTask:
        task_id = str(payload.get("id") or "").strip()
        if not task_id:
            raise ValueError("Task payload is missing an id.")
        priority = payload.get("priority", "normal")
        dependencies = payload.get("dependencies") or []
        if isinstance(dependencies, str):
            dependencies = [dependencies]
        elif not isinstance(dependencies, (list, tuple)):
            raise ValueError(f"Task {task_id} has dependencies that are not a list of ids.")
        return cls(
            id=task_id,
            title=str(payload.get("title") or task_id),
            agent_role=str(payload.get("agent_role") or payload.get("agentRole") or "Agent"),
            goal=str(payload.get("goal") or ""),
            description=str(payload.get("description") or ""),
            priority="high" if priority == "high" else "normal",
            dependencies=[str(item) for item in dependencies],
        )


@dataclass(slots=True)
class Message:
    role: MessageRole
    content: str
    sources: list[Source] = field(default_factory=list)
    agent_tasks: list[AgentTask] = field(default_factory=list)

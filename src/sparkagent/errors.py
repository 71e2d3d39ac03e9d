from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sparkagent.graph import TaskGraph
    from sparkagent.models import ResearchResult


class SparkAgentError(RuntimeError):
    """Base class for fatal errors surfaced to the caller of a research run."""


class SchedulingDeadlockError(SparkAgentError):
    """Raised when pending tasks remain that can never become eligible."""

    def __init__(
        self,
        unresolved: list[str],
        *,
        graph: TaskGraph | None = None,
        partial_results: dict[str, ResearchResult] | None = None,
    ) -> None:
        super().__init__(
            "Scheduling deadlock: no eligible task and nothing running. "
            "Unschedulable tasks: " + ", ".join(unresolved)
        )
        self.unresolved = list(unresolved)
        self.graph = graph
        self.partial_results = dict(partial_results or {})


class SynthesisError(SparkAgentError):
    """Raised when the final report cannot be produced."""

    def __init__(
        self,
        message: str = "Failed to synthesize final report.",
        *,
        partial_results: dict[str, ResearchResult] | None = None,
    ) -> None:
        super().__init__(message)
        self.partial_results = dict(partial_results or {})

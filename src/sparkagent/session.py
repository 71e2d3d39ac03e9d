from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sparkagent.errors import SchedulingDeadlockError, SparkAgentError, SynthesisError
from sparkagent.graph import TaskGraph
from sparkagent.models import Message, ResearchResult
from sparkagent.scheduler import DEFAULT_MAX_CONCURRENCY, ScheduleReport, TaskScheduler
from sparkagent.specialists.planner import PlannerAgent
from sparkagent.specialists.researcher import ResearchAgent
from sparkagent.specialists.synthesizer import AgentFinding, SynthesizerAgent

logger = logging.getLogger(__name__)

NO_RESULT_TEXT = "Failed"

SessionEventHook = Callable[[dict[str, Any]], None]
ReviewHook = Callable[[TaskGraph], None]


class AgentState(StrEnum):
    IDLE = "idle"
    PLANNING = "planning"
    REVIEWING = "reviewing"
    SEARCHING = "searching"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    ERROR = "error"


BUSY_STATES = {AgentState.PLANNING, AgentState.SEARCHING, AgentState.SYNTHESIZING}


@dataclass(slots=True)
class RunOutcome:
    query: str
    answer: ResearchResult
    graph: TaskGraph
    report: ScheduleReport


def prior_turns_for(query: str, history: list[Message]) -> list[Message]:
    """History handed to the synthesizer, without a trailing copy of the current query."""
    turns = list(history)
    if turns and turns[-1].role == "user" and turns[-1].content == query:
        turns = turns[:-1]
    return turns


class ResearchSession:
    """One conversation: plan, schedule and synthesize each query in turn.

    History lives in memory only. A query's user and model messages are
    committed together after a successful synthesis, so a failed run leaves
    the history as it was.
    """

    def __init__(
        self,
        planner: PlannerAgent,
        researcher: ResearchAgent,
        synthesizer: SynthesizerAgent,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        event_hook: SessionEventHook | None = None,
    ) -> None:
        self.planner = planner
        self.researcher = researcher
        self.synthesizer = synthesizer
        self.max_concurrency = max_concurrency
        self.event_hook = event_hook
        self.history: list[Message] = []
        self.state = AgentState.IDLE
        self.graph: TaskGraph | None = None

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def _set_state(self, state: AgentState) -> None:
        self.state = state
        self._emit({"event": "phase", "state": state.value})

    def _ensure_idle(self) -> None:
        if self.state in BUSY_STATES:
            raise SparkAgentError("A research run is already in progress.")

    def toggle_priority(self, task_id: str) -> bool:
        if self.graph is None:
            return False
        return self.graph.toggle_priority(task_id)

    async def plan(self, query: str) -> TaskGraph:
        self._ensure_idle()
        self._set_state(AgentState.PLANNING)
        try:
            graph = await self.planner.plan(query, self.history)
        except Exception:
            self._set_state(AgentState.ERROR)
            raise
        self.graph = graph
        self._set_state(AgentState.REVIEWING)
        return graph

    async def execute(self, query: str, graph: TaskGraph) -> RunOutcome:
        """Run an already planned (and possibly user-edited) graph to a final answer."""
        self._ensure_idle()
        self.graph = graph
        self._set_state(AgentState.SEARCHING)
        scheduler = TaskScheduler(
            self.researcher,
            max_concurrency=self.max_concurrency,
            event_hook=self.event_hook,
        )
        try:
            report = await scheduler.run(graph)
            if report.deadlocked:
                raise SchedulingDeadlockError(
                    report.unschedulable,
                    graph=graph,
                    partial_results=report.results,
                )

            findings: list[AgentFinding] = [
                (task, report.results.get(task.id) or ResearchResult(text=NO_RESULT_TEXT))
                for task in graph
            ]
            self._set_state(AgentState.SYNTHESIZING)
            try:
                answer = await self.synthesizer.combine(
                    query,
                    findings,
                    prior_turns_for(query, self.history),
                )
            except SynthesisError as exc:
                exc.partial_results = dict(report.results)
                raise
        except Exception as exc:
            logger.error("Research run failed: %s", exc)
            self._set_state(AgentState.ERROR)
            raise

        self.history.append(Message(role="user", content=query))
        self.history.append(
            Message(
                role="model",
                content=answer.text,
                sources=list(answer.sources),
                agent_tasks=graph.tasks,
            )
        )
        self._set_state(AgentState.COMPLETE)
        return RunOutcome(query=query, answer=answer, graph=graph, report=report)

    async def ask(self, query: str, *, review: ReviewHook | None = None) -> RunOutcome:
        """Plan and execute ``query``; ``review`` may edit the graph before it runs."""
        graph = await self.plan(query)
        if review is not None:
            review(graph)
        return await self.execute(query, graph)

    def reset(self) -> None:
        self._ensure_idle()
        self.history.clear()
        self.graph = None
        self._set_state(AgentState.IDLE)

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from sparkagent.context import build_context
from sparkagent.graph import TaskGraph
from sparkagent.models import AgentTask, ResearchResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 2
EXECUTOR_FAILURE_TEXT = "Failed to retrieve information for this task."

SchedulerEventHook = Callable[[dict[str, Any]], None]


class TaskExecutor(Protocol):
    async def run(self, task: AgentTask, context: str) -> ResearchResult: ...


@dataclass(slots=True)
class ScheduleReport:
    results: dict[str, ResearchResult] = field(default_factory=dict)
    completion_order: list[str] = field(default_factory=list)
    unschedulable: list[str] = field(default_factory=list)
    max_running: int = 0

    @property
    def deadlocked(self) -> bool:
        return bool(self.unschedulable)


class TaskScheduler:
    """Drives a task graph to terminal statuses under a concurrency ceiling.

    Only the loop in :meth:`run` mutates task status and results. Executions
    run as asyncio tasks and post their result on a completion queue, which the
    loop drains one event at a time, so completions are applied in the order
    they finish and every readiness check sees a consistent graph.
    """

    def __init__(
        self,
        executor: TaskExecutor,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        event_hook: SchedulerEventHook | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.executor = executor
        self.max_concurrency = max_concurrency
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    @staticmethod
    def select_next(ready: list[AgentTask]) -> AgentTask:
        """First high-priority task in graph order, else the first ready task."""
        for task in ready:
            if task.priority == "high":
                return task
        return ready[0]

    async def _execute(
        self,
        task: AgentTask,
        context: str,
        completions: asyncio.Queue[tuple[str, ResearchResult]],
    ) -> None:
        try:
            result = await self.executor.run(task, context)
        except Exception as exc:
            logger.exception("Executor raised for task %s", task.id)
            result = ResearchResult(text=EXECUTOR_FAILURE_TEXT, error=str(exc) or type(exc).__name__)
        completions.put_nowait((task.id, result))

    def _dispatch(
        self,
        graph: TaskGraph,
        task: AgentTask,
        report: ScheduleReport,
        completions: asyncio.Queue[tuple[str, ResearchResult]],
        in_flight: set[asyncio.Task[None]],
        running: int,
    ) -> None:
        task.status = "running"
        context = build_context(graph, report.results, report.completion_order)
        logger.debug("Starting task %s (%s, priority=%s)", task.id, task.agent_role, task.priority)
        self._emit(
            {
                "event": "task_started",
                "task_id": task.id,
                "title": task.title,
                "priority": task.priority,
                "running": running,
                "context_tasks": len(report.completion_order),
            }
        )
        handle = asyncio.create_task(
            self._execute(task, context, completions),
            name=f"sparkagent-task-{task.id}",
        )
        in_flight.add(handle)
        handle.add_done_callback(in_flight.discard)

    def _complete(
        self,
        graph: TaskGraph,
        task_id: str,
        result: ResearchResult,
        report: ScheduleReport,
        running: int,
    ) -> None:
        task = graph[task_id]
        task.result = result
        task.status = "completed"
        report.results[task_id] = result
        report.completion_order.append(task_id)
        if result.error:
            logger.warning("Task %s completed with a placeholder result: %s", task_id, result.error)
        else:
            logger.debug("Task %s completed", task_id)
        self._emit(
            {
                "event": "task_completed",
                "task_id": task_id,
                "title": task.title,
                "running": running,
                "error": result.error,
            }
        )

    def _fail_unschedulable(self, graph: TaskGraph, report: ScheduleReport) -> None:
        for task in graph.with_status("pending"):
            task.status = "failed"
            report.unschedulable.append(task.id)
        logger.warning(
            "Scheduling deadlock: pending tasks can never become eligible: %s",
            ", ".join(report.unschedulable),
        )
        self._emit({"event": "schedule_deadlock", "unresolved": list(report.unschedulable)})

    async def run(self, graph: TaskGraph) -> ScheduleReport:
        report = ScheduleReport()
        completions: asyncio.Queue[tuple[str, ResearchResult]] = asyncio.Queue()
        in_flight: set[asyncio.Task[None]] = set()
        running = 0

        try:
            while True:
                if running == 0 and not graph.with_status("pending"):
                    break

                ready = graph.ready_tasks()
                if running < self.max_concurrency and ready:
                    task = self.select_next(ready)
                    running += 1
                    report.max_running = max(report.max_running, running)
                    self._dispatch(graph, task, report, completions, in_flight, running)
                    continue

                if running == 0:
                    self._fail_unschedulable(graph, report)
                    break

                task_id, result = await completions.get()
                running -= 1
                self._complete(graph, task_id, result, report, running)
        finally:
            for handle in list(in_flight):
                if not handle.done():
                    handle.cancel()

        self._emit(
            {
                "event": "schedule_finished",
                "completed": len(report.completion_order),
                "unschedulable": list(report.unschedulable),
            }
        )
        return report

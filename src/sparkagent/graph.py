from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from sparkagent.models import AgentTask, TaskPriority

EDITABLE_FIELDS = {"title", "agent_role", "description", "goal", "dependencies", "priority"}


class TaskGraph:
    """Tasks of one research run keyed by id, iterated in insertion order.

    Dependency ids that do not name a task in the graph are kept as-is; they
    can never be satisfied, which the scheduler reports as a deadlock.
    """

    def __init__(self, tasks: Iterable[AgentTask] = ()) -> None:
        self._tasks: dict[str, AgentTask] = {}
        for task in tasks:
            self.add_task(task)

    def __iter__(self) -> Iterator[AgentTask]:
        return iter(list(self._tasks.values()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str) -> AgentTask | None:
        return self._tasks.get(task_id)

    def __getitem__(self, task_id: str) -> AgentTask:
        return self._tasks[task_id]

    @property
    def tasks(self) -> list[AgentTask]:
        return list(self._tasks.values())

    def with_status(self, status: str) -> list[AgentTask]:
        return [task for task in self._tasks.values() if task.status == status]

    def ready_tasks(self) -> list[AgentTask]:
        """Pending tasks whose dependencies are all completed, in graph order."""
        ready: list[AgentTask] = []
        for task in self._tasks.values():
            if task.status != "pending":
                continue
            if all(
                dep_id in self._tasks and self._tasks[dep_id].status == "completed"
                for dep_id in task.dependencies
            ):
                ready.append(task)
        return ready

    def is_resolved(self) -> bool:
        return all(task.is_terminal for task in self._tasks.values())

    # Pre-run review edits. The scheduler never calls these.

    def add_task(self, task: AgentTask) -> None:
        if task.id in self._tasks:
            raise ValueError(f"Duplicate task id: {task.id}")
        self._tasks[task.id] = task

    def remove_task(self, task_id: str) -> AgentTask:
        task = self._tasks.pop(task_id)
        for other in self._tasks.values():
            if task_id in other.dependencies:
                other.dependencies = [dep for dep in other.dependencies if dep != task_id]
        return task

    def update_task(self, task_id: str, **updates: Any) -> AgentTask:
        task = self._tasks[task_id]
        unknown = sorted(set(updates) - EDITABLE_FIELDS)
        if unknown:
            raise ValueError("Unsupported task fields: " + ", ".join(unknown))
        for name, value in updates.items():
            if name == "priority":
                self.set_priority(task_id, "high" if value == "high" else "normal")
                continue
            if name == "dependencies":
                value = [str(item) for item in value]
            setattr(task, name, value)
        return task

    def set_priority(self, task_id: str, priority: TaskPriority) -> bool:
        """Change a pending task's priority. Returns False when the task is not pending."""
        task = self._tasks.get(task_id)
        if task is None or task.status != "pending":
            return False
        task.priority = priority
        return True

    def toggle_priority(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        return self.set_priority(task_id, "normal" if task.priority == "high" else "high")

    def to_list(self) -> list[dict[str, Any]]:
        return [task.to_dict() for task in self._tasks.values()]

    @classmethod
    def from_list(cls, payload: list[dict[str, Any]]) -> TaskGraph:
        return cls(AgentTask.from_dict(item) for item in payload if isinstance(item, dict))

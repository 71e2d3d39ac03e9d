from __future__ import annotations

import logging
from typing import Any

from sparkagent.graph import TaskGraph
from sparkagent.models import AgentTask, Message
from sparkagent.specialists.base import SpecialistAgent

logger = logging.getLogger(__name__)

FALLBACK_TASK_ID = "task-fallback"
NO_HISTORY = "No previous conversation."

PLAN_SCHEMA: dict[str, Any] = {
    "title": "research_plan",
    "type": "object",
    "properties": {
        "tasks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Unique ID (e.g., 'task-1')"},
                    "agent_role": {
                        "type": "string",
                        "description": "The persona of the agent (e.g., 'Historian').",
                    },
                    "description": {
                        "type": "string",
                        "description": "The specific expertise or capabilities of this agent.",
                    },
                    "title": {"type": "string", "description": "Short title of the task"},
                    "goal": {
                        "type": "string",
                        "description": "Self-contained instruction on what this agent must find.",
                    },
                    "dependencies": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Task IDs that must complete before this task can start.",
                    },
                },
                "required": ["id", "agent_role", "title", "goal"],
            },
        }
    },
    "required": ["tasks"],
}


def format_history(history: list[Message]) -> str:
    if not history:
        return NO_HISTORY
    return "\n".join(f"{message.role.upper()}: {message.content}" for message in history)


def fallback_task(query: str) -> AgentTask:
    return AgentTask(
        id=FALLBACK_TASK_ID,
        title="General Research",
        agent_role="Research Assistant",
        description="General purpose researcher",
        goal=f"Find information about: {query}",
    )


class PlannerAgent(SpecialistAgent):
    role = "planner"
    prompt_file = "planner.md"
    fallback_prompt = """
You are a Chief AI Orchestrator.
Split the user's query into a small team of specialized research agents,
each with a self-contained goal, and declare which tasks depend on others.
""".strip()

    def __init__(self, *args: Any, max_tasks: int = 4, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.max_tasks = max(1, max_tasks)

    def build_prompt(self, query: str, history: list[Message]) -> str:
        return (
            "Conversation History:\n"
            "---\n"
            f"{format_history(history)}\n"
            "---\n\n"
            f'Current User Query: "{query}"\n\n'
            f"Create a team of 1 to {self.max_tasks} specialized AI agents to research "
            "different aspects of this query. Use the conversation history to resolve "
            "ambiguous references. If a task needs another task's findings first, list "
            'that task\'s id in its dependencies. IDs should be simple strings like "task-1".'
        )

    @staticmethod
    def parse_plan(payload: Any) -> TaskGraph:
        items = payload.get("tasks") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise ValueError("Plan payload does not contain a task list.")
        graph = TaskGraph()
        for item in items:
            if not isinstance(item, dict):
                continue
            task = AgentTask.from_dict(item)
            task.priority = "normal"
            if task.id in graph:
                logger.warning("Planner returned duplicate task id %s; keeping the first", task.id)
                continue
            graph.add_task(task)
        return graph

    async def plan(self, query: str, history: list[Message] | None = None) -> TaskGraph:
        try:
            payload = await self.backend.execute_json(
                self.system_prompt,
                self.build_prompt(query, list(history or [])),
                PLAN_SCHEMA,
                model=self.model,
            )
            graph = self.parse_plan(payload)
        except Exception:
            logger.exception("Planning failed; using a single fallback task")
            return TaskGraph([fallback_task(query)])
        if not len(graph):
            logger.warning("Planner returned no tasks; using a single fallback task")
            return TaskGraph([fallback_task(query)])
        logger.info("Planned %d task(s): %s", len(graph), ", ".join(task.id for task in graph))
        return graph

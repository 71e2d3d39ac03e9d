from __future__ import annotations

from collections.abc import Mapping, Sequence

from sparkagent.graph import TaskGraph
from sparkagent.models import ResearchResult

BLOCK_SEPARATOR = "\n\n---\n\n"
MISSING_FINDINGS = "No info"


def format_context_block(role: str, title: str, goal: str, findings: str) -> str:
    return (
        f"[Context from Agent: {role} (Task: {title})]:\n"
        f"Goal: {goal}\n"
        f"Findings: {findings}"
    )


def build_context(
    graph: TaskGraph,
    results: Mapping[str, ResearchResult],
    completion_order: Sequence[str],
) -> str:
    """Shared findings handed to the next dispatched task.

    Covers every task completed so far, not only declared dependencies, in the
    order the tasks completed.
    """
    blocks: list[str] = []
    for task_id in completion_order:
        task = graph.get(task_id)
        if task is None or task.status != "completed":
            continue
        result = results.get(task_id)
        findings = result.text if result is not None and result.text else MISSING_FINDINGS
        blocks.append(format_context_block(task.agent_role, task.title, task.goal, findings))
    return BLOCK_SEPARATOR.join(blocks)

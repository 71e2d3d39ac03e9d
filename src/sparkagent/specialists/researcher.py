from __future__ import annotations

import logging

from sparkagent.models import AgentTask, ResearchResult, dedupe_sources
from sparkagent.specialists.base import SpecialistAgent

logger = logging.getLogger(__name__)

EMPTY_RESULT_TEXT = "No information found."
FAILED_RESULT_TEXT = "Failed to retrieve information for this task."


class ResearchAgent(SpecialistAgent):
    """Runs a single planned task. Never raises; failures become placeholder results."""

    role = "researcher"
    prompt_file = "researcher.md"
    fallback_prompt = """
You are part of a collaborative research team.
Use web search to find high-quality, factual information. Do not hallucinate.
Summarize your findings clearly for the Chief Orchestrator using structured formatting.
""".strip()

    def build_system_prompt(self, task: AgentTask, context: str) -> str:
        lines = [f"You are a specialized AI Agent with the role: {task.agent_role}."]
        if task.description:
            lines.append(f"Your Expertise/Capabilities: {task.description}")
        lines.append(f"Your specific Goal: {task.goal}")
        lines.append("")
        lines.append(self.system_prompt)
        if context:
            lines.extend(
                [
                    "",
                    "IMPORTANT - TEAM CONTEXT (Findings from other agents):",
                    "Build on this context, avoid redundant research, and cite team members "
                    "when their findings answer part of your goal.",
                    "",
                    "--- START OF TEAM CONTEXT ---",
                    context,
                    "--- END OF TEAM CONTEXT ---",
                ]
            )
        return "\n".join(lines)

    async def run(self, task: AgentTask, context: str) -> ResearchResult:
        try:
            reply = await self.backend.execute(
                self.build_system_prompt(task, context),
                f"Perform your assigned task: {task.goal}",
                model=self.model,
                web_search=True,
            )
        except Exception as exc:
            logger.error("Task execution failed (%s): %s", task.title, exc)
            return ResearchResult(text=FAILED_RESULT_TEXT, error=str(exc) or type(exc).__name__)
        return ResearchResult(
            text=reply.text or EMPTY_RESULT_TEXT,
            sources=dedupe_sources(reply.sources),
        )

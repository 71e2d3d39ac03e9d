from __future__ import annotations

import logging

from sparkagent.backends.base import ChatTurn
from sparkagent.errors import SynthesisError
from sparkagent.models import AgentTask, Message, ResearchResult, Source, dedupe_sources
from sparkagent.specialists.base import SpecialistAgent

logger = logging.getLogger(__name__)

EMPTY_SYNTHESIS_TEXT = "Could not synthesize response."

AgentFinding = tuple[AgentTask, ResearchResult]


def format_findings(findings: list[AgentFinding]) -> str:
    return "\n---\n".join(
        f"## Input from {task.agent_role} (Task: {task.title})\n\n{result.text}\n"
        for task, result in findings
    )


def collect_sources(findings: list[AgentFinding]) -> list[Source]:
    sources: list[Source] = []
    for _, result in findings:
        sources.extend(result.sources)
    return dedupe_sources(sources)


class SynthesizerAgent(SpecialistAgent):
    role = "synthesizer"
    prompt_file = "synthesizer.md"
    fallback_prompt = """
You are SparkAgent, the Chief AI Synthesizer.
Merge the reports from your agent team into one organized Markdown answer:
a short executive summary, clear sections, and a brief conclusion.
""".strip()

    async def combine(
        self,
        query: str,
        findings: list[AgentFinding],
        prior_turns: list[Message] | None = None,
    ) -> ResearchResult:
        history: list[ChatTurn] = [
            {"role": message.role, "content": message.content} for message in prior_turns or []
        ]
        prompt = (
            f"Here are the findings from your agent team:\n\n{format_findings(findings)}\n\n"
            f'Please provide the final arranged answer to my query: "{query}"'
        )
        try:
            reply = await self.backend.execute(
                f'{self.system_prompt}\n\nUser Query: "{query}"',
                prompt,
                model=self.model,
                history=history,
            )
        except Exception as exc:
            logger.error("Synthesis failed: %s", exc)
            raise SynthesisError() from exc
        return ResearchResult(
            text=reply.text or EMPTY_SYNTHESIS_TEXT,
            sources=collect_sources(findings),
        )

import asyncio
from typing import Any

import pytest

from sparkagent.backends.base import AgentBackend, BackendExecutionError, BackendReply
from sparkagent.errors import SchedulingDeadlockError, SparkAgentError, SynthesisError
from sparkagent.graph import TaskGraph
from sparkagent.models import AgentTask, Message
from sparkagent.session import AgentState, ResearchSession, prior_turns_for
from sparkagent.specialists import PlannerAgent, ResearchAgent, SynthesizerAgent

PLAN = {
    "tasks": [
        {"id": "task-1", "agent_role": "Financial Analyst", "title": "Numbers", "goal": "price"},
        {"id": "task-2", "agent_role": "Market Researcher", "title": "News", "goal": "sentiment"},
        {
            "id": "task-3",
            "agent_role": "Strategist",
            "title": "Verdict",
            "goal": "decide",
            "dependencies": ["task-1", "task-2"],
        },
    ]
}


class ScriptedBackend(AgentBackend):
    def __init__(self, *, plan: Any = None, fail_synthesis: bool = False) -> None:
        self.plan = PLAN if plan is None else plan
        self.fail_synthesis = fail_synthesis
        self.synthesis_calls: list[dict[str, Any]] = []
        self.research_prompts: list[str] = []

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        history: list[dict[str, str]] | None = None,
        web_search: bool = False,
    ) -> BackendReply:
        _ = model
        if web_search:
            self.research_prompts.append(user_prompt)
            await asyncio.sleep(0)
            return BackendReply(text=f"result for {user_prompt}")
        if self.fail_synthesis:
            raise BackendExecutionError("synthesis backend down", retriable=False)
        self.synthesis_calls.append({"system_prompt": system_prompt, "history": history})
        return BackendReply(text=f"answer #{len(self.synthesis_calls)}")

    async def execute_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
    ) -> Any:
        _ = system_prompt, user_prompt, schema, model
        return self.plan


def _session(backend: AgentBackend, events: list[dict[str, Any]] | None = None) -> ResearchSession:
    return ResearchSession(
        planner=PlannerAgent(backend),
        researcher=ResearchAgent(backend),
        synthesizer=SynthesizerAgent(backend),
        max_concurrency=2,
        event_hook=events.append if events is not None else None,
    )


def test_ask_runs_plan_schedule_and_synthesis() -> None:
    events: list[dict[str, Any]] = []
    backend = ScriptedBackend()
    session = _session(backend, events)

    outcome = asyncio.run(session.ask("Should I buy X?"))

    assert outcome.answer.text == "answer #1"
    assert [task.status for task in outcome.graph] == ["completed"] * 3
    assert outcome.report.completion_order[-1] == "task-3"
    assert session.state is AgentState.COMPLETE
    phases = [event["state"] for event in events if event["event"] == "phase"]
    assert phases == ["planning", "reviewing", "searching", "synthesizing", "complete"]
    assert [message.role for message in session.history] == ["user", "model"]
    assert session.history[1].agent_tasks[0].id == "task-1"


def test_follow_up_passes_previous_turns_to_synthesizer() -> None:
    backend = ScriptedBackend()
    session = _session(backend)

    asyncio.run(session.ask("first question"))
    asyncio.run(session.ask("second question"))

    assert backend.synthesis_calls[0]["history"] == []
    assert backend.synthesis_calls[1]["history"] == [
        {"role": "user", "content": "first question"},
        {"role": "model", "content": "answer #1"},
    ]


def test_review_hook_can_edit_graph_before_execution() -> None:
    backend = ScriptedBackend()
    session = _session(backend)

    def _review(graph: TaskGraph) -> None:
        graph.remove_task("task-2")
        graph.set_priority("task-1", "high")

    outcome = asyncio.run(session.ask("q", review=_review))

    assert [task.id for task in outcome.graph] == ["task-1", "task-3"]
    assert outcome.graph["task-3"].dependencies == ["task-1"]
    assert len(backend.research_prompts) == 2


def test_deadlocked_plan_raises_and_keeps_partial_results() -> None:
    plan = {
        "tasks": [
            {"id": "a", "agent_role": "r", "title": "A", "goal": "a"},
            {"id": "b", "agent_role": "r", "title": "B", "goal": "b", "dependencies": ["c"]},
            {"id": "c", "agent_role": "r", "title": "C", "goal": "c", "dependencies": ["b"]},
        ]
    }
    backend = ScriptedBackend(plan=plan)
    session = _session(backend)

    with pytest.raises(SchedulingDeadlockError) as excinfo:
        asyncio.run(session.ask("q"))

    assert excinfo.value.unresolved == ["b", "c"]
    assert set(excinfo.value.partial_results) == {"a"}
    assert excinfo.value.graph is not None
    assert excinfo.value.graph["b"].status == "failed"
    assert session.state is AgentState.ERROR
    assert session.history == []
    assert backend.synthesis_calls == []


def test_synthesis_failure_leaves_history_untouched_and_session_recoverable() -> None:
    backend = ScriptedBackend(fail_synthesis=True)
    session = _session(backend)

    with pytest.raises(SynthesisError) as excinfo:
        asyncio.run(session.ask("q"))

    assert set(excinfo.value.partial_results) == {"task-1", "task-2", "task-3"}
    assert session.state is AgentState.ERROR
    assert session.history == []

    backend.fail_synthesis = False
    outcome = asyncio.run(session.ask("q again"))
    assert outcome.answer.text == "answer #1"
    assert session.state is AgentState.COMPLETE


def test_execute_runs_a_hand_built_graph() -> None:
    backend = ScriptedBackend()
    session = _session(backend)
    graph = TaskGraph(
        [AgentTask(id="solo", title="Solo", agent_role="Generalist", goal="everything")]
    )

    outcome = asyncio.run(session.execute("q", graph))

    assert outcome.report.completion_order == ["solo"]
    assert backend.research_prompts == ["Perform your assigned task: everything"]


def test_busy_session_rejects_new_runs() -> None:
    session = _session(ScriptedBackend())
    session.state = AgentState.SEARCHING

    with pytest.raises(SparkAgentError, match="already in progress"):
        asyncio.run(session.plan("q"))


def test_toggle_priority_uses_current_graph() -> None:
    session = _session(ScriptedBackend())
    assert session.toggle_priority("task-1") is False

    asyncio.run(session.plan("q"))

    assert session.toggle_priority("task-1") is True
    assert session.graph is not None
    assert session.graph["task-1"].priority == "high"


def test_prior_turns_drop_trailing_copy_of_query() -> None:
    history = [
        Message(role="user", content="old"),
        Message(role="model", content="answer"),
        Message(role="user", content="new"),
    ]

    assert [m.content for m in prior_turns_for("new", history)] == ["old", "answer"]
    assert [m.content for m in prior_turns_for("other", history)] == ["old", "answer", "new"]

import asyncio
from typing import Any

import pytest

from sparkagent.backends import OfflineBackend, OpenAIBackend, RetryPolicy
from sparkagent.backends.base import (
    AgentBackend,
    BackendExecutionError,
    BackendReply,
)
from sparkagent.backends.resilient import ResilientBackend
from sparkagent.specialists.planner import PLAN_SCHEMA


class AlwaysFailBackend(AgentBackend):
    def __init__(self, *, retriable: bool = True) -> None:
        self.retriable = retriable
        self.calls = 0

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        history: list[dict[str, str]] | None = None,
        web_search: bool = False,
    ) -> BackendReply:
        _ = system_prompt, user_prompt, model, history, web_search
        self.calls += 1
        raise BackendExecutionError("boom", backend="fake", retriable=self.retriable)

    async def execute_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
    ) -> Any:
        _ = system_prompt, user_prompt, schema, model
        self.calls += 1
        raise BackendExecutionError("boom", backend="fake", retriable=self.retriable)


class SuccessBackend(AgentBackend):
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        history: list[dict[str, str]] | None = None,
        web_search: bool = False,
    ) -> BackendReply:
        _ = system_prompt, user_prompt, model, history, web_search
        return BackendReply(text="ok")

    async def execute_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
    ) -> Any:
        _ = system_prompt, user_prompt, schema, model
        return {"tasks": []}


class SlowBackend(SuccessBackend):
    async def execute(self, *args: Any, **kwargs: Any) -> BackendReply:
        await asyncio.sleep(1.0)
        return await super().execute(*args, **kwargs)


def _policy(**overrides: Any) -> RetryPolicy:
    values = {"max_retries": 1, "backoff_seconds": 0.0, "timeout_seconds": 5.0}
    values.update(overrides)
    return RetryPolicy(**values)


def test_resilient_backend_fallback_and_retry_events() -> None:
    events: list[dict[str, Any]] = []
    primary = AlwaysFailBackend()
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=primary,
        fallback_name="fallback",
        fallback_backend=SuccessBackend(),
        retry_policy=_policy(),
        event_hook=events.append,
    )

    reply = asyncio.run(backend.execute("system", "user"))

    assert reply.text == "ok"
    assert primary.calls == 2
    event_names = [event["event"] for event in events]
    assert "backend_retry" in event_names
    assert "backend_failover_start" in event_names
    assert "backend_fallback_success" in event_names


def test_resilient_backend_execute_json_fallback() -> None:
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=AlwaysFailBackend(),
        fallback_name="fallback",
        fallback_backend=SuccessBackend(),
        retry_policy=_policy(),
    )

    payload = asyncio.run(backend.execute_json("system", "user", PLAN_SCHEMA))

    assert payload == {"tasks": []}


def test_resilient_backend_skips_retries_for_non_retriable_errors() -> None:
    primary = AlwaysFailBackend(retriable=False)
    backend = ResilientBackend(
        primary_name="openai",
        primary_backend=primary,
        fallback_name="openai",
        fallback_backend=primary,
        retry_policy=_policy(max_retries=3),
    )

    with pytest.raises(BackendExecutionError, match="All backend attempts failed"):
        asyncio.run(backend.execute("system", "user"))
    assert primary.calls == 1


def test_resilient_backend_times_out_slow_calls() -> None:
    events: list[dict[str, Any]] = []
    backend = ResilientBackend(
        primary_name="slow",
        primary_backend=SlowBackend(),
        fallback_name="fallback",
        fallback_backend=SuccessBackend(),
        retry_policy=_policy(max_retries=0, timeout_seconds=0.05),
        event_hook=events.append,
    )

    reply = asyncio.run(backend.execute("system", "user"))

    assert reply.text == "ok"
    failed = [event for event in events if event["event"] == "backend_attempt_failed"]
    assert "timed out" in failed[0]["error"]


def test_offline_backend_echoes_and_returns_empty_schema_shape() -> None:
    backend = OfflineBackend()

    reply = asyncio.run(backend.execute("system", "Perform your assigned task: x"))
    payload = asyncio.run(backend.execute_json("system", "user", PLAN_SCHEMA))

    assert "Offline mode" in reply.text
    assert reply.text.endswith("Perform your assigned task: x")
    assert payload == {"tasks": []}


class FakeResponses:
    def __init__(self, payload: Any) -> None:
        self.payload = payload
        self.captured: dict[str, Any] = {}

    def create(self, **kwargs: Any) -> Any:
        self.captured.update(kwargs)
        return self.payload


class FakeClient:
    def __init__(self, payload: Any) -> None:
        self.responses = FakeResponses(payload)


def test_openai_backend_extracts_text_and_cited_sources() -> None:
    payload = {
        "output_text": " findings ",
        "output": [
            {"type": "web_search_call"},
            {
                "type": "message",
                "content": [
                    {
                        "type": "output_text",
                        "text": "findings",
                        "annotations": [
                            {"type": "url_citation", "url": "https://www.a.com/1", "title": "A"},
                            {"type": "url_citation", "url": "https://www.a.com/1", "title": "A2"},
                            {"type": "file_citation", "file_id": "f"},
                            {"type": "url_citation", "url": "https://b.org", "title": "B"},
                        ],
                    }
                ],
            },
        ],
    }
    client = FakeClient(payload)
    backend = OpenAIBackend(model="default-model", client=client)

    reply = asyncio.run(
        backend.execute(
            "system",
            "user prompt",
            model="research-model",
            history=[{"role": "model", "content": "before"}],
            web_search=True,
        )
    )

    assert reply.text == "findings"
    assert [(item.title, item.source) for item in reply.sources] == [("A", "a.com"), ("B", "b.org")]
    captured = client.responses.captured
    assert captured["model"] == "research-model"
    assert captured["instructions"] == "system"
    assert captured["tools"] == [{"type": "web_search"}]
    assert captured["input"] == [
        {"role": "assistant", "content": "before"},
        {"role": "user", "content": "user prompt"},
    ]


def test_openai_backend_decodes_structured_output() -> None:
    client = FakeClient({"output_text": '{"tasks": [{"id": "task-1"}]}'})
    backend = OpenAIBackend(client=client)

    payload = asyncio.run(backend.execute_json("system", "user", PLAN_SCHEMA))

    assert payload == {"tasks": [{"id": "task-1"}]}
    text_format = client.responses.captured["text"]["format"]
    assert text_format["type"] == "json_schema"
    assert text_format["name"] == "research_plan"
    assert "tools" not in client.responses.captured


def test_openai_backend_rejects_invalid_json() -> None:
    backend = OpenAIBackend(client=FakeClient({"output_text": "not json"}))

    with pytest.raises(BackendExecutionError, match="invalid JSON"):
        asyncio.run(backend.execute_json("system", "user", PLAN_SCHEMA))


def test_openai_backend_reports_missing_client(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    backend = OpenAIBackend()

    with pytest.raises(BackendExecutionError) as excinfo:
        asyncio.run(backend.execute("system", "user"))
    assert excinfo.value.retriable is False

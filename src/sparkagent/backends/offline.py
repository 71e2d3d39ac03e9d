from __future__ import annotations

from typing import Any

from sparkagent.backends.base import AgentBackend, BackendReply, ChatTurn


def _empty_for_schema(schema: dict[str, Any]) -> Any:
    kind = schema.get("type")
    if kind == "object":
        properties = schema.get("properties") or {}
        return {name: _empty_for_schema(sub) for name, sub in properties.items()}
    if kind == "array":
        return []
    if kind in {"integer", "number"}:
        return 0
    if kind == "boolean":
        return False
    return ""


class OfflineBackend(AgentBackend):
    """Deterministic backend for demos and dry runs without an API key.

    Text requests echo the prompt; JSON requests return the empty shape of the
    schema, so the planner falls back to its single research task.
    """

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        history: list[ChatTurn] | None = None,
        web_search: bool = False,
    ) -> BackendReply:
        _ = system_prompt, model, history, web_search
        return BackendReply(
            text=(
                "Offline mode: no LLM backend is configured.\n"
                "Set OPENAI_API_KEY and use the openai backend for real answers.\n\n"
                f"{user_prompt}"
            )
        )

    async def execute_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
    ) -> Any:
        _ = system_prompt, user_prompt, model
        return _empty_for_schema(schema)

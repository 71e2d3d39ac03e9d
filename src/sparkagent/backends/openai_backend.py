from __future__ import annotations

import asyncio
import json
from typing import Any

from openai import OpenAI, OpenAIError

from sparkagent.backends.base import (
    AgentBackend,
    BackendExecutionError,
    BackendProcessError,
    BackendReply,
    ChatTurn,
)
from sparkagent.models import Source, dedupe_sources

_ROLE_MAP = {"user": "user", "model": "assistant", "assistant": "assistant"}


def _field(payload: Any, name: str) -> Any:
    if isinstance(payload, dict):
        return payload.get(name)
    return getattr(payload, name, None)


class OpenAIBackend(AgentBackend):
    """Backend on the OpenAI Responses API, using its hosted web search tool for grounding."""

    def __init__(self, *, model: str = "gpt-4.1-mini", client: Any | None = None) -> None:
        self.model = model
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = OpenAI()
            except OpenAIError as exc:
                raise BackendProcessError(
                    f"OpenAI client unavailable: {exc}",
                    backend="openai",
                    retriable=False,
                ) from exc
        return self._client

    @staticmethod
    def _build_input(user_prompt: str, history: list[ChatTurn] | None) -> list[dict[str, str]]:
        items: list[dict[str, str]] = []
        for turn in history or []:
            role = _ROLE_MAP.get(str(turn.get("role", "")).lower())
            content = str(turn.get("content", ""))
            if role is None or not content:
                continue
            items.append({"role": role, "content": content})
        items.append({"role": "user", "content": user_prompt})
        return items

    @staticmethod
    def _extract_text(payload: Any) -> str:
        output_text = _field(payload, "output_text")
        if isinstance(output_text, str):
            return output_text
        parts: list[str] = []
        for item in _field(payload, "output") or []:
            for content in _field(item, "content") or []:
                text = _field(content, "text")
                if isinstance(text, str):
                    parts.append(text)
        return "".join(parts)

    @staticmethod
    def _extract_sources(payload: Any) -> list[Source]:
        sources: list[Source] = []
        for item in _field(payload, "output") or []:
            if _field(item, "type") != "message":
                continue
            for content in _field(item, "content") or []:
                for annotation in _field(content, "annotations") or []:
                    if _field(annotation, "type") != "url_citation":
                        continue
                    url = str(_field(annotation, "url") or "#")
                    title = str(_field(annotation, "title") or "Web Source")
                    sources.append(Source(title=title, url=url))
        return dedupe_sources(sources)

    async def _request(self, **kwargs: Any) -> Any:
        client = self._get_client()
        try:
            return await asyncio.to_thread(lambda: client.responses.create(**kwargs))
        except OpenAIError as exc:
            raise BackendExecutionError(
                f"OpenAI request failed: {exc}",
                backend="openai",
                retriable=True,
            ) from exc

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        history: list[ChatTurn] | None = None,
        web_search: bool = False,
    ) -> BackendReply:
        request: dict[str, Any] = {
            "model": model or self.model,
            "instructions": system_prompt,
            "input": self._build_input(user_prompt, history),
        }
        if web_search:
            request["tools"] = [{"type": "web_search"}]
        payload = await self._request(**request)
        return BackendReply(
            text=self._extract_text(payload).strip(),
            sources=self._extract_sources(payload),
        )

    async def execute_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
    ) -> Any:
        payload = await self._request(
            model=model or self.model,
            instructions=system_prompt,
            input=self._build_input(user_prompt, None),
            text={
                "format": {
                    "type": "json_schema",
                    "name": str(schema.get("title") or "response"),
                    "schema": schema,
                }
            },
        )
        raw = self._extract_text(payload).strip()
        try:
            return json.loads(raw or "null")
        except json.JSONDecodeError as exc:
            raise BackendExecutionError(
                f"OpenAI returned invalid JSON: {exc}",
                backend="openai",
                retriable=True,
            ) from exc

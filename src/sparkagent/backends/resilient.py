from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from sparkagent.backends.base import (
    AgentBackend,
    BackendExecutionError,
    BackendReply,
    BackendTimeoutError,
    ChatTurn,
)

logger = logging.getLogger(__name__)

BackendEventHook = Callable[[dict[str, Any]], None]
T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 1
    backoff_seconds: float = 0.5
    timeout_seconds: float = 120.0


class ResilientBackend(AgentBackend):
    """Wraps primary/fallback backends with timeout, retry, and failover."""

    def __init__(
        self,
        primary_name: str,
        primary_backend: AgentBackend,
        fallback_name: str,
        fallback_backend: AgentBackend,
        retry_policy: RetryPolicy,
        event_hook: BackendEventHook | None = None,
    ) -> None:
        self.primary_name = primary_name
        self.primary_backend = primary_backend
        self.fallback_name = fallback_name
        self.fallback_backend = fallback_backend
        self.retry_policy = retry_policy
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    async def _with_timeout(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.retry_policy.timeout_seconds)
        except TimeoutError as exc:
            raise BackendTimeoutError(
                f"Backend request timed out after {self.retry_policy.timeout_seconds:.1f}s",
                retriable=True,
            ) from exc

    async def _execute_attempts(
        self,
        call_name: str,
        call: Callable[[AgentBackend], Awaitable[T]],
    ) -> T:
        attempts: list[tuple[str, AgentBackend]] = [(self.primary_name, self.primary_backend)]
        if self.fallback_backend is not self.primary_backend:
            attempts.append((self.fallback_name, self.fallback_backend))

        errors: list[str] = []
        for index, (backend_name, backend) in enumerate(attempts):
            if index > 0:
                logger.warning("Failing over to backend %s for %s", backend_name, call_name)
                self._emit({"event": "backend_failover_start", "backend": backend_name, "call": call_name})
            for attempt in range(self.retry_policy.max_retries + 1):
                if attempt > 0:
                    delay = self.retry_policy.backoff_seconds * (2 ** (attempt - 1))
                    self._emit(
                        {
                            "event": "backend_retry",
                            "backend": backend_name,
                            "attempt": attempt,
                            "delay_seconds": delay,
                            "call": call_name,
                        }
                    )
                    await asyncio.sleep(delay)
                try:
                    value = await self._with_timeout(call(backend))
                except BackendExecutionError as exc:
                    errors.append(f"{backend_name}[{attempt}]: {exc}")
                    logger.warning("Backend %s attempt %d failed: %s", backend_name, attempt, exc)
                    self._emit(
                        {
                            "event": "backend_attempt_failed",
                            "backend": backend_name,
                            "attempt": attempt,
                            "call": call_name,
                            "error": str(exc),
                            "retriable": exc.retriable,
                        }
                    )
                    if not exc.retriable:
                        break
                    continue
                except Exception as exc:
                    errors.append(f"{backend_name}[{attempt}]: {exc}")
                    logger.warning("Backend %s attempt %d raised: %s", backend_name, attempt, exc)
                    self._emit(
                        {
                            "event": "backend_attempt_failed",
                            "backend": backend_name,
                            "attempt": attempt,
                            "call": call_name,
                            "error": str(exc),
                            "retriable": True,
                        }
                    )
                    continue
                if index > 0:
                    self._emit(
                        {
                            "event": "backend_fallback_success",
                            "backend": backend_name,
                            "attempt": attempt,
                            "call": call_name,
                        }
                    )
                return value

        summary = "; ".join(errors[-6:])
        raise BackendExecutionError(
            f"All backend attempts failed for {call_name}. {summary}",
            retriable=False,
        )

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        history: list[ChatTurn] | None = None,
        web_search: bool = False,
    ) -> BackendReply:
        return await self._execute_attempts(
            "execute",
            lambda backend: backend.execute(
                system_prompt,
                user_prompt,
                model=model,
                history=history,
                web_search=web_search,
            ),
        )

    async def execute_json(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        *,
        model: str | None = None,
    ) -> Any:
        return await self._execute_attempts(
            "execute_json",
            lambda backend: backend.execute_json(
                system_prompt,
                user_prompt,
                schema,
                model=model,
            ),
        )

from sparkagent.backends.base import (
    AgentBackend,
    BackendExecutionError,
    BackendProcessError,
    BackendReply,
    BackendTimeoutError,
)
from sparkagent.backends.offline import OfflineBackend
from sparkagent.backends.openai_backend import OpenAIBackend
from sparkagent.backends.resilient import ResilientBackend, RetryPolicy

__all__ = [
    "AgentBackend",
    "BackendExecutionError",
    "BackendProcessError",
    "BackendReply",
    "BackendTimeoutError",
    "OfflineBackend",
    "OpenAIBackend",
    "ResilientBackend",
    "RetryPolicy",
]

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

BackendName = Literal["openai", "offline"]


@dataclass(slots=True)
class BackendConfig:
    primary: BackendName = "openai"
    fallback: BackendName = "openai"
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class AgentsConfig:
    planner_model: str = "gpt-4.1-mini"
    research_model: str = "gpt-4.1-mini"
    synthesis_model: str = "gpt-4.1"
    max_planned_tasks: int = 4


@dataclass(slots=True)
class SchedulerConfig:
    max_concurrency: int = 2


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    file: str = ""


@dataclass(slots=True)
class SparkAgentConfig:
    backend: BackendConfig = field(default_factory=BackendConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> SparkAgentConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> SparkAgentConfig:
        return cls(
            backend=BackendConfig(**data.get("backend", {})),
            agents=AgentsConfig(**data.get("agents", {})),
            scheduler=SchedulerConfig(**data.get("scheduler", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_dict(self) -> dict:
        return {
            "backend": {
                "primary": self.backend.primary,
                "fallback": self.backend.fallback,
                "max_retries": self.backend.max_retries,
                "retry_backoff_seconds": self.backend.retry_backoff_seconds,
                "timeout_seconds": self.backend.timeout_seconds,
            },
            "agents": {
                "planner_model": self.agents.planner_model,
                "research_model": self.agents.research_model,
                "synthesis_model": self.agents.synthesis_model,
                "max_planned_tasks": self.agents.max_planned_tasks,
            },
            "scheduler": {
                "max_concurrency": self.scheduler.max_concurrency,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if rendered else "0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: SparkAgentConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("backend", "agents", "scheduler", "logging"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> SparkAgentConfig:
    if not path.exists():
        return SparkAgentConfig.default()
    return SparkAgentConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: SparkAgentConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from sparkagent.backends import (
    AgentBackend,
    OfflineBackend,
    OpenAIBackend,
    ResilientBackend,
    RetryPolicy,
)
from sparkagent.config import BackendName, SparkAgentConfig, load_config, save_config
from sparkagent.errors import SchedulingDeadlockError, SparkAgentError
from sparkagent.graph import TaskGraph
from sparkagent.logging_setup import setup_logging
from sparkagent.session import ResearchSession, RunOutcome
from sparkagent.specialists import PlannerAgent, ResearchAgent, SynthesizerAgent

EXIT_WORDS = {"exit", "quit", ":q"}


@dataclass(slots=True)
class Runtime:
    config_path: Path
    config: SparkAgentConfig
    backend: AgentBackend
    session: ResearchSession


def _resolve_config_path(config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = Path.cwd() / config_path
    return config_path.resolve()


def _build_single_backend(backend_name: BackendName) -> AgentBackend:
    if backend_name == "offline":
        return OfflineBackend()
    return OpenAIBackend()


def _build_backend(config: SparkAgentConfig, *, offline: bool) -> AgentBackend:
    if offline:
        return OfflineBackend()
    primary_name = config.backend.primary
    fallback_name = config.backend.fallback
    primary_backend = _build_single_backend(primary_name)
    fallback_backend = (
        primary_backend if fallback_name == primary_name else _build_single_backend(fallback_name)
    )
    policy = RetryPolicy(
        max_retries=max(0, int(config.backend.max_retries)),
        backoff_seconds=max(0.0, float(config.backend.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.backend.timeout_seconds)),
    )
    return ResilientBackend(
        primary_name=primary_name,
        primary_backend=primary_backend,
        fallback_name=fallback_name,
        fallback_backend=fallback_backend,
        retry_policy=policy,
    )


def _echo_progress(event: dict[str, Any]) -> None:
    name = event.get("event")
    if name == "task_started":
        marker = " [high]" if event.get("priority") == "high" else ""
        click.echo(f"-> {event['task_id']}: {event['title']}{marker}", err=True)
    elif name == "task_completed":
        suffix = " (placeholder result)" if event.get("error") else ""
        click.echo(f"<- {event['task_id']} done{suffix}", err=True)
    elif name == "schedule_deadlock":
        click.echo("!! unschedulable: " + ", ".join(event["unresolved"]), err=True)
    elif name == "phase":
        click.echo(f"== {event['state']}", err=True)


def build_session(
    config: SparkAgentConfig,
    backend: AgentBackend,
    *,
    quiet: bool = False,
) -> ResearchSession:
    return ResearchSession(
        planner=PlannerAgent(
            backend,
            model=config.agents.planner_model,
            max_tasks=config.agents.max_planned_tasks,
        ),
        researcher=ResearchAgent(backend, model=config.agents.research_model),
        synthesizer=SynthesizerAgent(backend, model=config.agents.synthesis_model),
        max_concurrency=max(1, int(config.scheduler.max_concurrency)),
        event_hook=None if quiet else _echo_progress,
    )


def _load_runtime(config_value: str, *, offline: bool, quiet: bool = False) -> Runtime:
    config_path = _resolve_config_path(config_value)
    config = load_config(config_path)
    setup_logging(level=config.logging.level, log_file=config.logging.file or None)
    backend = _build_backend(config, offline=offline)
    return Runtime(
        config_path=config_path,
        config=config,
        backend=backend,
        session=build_session(config, backend, quiet=quiet),
    )


def _load_plan_file(path: Path) -> TaskGraph:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise click.ClickException(f"Cannot read plan file {path}: {exc}") from exc
    items = payload.get("tasks") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise click.ClickException(f"Plan file {path} does not contain a task list.")
    try:
        return TaskGraph.from_list(items)
    except ValueError as exc:
        raise click.ClickException(f"Invalid plan file {path}: {exc}") from exc


def _apply_priorities(graph: TaskGraph, high_ids: tuple[str, ...]) -> None:
    for task_id in high_ids:
        if task_id not in graph:
            raise click.ClickException(f"Unknown task id for --high: {task_id}")
        graph.set_priority(task_id, "high")


def _outcome_payload(outcome: RunOutcome) -> dict[str, Any]:
    return {
        "query": outcome.query,
        "answer": outcome.answer.to_dict(),
        "tasks": outcome.graph.to_list(),
        "completion_order": list(outcome.report.completion_order),
    }


def _echo_outcome(outcome: RunOutcome, *, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(_outcome_payload(outcome), ensure_ascii=False, indent=2))
        return
    click.echo(outcome.answer.text)
    if outcome.answer.sources:
        click.echo("")
        click.echo("Sources:")
        for index, source in enumerate(outcome.answer.sources, start=1):
            click.echo(f"  [{index}] {source.title} ({source.source}) {source.url}")


def _run_or_fail(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except SchedulingDeadlockError as exc:
        completed = ", ".join(exc.partial_results) or "none"
        raise click.ClickException(f"{exc} (completed: {completed})") from exc
    except SparkAgentError as exc:
        raise click.ClickException(str(exc)) from exc


config_option = click.option(
    "--config", "config_value", default="sparkagent.toml", show_default=True
)
offline_option = click.option(
    "--offline", is_flag=True, default=False, help="Use the deterministic offline backend."
)


@click.group()
def cli() -> None:
    """SparkAgent multi-agent research CLI."""


@cli.command("init")
@click.option("--backend", type=click.Choice(["openai", "offline"]), default=None)
@config_option
def init_command(backend: str | None, config_value: str) -> None:
    config_path = _resolve_config_path(config_value)
    config = load_config(config_path)
    if backend:
        config.backend.primary = backend  # type: ignore[assignment]
        config.backend.fallback = backend  # type: ignore[assignment]
    save_config(config_path, config)
    click.echo(f"Config: {config_path}")
    click.echo(f"Backend: {config.backend.primary}")
    click.echo(f"Max concurrency: {config.scheduler.max_concurrency}")


@cli.command("plan")
@click.argument("query")
@click.option("--output", "output_path", type=click.Path(dir_okay=False, path_type=Path))
@config_option
@offline_option
def plan_command(
    query: str, output_path: Path | None, config_value: str, offline: bool
) -> None:
    """Plan QUERY and print the task graph as editable JSON."""
    runtime = _load_runtime(config_value, offline=offline, quiet=True)
    graph = _run_or_fail(runtime.session.plan(query))
    rendered = json.dumps({"query": query, "tasks": graph.to_list()}, ensure_ascii=False, indent=2)
    if output_path is None:
        click.echo(rendered)
        return
    output_path.write_text(rendered + "\n", encoding="utf-8")
    click.echo(f"Plan with {len(graph)} task(s) written to {output_path}")


@cli.command("execute")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("query", required=False)
@click.option("--high", "high_ids", multiple=True, help="Task id to run with high priority.")
@click.option("--json", "as_json", is_flag=True, default=False)
@config_option
@offline_option
def execute_command(
    plan_file: Path,
    query: str | None,
    high_ids: tuple[str, ...],
    as_json: bool,
    config_value: str,
    offline: bool,
) -> None:
    """Run a reviewed plan file and synthesize the answer."""
    graph = _load_plan_file(plan_file)
    if query is None:
        payload = json.loads(plan_file.read_text(encoding="utf-8"))
        query = str(payload.get("query") or "").strip() if isinstance(payload, dict) else ""
    if not query:
        raise click.ClickException("No query given and the plan file does not record one.")
    _apply_priorities(graph, high_ids)
    runtime = _load_runtime(config_value, offline=offline, quiet=as_json)
    outcome = _run_or_fail(runtime.session.execute(query, graph))
    _echo_outcome(outcome, as_json=as_json)


@cli.command("run")
@click.argument("query")
@click.option("--high", "high_ids", multiple=True, help="Task id to run with high priority.")
@click.option("--json", "as_json", is_flag=True, default=False)
@config_option
@offline_option
def run_command(
    query: str,
    high_ids: tuple[str, ...],
    as_json: bool,
    config_value: str,
    offline: bool,
) -> None:
    """Plan, execute and synthesize QUERY in one go."""
    runtime = _load_runtime(config_value, offline=offline, quiet=as_json)

    def _review(graph: TaskGraph) -> None:
        for task_id in high_ids:
            if not graph.set_priority(task_id, "high"):
                click.echo(f"Ignoring --high {task_id}: not in the plan", err=True)

    outcome = _run_or_fail(runtime.session.ask(query, review=_review))
    _echo_outcome(outcome, as_json=as_json)


@cli.command("chat")
@config_option
@offline_option
def chat_command(config_value: str, offline: bool) -> None:
    """Interactive research with follow-up questions. Type 'exit' to leave, '/new' to reset."""
    runtime = _load_runtime(config_value, offline=offline)
    session = runtime.session
    while True:
        try:
            query = click.prompt("You", prompt_suffix="> ").strip()
        except click.Abort:
            click.echo("")
            return
        if not query:
            continue
        if query.lower() in EXIT_WORDS:
            return
        if query == "/new":
            session.reset()
            click.echo("Started a new conversation.")
            continue
        try:
            outcome = _run_or_fail(session.ask(query))
        except click.ClickException as exc:
            click.echo(f"Error: {exc.format_message()}", err=True)
            continue
        _echo_outcome(outcome, as_json=False)
        click.echo("")

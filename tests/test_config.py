import tomllib
from pathlib import Path

from sparkagent import __version__
from sparkagent.config import SparkAgentConfig, dumps_toml, load_config, save_config


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "sparkagent.toml"
    config = SparkAgentConfig.default()
    config.backend.primary = "offline"
    config.backend.max_retries = 3
    config.backend.retry_backoff_seconds = 1.25
    config.agents.synthesis_model = "gpt-test"
    config.agents.max_planned_tasks = 6
    config.scheduler.max_concurrency = 3
    config.logging.level = "DEBUG"
    config.logging.file = "logs/sparkagent.log"

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.backend.primary == "offline"
    assert loaded.backend.fallback == "openai"
    assert loaded.backend.max_retries == 3
    assert loaded.backend.retry_backoff_seconds == 1.25
    assert loaded.agents.synthesis_model == "gpt-test"
    assert loaded.agents.max_planned_tasks == 6
    assert loaded.scheduler.max_concurrency == 3
    assert loaded.logging.level == "DEBUG"
    assert loaded.logging.file == "logs/sparkagent.log"


def test_missing_config_file_yields_defaults(tmp_path: Path) -> None:
    loaded = load_config(tmp_path / "absent.toml")

    assert loaded == SparkAgentConfig.default()
    assert loaded.scheduler.max_concurrency == 2


def test_partial_config_keeps_defaults_for_other_sections(tmp_path: Path) -> None:
    config_path = tmp_path / "sparkagent.toml"
    config_path.write_text("[scheduler]\nmax_concurrency = 4\n", encoding="utf-8")

    loaded = load_config(config_path)

    assert loaded.scheduler.max_concurrency == 4
    assert loaded.backend.primary == "openai"


def test_toml_dump_contains_all_sections() -> None:
    rendered = dumps_toml(SparkAgentConfig.default())

    assert "[backend]" in rendered
    assert "timeout_seconds" in rendered
    assert "[agents]" in rendered
    assert "[scheduler]" in rendered
    assert "max_concurrency = 2" in rendered
    assert "[logging]" in rendered
    assert 'file = ""' in rendered


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]

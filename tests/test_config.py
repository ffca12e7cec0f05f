from __future__ import annotations

from pathlib import Path

import allure
import pytest

from burns.config import (
    ConfigurationError,
    ExecutorSettings,
    ProjectConfig,
    SchedulerSettings,
    Settings,
    StoreSettings,
)
from burns.orchestrator.models import ClaimOrder

pytestmark = [
    allure.epic("Operator Surface"),
    allure.feature("Configuration"),
]


def test_from_env_defaults(clean_env: None) -> None:
    settings = Settings.from_env()

    assert settings.store.state_dir == Path("state")
    assert settings.store.tasks_dir == Path("state/tasks")
    assert settings.store.progress_file == Path("state/progress.txt")
    assert settings.store.claim_order is ClaimOrder.ID
    assert settings.scheduler.max_workers == 4
    assert settings.scheduler.exec_interval == 10
    assert settings.scheduler.max_cycles == 100
    assert settings.scheduler.stale_timeout_seconds == 300.0
    assert settings.executor.tool == "amp"
    assert settings.executor.command_template == "amp --dangerously-allow-all"
    assert settings.resolved_project_file == Path("state/project.json")
    settings.validate()


def test_from_env_reads_overrides(clean_env: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BURNS_STATE_DIR", "/srv/burns")
    monkeypatch.setenv("BURNS_WORKERS", "8")
    monkeypatch.setenv("BURNS_EXEC_INTERVAL", "5")
    monkeypatch.setenv("BURNS_STALE_TIMEOUT_SECONDS", "90.5")
    monkeypatch.setenv("BURNS_CLAIM_ORDER", "Priority")
    monkeypatch.setenv("BURNS_TOOL", " Claude ")
    monkeypatch.setenv("BURNS_CLAUDE_COMMAND_TEMPLATE", "claude -p {prompt}")
    monkeypatch.setenv("BURNS_PROJECT_FILE", "goals.json")

    settings = Settings.from_env()

    assert settings.store.state_dir == Path("/srv/burns")
    assert settings.store.claim_order is ClaimOrder.PRIORITY
    assert settings.scheduler.max_workers == 8
    assert settings.scheduler.exec_interval == 5
    assert settings.scheduler.stale_timeout_seconds == 90.5
    assert settings.executor.tool == "claude"
    assert settings.executor.command_template == "claude -p {prompt}"
    assert settings.resolved_project_file == Path("goals.json")


def test_explicit_state_dir_beats_environment(
    clean_env: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BURNS_STATE_DIR", "/srv/burns")

    settings = Settings.from_env(state_dir=Path("local-state"))

    assert settings.store.agents_dir == Path("local-state/agents")


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("BURNS_WORKERS", "four", "BURNS_WORKERS must be an integer"),
        ("BURNS_CYCLE_DELAY_SECONDS", "soon", "BURNS_CYCLE_DELAY_SECONDS must be a number"),
        ("BURNS_CLAIM_ORDER", "random", "BURNS_CLAIM_ORDER must be one of: id, priority"),
    ],
)
def test_from_env_rejects_malformed_values(
    clean_env: None,
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError, match=message):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(scheduler=SchedulerSettings(max_workers=0)), "Worker count must be >= 1"),
        (Settings(scheduler=SchedulerSettings(exec_interval=0)), "Executive interval"),
        (Settings(scheduler=SchedulerSettings(max_cycles=-1)), "Max cycles must be >= 1"),
        (Settings(scheduler=SchedulerSettings(cycle_delay_seconds=-1)), "CYCLE_DELAY"),
        (Settings(store=StoreSettings(default_max_attempts=0)), "DEFAULT_MAX_ATTEMPTS"),
        (Settings(executor=ExecutorSettings(tool="cursor")), "Invalid tool 'cursor'"),
        (Settings(executor=ExecutorSettings(timeout_seconds=0)), "TIMEOUT_SECONDS"),
        (
            Settings(executor=ExecutorSettings(command_templates={"amp": "  "})),
            "Command template for tool 'amp' is empty",
        ),
    ],
)
def test_validate_rejects_unusable_settings(settings: Settings, message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        settings.validate()


def test_validate_rejects_missing_prompts_dir(tmp_path: Path) -> None:
    settings = Settings(executor=ExecutorSettings(prompts_dir=tmp_path / "missing"))

    with pytest.raises(ConfigurationError, match="Prompts directory not found"):
        settings.validate()


def test_project_config_load_and_summary(tmp_path: Path) -> None:
    path = tmp_path / "project.json"
    path.write_text(
        '{"name": "shop", "description": "Web shop", "config": {"lang": "python"}, '
        '"goals": ["checkout"]}',
        "utf-8",
    )

    project = ProjectConfig.load(path)

    assert project.name == "shop"
    assert project.path == path
    assert project.document["goals"] == ["checkout"]
    assert project.summary == {
        "name": "shop",
        "description": "Web shop",
        "config": {"lang": "python"},
    }


@pytest.mark.parametrize(
    ("content", "message"),
    [
        (None, "Project file not found"),
        ("{broken", "Project file is not valid JSON"),
        ("[1, 2]", "Project file must hold a JSON object"),
    ],
)
def test_project_config_load_errors(tmp_path: Path, content: str | None, message: str) -> None:
    path = tmp_path / "project.json"
    if content is not None:
        path.write_text(content, "utf-8")

    with pytest.raises(ConfigurationError, match=message):
        ProjectConfig.load(path)

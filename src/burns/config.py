"""Runtime configuration for the swarm scheduler and its stores."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from burns.orchestrator.executor.cli_executor import SUPPORTED_TOOLS, TOOL_COMMAND_TEMPLATES
from burns.orchestrator.models import ClaimOrder


class ConfigurationError(ValueError):
    """Missing or invalid input detected before any state is touched."""


@dataclass(slots=True)
class StoreSettings:
    """File-backed task and agent store settings."""

    state_dir: Path = Path("state")
    guard_stale_seconds: float = 30.0
    guard_wait_seconds: float = 10.0
    default_max_attempts: int = 3
    claim_order: ClaimOrder = ClaimOrder.ID

    @property
    def tasks_dir(self) -> Path:
        return self.state_dir / "tasks"

    @property
    def agents_dir(self) -> Path:
        return self.state_dir / "agents"

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / "logs"

    @property
    def progress_file(self) -> Path:
        return self.state_dir / "progress.txt"


@dataclass(slots=True)
class SchedulerSettings:
    """Cycle loop settings."""

    max_workers: int = 4
    exec_interval: int = 10
    max_cycles: int = 100
    stale_timeout_seconds: float = 300.0
    cycle_delay_seconds: float = 2.0
    executive_unrecognized_limit: int = 0
    planner_join_seconds: float = 30.0


@dataclass(slots=True)
class ExecutorSettings:
    """External tool invocation settings."""

    tool: str = "amp"
    timeout_seconds: int = 3_600
    heartbeat_interval_seconds: float = 30.0
    command_templates: dict[str, str] = field(
        default_factory=lambda: dict(TOOL_COMMAND_TEMPLATES),
    )
    prompts_dir: Path | None = None

    @property
    def command_template(self) -> str:
        return self.command_templates.get(self.tool, "")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    store: StoreSettings = field(default_factory=StoreSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    project_file: Path | None = None

    @classmethod
    def from_env(cls, state_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching a local checkout."""

        resolved_state_dir = state_dir or Path(os.getenv("BURNS_STATE_DIR", "state"))
        project_file = os.getenv("BURNS_PROJECT_FILE", "").strip()
        prompts_dir = os.getenv("BURNS_PROMPTS_DIR", "").strip()
        return cls(
            store=StoreSettings(
                state_dir=resolved_state_dir,
                guard_stale_seconds=_env_float("BURNS_GUARD_STALE_SECONDS", 30.0),
                guard_wait_seconds=_env_float("BURNS_GUARD_WAIT_SECONDS", 10.0),
                default_max_attempts=_env_int("BURNS_DEFAULT_MAX_ATTEMPTS", 3),
                claim_order=_env_claim_order("BURNS_CLAIM_ORDER", ClaimOrder.ID),
            ),
            scheduler=SchedulerSettings(
                max_workers=_env_int("BURNS_WORKERS", 4),
                exec_interval=_env_int("BURNS_EXEC_INTERVAL", 10),
                max_cycles=_env_int("BURNS_MAX_CYCLES", 100),
                stale_timeout_seconds=_env_float("BURNS_STALE_TIMEOUT_SECONDS", 300.0),
                cycle_delay_seconds=_env_float("BURNS_CYCLE_DELAY_SECONDS", 2.0),
                executive_unrecognized_limit=_env_int(
                    "BURNS_EXECUTIVE_UNRECOGNIZED_LIMIT",
                    0,
                ),
                planner_join_seconds=_env_float("BURNS_PLANNER_JOIN_SECONDS", 30.0),
            ),
            executor=ExecutorSettings(
                tool=os.getenv("BURNS_TOOL", "amp").strip().lower(),
                timeout_seconds=_env_int("BURNS_EXECUTOR_TIMEOUT_SECONDS", 3600),
                heartbeat_interval_seconds=_env_float(
                    "BURNS_HEARTBEAT_INTERVAL_SECONDS",
                    30.0,
                ),
                command_templates=_collect_command_templates(),
                prompts_dir=Path(prompts_dir) if prompts_dir else None,
            ),
            project_file=Path(project_file) if project_file else None,
        )

    @property
    def resolved_project_file(self) -> Path:
        return self.project_file or self.store.state_dir / "project.json"

    def validate(self) -> None:
        """Raise ConfigurationError when a setting cannot drive a run."""

        scheduler = self.scheduler
        if scheduler.max_workers < 1:
            raise ConfigurationError("Worker count must be >= 1 (BURNS_WORKERS / --workers).")
        if scheduler.exec_interval < 1:
            raise ConfigurationError(
                "Executive interval must be >= 1 (BURNS_EXEC_INTERVAL / --exec-interval).",
            )
        if scheduler.max_cycles < 1:
            raise ConfigurationError("Max cycles must be >= 1 (BURNS_MAX_CYCLES / --max-cycles).")
        if scheduler.stale_timeout_seconds <= 0:
            raise ConfigurationError("BURNS_STALE_TIMEOUT_SECONDS must be > 0.")
        if scheduler.cycle_delay_seconds < 0:
            raise ConfigurationError("BURNS_CYCLE_DELAY_SECONDS must be >= 0.")
        if scheduler.executive_unrecognized_limit < 0:
            raise ConfigurationError("BURNS_EXECUTIVE_UNRECOGNIZED_LIMIT must be >= 0.")
        if scheduler.planner_join_seconds < 0:
            raise ConfigurationError("BURNS_PLANNER_JOIN_SECONDS must be >= 0.")

        store = self.store
        if store.default_max_attempts < 1:
            raise ConfigurationError("BURNS_DEFAULT_MAX_ATTEMPTS must be >= 1.")
        if store.guard_stale_seconds <= 0 or store.guard_wait_seconds <= 0:
            raise ConfigurationError(
                "BURNS_GUARD_STALE_SECONDS and BURNS_GUARD_WAIT_SECONDS must be > 0.",
            )

        executor = self.executor
        if executor.tool not in executor.command_templates:
            raise ConfigurationError(
                f"Invalid tool {executor.tool!r}. Must be one of: "
                f"{', '.join(sorted(executor.command_templates))}.",
            )
        if not executor.command_template.strip():
            raise ConfigurationError(f"Command template for tool {executor.tool!r} is empty.")
        if executor.timeout_seconds <= 0:
            raise ConfigurationError("BURNS_EXECUTOR_TIMEOUT_SECONDS must be > 0.")
        if executor.heartbeat_interval_seconds <= 0:
            raise ConfigurationError("BURNS_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if executor.prompts_dir is not None and not executor.prompts_dir.is_dir():
            raise ConfigurationError(f"Prompts directory not found: {executor.prompts_dir}")


@dataclass(slots=True)
class ProjectConfig:
    """Project goals document handed to the executor as context."""

    document: dict[str, Any] = field(default_factory=dict)
    path: Path | None = None

    @classmethod
    def load(cls, path: Path) -> ProjectConfig:
        try:
            raw = path.read_text("utf-8")
        except FileNotFoundError as error:
            raise ConfigurationError(f"Project file not found: {path}") from error
        except OSError as error:
            raise ConfigurationError(f"Project file unreadable: {path}: {error}") from error
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as error:
            raise ConfigurationError(f"Project file is not valid JSON: {path}: {error}") from error
        if not isinstance(document, dict):
            raise ConfigurationError(f"Project file must hold a JSON object: {path}")
        return cls(document=document, path=path)

    @property
    def name(self) -> str:
        return str(self.document.get("name") or "")

    @property
    def summary(self) -> dict[str, Any]:
        """The subset of the project document given to workers."""

        return {
            "name": self.document.get("name"),
            "description": self.document.get("description"),
            "config": self.document.get("config"),
        }


def _collect_command_templates() -> dict[str, str]:
    templates = dict(TOOL_COMMAND_TEMPLATES)
    for tool in SUPPORTED_TOOLS:
        override = os.getenv(f"BURNS_{tool.upper()}_COMMAND_TEMPLATE")
        if override is not None:
            templates[tool] = override
    return templates


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}.") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}.") from error


def _env_claim_order(name: str, default: ClaimOrder) -> ClaimOrder:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    try:
        return ClaimOrder(raw)
    except ValueError as error:
        choices = ", ".join(order.value for order in ClaimOrder)
        raise ConfigurationError(f"{name} must be one of: {choices}; got {raw!r}.") from error

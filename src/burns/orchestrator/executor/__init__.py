"""Executor adapters."""

from burns.orchestrator.executor.base import (
    Executor,
    ExecutorRequest,
    ExecutorResult,
    ExecutorRole,
)
from burns.orchestrator.executor.cli_executor import (
    SUPPORTED_TOOLS,
    TOOL_COMMAND_TEMPLATES,
    CliExecutor,
    ExecutorRunError,
)

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_COMMAND_TEMPLATES",
    "CliExecutor",
    "Executor",
    "ExecutorRequest",
    "ExecutorResult",
    "ExecutorRole",
    "ExecutorRunError",
]

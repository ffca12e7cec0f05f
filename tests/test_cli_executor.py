from __future__ import annotations

import shlex
import sys
from pathlib import Path

import allure
import pytest

from burns.orchestrator.executor import echo_agent
from burns.orchestrator.executor.base import ExecutorRequest, ExecutorRole
from burns.orchestrator.executor.cli_executor import (
    TIMEOUT_EXIT_CODE,
    TOOL_COMMAND_TEMPLATES,
    CliExecutor,
    ExecutorRunError,
    _build_run_args,
)

pytestmark = [
    allure.epic("Executor Runtime"),
    allure.feature("CLI Executor"),
]

PYTHON = shlex.quote(sys.executable)


def _request(
    *,
    role: ExecutorRole = ExecutorRole.WORKER,
    context: str = "Role: worker\nAgent ID: worker-1\nTask ID: TASK-001",
    timeout_seconds: int = 30,
    **extra,
) -> ExecutorRequest:
    return ExecutorRequest(
        role=role,
        agent_id=extra.pop("agent_id", "worker-1"),
        context=context,
        instructions="Finish with a signal.",
        timeout_seconds=timeout_seconds,
        **extra,
    )


def test_build_run_args_posix_quotes_placeholders() -> None:
    run_args, command_head, use_stdin = _build_run_args(
        command_template="gemini --prompt {prompt} --file {prompt_file}",
        prompt="hello 'world'",
        prompt_file=Path("logs dir/worker-1.prompt.md"),
        os_name="posix",
    )

    assert run_args == [
        "gemini",
        "--prompt",
        "hello 'world'",
        "--file",
        "logs dir/worker-1.prompt.md",
    ]
    assert command_head == "gemini"
    assert use_stdin is False


def test_build_run_args_windows_returns_command_line() -> None:
    run_args, command_head, use_stdin = _build_run_args(
        command_template="codex exec {prompt}",
        prompt="hello world",
        prompt_file=Path("p.md"),
        os_name="nt",
    )

    assert run_args == 'codex exec "hello world"'
    assert command_head == "codex"
    assert use_stdin is False


def test_build_run_args_without_placeholders_uses_stdin() -> None:
    run_args, command_head, use_stdin = _build_run_args(
        command_template=TOOL_COMMAND_TEMPLATES["claude"],
        prompt="ignored",
        prompt_file=Path("p.md"),
        os_name="posix",
    )

    assert run_args == ["claude", "--dangerously-skip-permissions", "--print"]
    assert command_head == "claude"
    assert use_stdin is True


@pytest.mark.parametrize("template", ["", "   ", "tool --model {model}", "tool {}"])
def test_build_run_args_rejects_bad_templates(template: str) -> None:
    with pytest.raises(ExecutorRunError) as error:
        _build_run_args(
            command_template=template,
            prompt="x",
            prompt_file=Path("p.md"),
            os_name="posix",
        )
    assert error.value.transient is False


def test_echo_agent_answers_per_role(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    prompt_file = tmp_path / "prompt.md"
    monkeypatch.setenv("BURNS_ECHO_FAIL_TASKS", "TASK-009")
    monkeypatch.setenv("BURNS_ECHO_EXECUTIVE_SIGNAL", "SPAWN_PLANNER:docs")
    monkeypatch.delenv("BURNS_ECHO_PLANNER_SIGNAL", raising=False)
    monkeypatch.delenv("BURNS_ECHO_SILENT_TASKS", raising=False)

    def answer(text: str) -> str:
        prompt_file.write_text(text, "utf-8")
        assert echo_agent.main(["--prompt-file", str(prompt_file)]) == 0
        return capsys.readouterr().out

    assert "<burns>TASK_COMPLETE:TASK-001</burns>" in answer("Role: worker\nTask ID: TASK-001\n")
    assert "<burns>TASK_FAILED:TASK-009:" in answer("Role: worker\nTask ID: TASK-009\n")
    assert "<burns>NO_TASKS</burns>" in answer("Role: worker\n")
    assert "<burns>SPAWN_PLANNER:docs</burns>" in answer("Role: executive\n")
    assert "<burns>PLANNING_DONE</burns>" in answer("Role: planner\nArea: general\n")


def test_echo_tool_runs_end_to_end(tmp_path: Path, child_pythonpath: None) -> None:
    transcript = tmp_path / "logs" / "worker-1.out"
    executor = CliExecutor(
        command_template=TOOL_COMMAND_TEMPLATES["echo"],
        scratch_dir=tmp_path / "scratch",
        tool="echo",
    )

    result = executor.run(_request(transcript_path=transcript))

    assert result.exit_code == 0
    assert result.timed_out is False
    assert "<burns>TASK_COMPLETE:TASK-001</burns>" in result.output
    assert transcript.read_text("utf-8") == result.output
    prompt = (tmp_path / "scratch" / "worker-1.prompt.md").read_text("utf-8")
    assert prompt.startswith("Role: worker\n")
    assert "\n\n---\n\nFinish with a signal." in prompt


def test_echo_tool_reports_configured_failure(
    tmp_path: Path,
    child_pythonpath: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BURNS_ECHO_FAIL_TASKS", "TASK-001,TASK-002")
    executor = CliExecutor(
        command_template=TOOL_COMMAND_TEMPLATES["echo"],
        scratch_dir=tmp_path,
    )

    result = executor.run(_request())

    assert "<burns>TASK_FAILED:TASK-001:echo agent was told to fail</burns>" in result.output


def test_template_without_placeholders_reads_prompt_from_stdin(tmp_path: Path) -> None:
    executor = CliExecutor(
        command_template=f'{PYTHON} -c "import sys; print(sys.stdin.read().upper())"',
        scratch_dir=tmp_path,
    )

    result = executor.run(_request())

    assert result.exit_code == 0
    assert "ROLE: WORKER" in result.output
    assert "FINISH WITH A SIGNAL." in result.output


def test_child_environment_carries_identity(tmp_path: Path) -> None:
    script = (
        "import os; "
        "print(os.environ['BURNS_ROLE'], os.environ['BURNS_AGENT_ID'], "
        "os.environ['BURNS_STATE_DIR'], os.path.basename(os.environ['BURNS_PROMPT_FILE']))"
    )
    executor = CliExecutor(
        command_template=f'{PYTHON} -c "{script}" {{prompt_file}}',
        scratch_dir=tmp_path,
        extra_env={"BURNS_STATE_DIR": "/srv/state"},
    )

    result = executor.run(_request(role=ExecutorRole.PLANNER, agent_id="planner-2"))

    assert result.output.strip() == "planner planner-2 /srv/state planner-2.prompt.md"


def test_nonzero_exit_code_is_reported(tmp_path: Path) -> None:
    executor = CliExecutor(
        command_template=f'{PYTHON} -c "import sys; print(7); sys.exit(3)" {{prompt_file}}',
        scratch_dir=tmp_path,
    )

    result = executor.run(_request())

    assert result.exit_code == 3
    assert result.timed_out is False
    assert result.output.strip() == "7"


def test_timeout_terminates_child(tmp_path: Path) -> None:
    executor = CliExecutor(
        command_template=f'{PYTHON} -c "import time; time.sleep(30)" {{prompt_file}}',
        scratch_dir=tmp_path,
        poll_seconds=0.02,
    )

    result = executor.run(_request(timeout_seconds=1))

    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE


def test_heartbeat_fires_while_child_runs(tmp_path: Path) -> None:
    beats: list[int] = []
    executor = CliExecutor(
        command_template=f'{PYTHON} -c "import time; time.sleep(0.6)" {{prompt_file}}',
        scratch_dir=tmp_path,
        poll_seconds=0.02,
    )

    result = executor.run(
        _request(heartbeat=lambda: beats.append(1), heartbeat_interval_seconds=0.1),
    )

    assert result.exit_code == 0
    assert len(beats) >= 2


def test_missing_command_is_not_transient(tmp_path: Path) -> None:
    executor = CliExecutor(
        command_template="burns-no-such-agent-binary {prompt_file}",
        scratch_dir=tmp_path,
    )

    with pytest.raises(ExecutorRunError) as error:
        executor.run(_request())

    assert error.value.transient is False
    assert "burns-no-such-agent-binary" in str(error.value)

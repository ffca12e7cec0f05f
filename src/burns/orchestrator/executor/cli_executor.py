"""Subprocess-based executor for CLI coding agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import time
from pathlib import Path
from typing import IO

from burns.orchestrator.executor.base import ExecutorRequest, ExecutorResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124

TOOL_COMMAND_TEMPLATES: dict[str, str] = {
    "amp": "amp --dangerously-allow-all",
    "claude": "claude --dangerously-skip-permissions --print",
    "codex": "codex exec --sandbox workspace-write {prompt}",
    "gemini": "gemini --approval-mode auto_edit --prompt {prompt}",
    "echo": (
        f"{shlex.quote(sys.executable)} -m burns.orchestrator.executor.echo_agent "
        "--prompt-file {prompt_file}"
    ),
}
SUPPORTED_TOOLS = tuple(TOOL_COMMAND_TEMPLATES)


class ExecutorRunError(RuntimeError):
    """Executor could not run, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliExecutor:
    """Render a command template per invocation and run it as a child process.

    Templates may reference `{prompt}` (prompt text as one argument) and
    `{prompt_file}` (path of the written prompt). A template with neither gets
    the prompt on stdin, which is how `amp` and `claude --print` read it.
    """

    def __init__(
        self,
        *,
        command_template: str,
        scratch_dir: Path,
        tool: str = "custom",
        extra_env: dict[str, str] | None = None,
        poll_seconds: float = 0.1,
    ) -> None:
        self.command_template = command_template
        self.scratch_dir = scratch_dir
        self.tool = tool
        self.extra_env = dict(extra_env or {})
        self.poll_seconds = poll_seconds

    def run(self, request: ExecutorRequest) -> ExecutorResult:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        prompt = request.prompt
        prompt_file = self.scratch_dir / f"{request.agent_id}.prompt.md"
        prompt_file.write_text(prompt, "utf-8")
        transcript_path = request.transcript_path or (
            self.scratch_dir / f"{request.agent_id}.out"
        )
        transcript_path.parent.mkdir(parents=True, exist_ok=True)

        run_args, command_head, use_stdin = _build_run_args(
            command_template=self.command_template,
            prompt=prompt,
            prompt_file=prompt_file,
        )
        env = os.environ.copy()
        env.update(self.extra_env)
        env["BURNS_ROLE"] = request.role.value
        env["BURNS_AGENT_ID"] = request.agent_id
        env["BURNS_PROMPT_FILE"] = str(prompt_file)

        logger.info(
            "Running %s executor for %s (%s)",
            self.tool,
            request.agent_id,
            request.role.value,
        )
        try:
            with transcript_path.open("w", encoding="utf-8") as output_handle:
                if use_stdin:
                    with prompt_file.open("r", encoding="utf-8") as input_handle:
                        exit_code, timed_out = _run_subprocess(
                            run_args=run_args,
                            env=env,
                            stdin=input_handle,
                            output_handle=output_handle,
                            request=request,
                            poll_seconds=self.poll_seconds,
                        )
                else:
                    exit_code, timed_out = _run_subprocess(
                        run_args=run_args,
                        env=env,
                        stdin=subprocess.DEVNULL,
                        output_handle=output_handle,
                        request=request,
                        poll_seconds=self.poll_seconds,
                    )
        except FileNotFoundError as error:
            raise ExecutorRunError(
                f"Executor command not found: {command_head}",
                transient=False,
            ) from error
        except OSError as error:
            raise ExecutorRunError(
                f"Executor failed to start: {error}",
                transient=True,
            ) from error

        output = transcript_path.read_text("utf-8", errors="replace")
        if timed_out:
            logger.warning(
                "Executor for %s timed out after %ss",
                request.agent_id,
                request.timeout_seconds,
            )
        elif exit_code != 0:
            logger.warning("Executor for %s exited with code %d", request.agent_id, exit_code)
        return ExecutorResult(output=output, exit_code=exit_code, timed_out=timed_out)


def _build_run_args(
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    os_name: str | None = None,
) -> tuple[str | list[str], str, bool]:
    stripped = command_template.strip()
    if not stripped:
        raise ExecutorRunError("Executor command template is empty.", transient=False)
    use_stdin = "{prompt}" not in stripped and "{prompt_file}" not in stripped

    current_os_name = os_name or os.name
    try:
        if current_os_name == "nt":
            rendered = stripped.format(
                prompt=subprocess.list2cmdline([prompt]),
                prompt_file=subprocess.list2cmdline([str(prompt_file)]),
            ).strip()
            if not rendered:
                raise ExecutorRunError(
                    "Executor command template rendered empty command.",
                    transient=False,
                )
            return rendered, rendered.split(maxsplit=1)[0], use_stdin

        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise ExecutorRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise ExecutorRunError(
            "Executor command template rendered empty command.",
            transient=False,
        )
    return argv, argv[0], use_stdin


def _run_subprocess(  # noqa: PLR0913
    *,
    run_args: str | list[str],
    env: dict[str, str],
    stdin: IO[str] | int,
    output_handle: IO[str],
    request: ExecutorRequest,
    poll_seconds: float,
) -> tuple[int, bool]:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        stdin=stdin,
        stdout=output_handle,
        stderr=subprocess.STDOUT,
        text=True,
    )
    start_monotonic = time.monotonic()
    last_beat = start_monotonic

    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False

        now = time.monotonic()
        if now - start_monotonic >= request.timeout_seconds:
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True

        if (
            request.heartbeat is not None
            and now - last_beat >= request.heartbeat_interval_seconds
        ):
            request.heartbeat()
            last_beat = now

        time.sleep(poll_seconds)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)

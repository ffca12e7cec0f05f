"""Local deterministic agent for demos and end-to-end tests.

Reads the prompt written by CliExecutor and answers with the signal token a
well-behaved tool would emit for that role. Environment knobs:

- BURNS_ECHO_FAIL_TASKS: comma-separated task ids to report as failed.
- BURNS_ECHO_SILENT_TASKS: comma-separated task ids to answer without a token.
- BURNS_ECHO_EXECUTIVE_SIGNAL: executive token (default CONTINUE).
- BURNS_ECHO_PLANNER_SIGNAL: planner token (default PLANNING_DONE).
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path

from burns.orchestrator.signals import format_token

_ROLE_LINE = re.compile(r"^Role: (\w+)\s*$", re.MULTILINE)
_TASK_LINE = re.compile(r"^Task ID: (\S+)\s*$", re.MULTILINE)


def main(argv: list[str] | None = None) -> int:
    """Answer one prompt with a role-appropriate signal."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8")
    role_match = _ROLE_LINE.search(prompt)
    role = role_match.group(1) if role_match else os.getenv("BURNS_ROLE", "")

    print(f"echo agent: role={role or 'unknown'}")
    if role == "worker":
        task_match = _TASK_LINE.search(prompt)
        if task_match is None:
            print(format_token("NO_TASKS"))
            return 0
        task_id = task_match.group(1)
        if task_id in _env_list("BURNS_ECHO_SILENT_TASKS"):
            print(f"worked on {task_id} but forgot to report")
        elif task_id in _env_list("BURNS_ECHO_FAIL_TASKS"):
            print(format_token(f"TASK_FAILED:{task_id}:echo agent was told to fail"))
        else:
            print(format_token(f"TASK_COMPLETE:{task_id}"))
    elif role == "executive":
        print(format_token(os.getenv("BURNS_ECHO_EXECUTIVE_SIGNAL", "CONTINUE")))
    elif role == "planner":
        print(format_token(os.getenv("BURNS_ECHO_PLANNER_SIGNAL", "PLANNING_DONE")))
    return 0


def _env_list(name: str) -> set[str]:
    return {item.strip() for item in os.getenv(name, "").split(",") if item.strip()}


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

"""Claude Code CLI implementation of the agent driver and task namer."""

from __future__ import annotations

import logging
import re
import shlex
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from taskmux.drivers.base import MultiplexerDriver
from taskmux.drivers.process import run_command
from taskmux.tasks.errors import AgentTimeoutError, ExternalToolError
from taskmux.tasks.naming import is_valid_task_name, sanitize_task_name

logger = logging.getLogger(__name__)

# Heuristic only: matches the trust dialog, the permissions banner, or the
# input box border of an idle session.
READY_PATTERN = re.compile(r"(trust|bypass permissions|╭─|^> $)", re.IGNORECASE | re.MULTILINE)
TRUST_PATTERN = re.compile(r"trust", re.IGNORECASE)

_NAME_PROMPT = (
    "Create a short task name for this task (8-32 lowercase chars, hyphens only, "
    'verb-noun format like "add-login-feature"):\n'
    "{content}\n\n"
    "Respond with ONLY the task name, nothing else."
)


class ClaudeAgentDriver:
    """Drives an interactive ``claude`` session living in a multiplexer pane."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        command: str = "claude --dangerously-skip-permissions",
        name_model: str = "haiku",
        name_timeouts: Sequence[float] = (3.0, 5.0, 10.0),
        ready_max_attempts: int = 60,
        ready_poll_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.command = command
        self.name_model = name_model
        self.name_timeouts = tuple(name_timeouts)
        self.ready_max_attempts = ready_max_attempts
        self.ready_poll_seconds = ready_poll_seconds
        self._sleep = sleep

    def generate_task_name(self, content: str) -> str:
        """Ask a small model for a slug, escalating the timeout on each try."""

        prompt = _NAME_PROMPT.format(content=content)
        last_error: Exception | None = None
        for timeout in self.name_timeouts:
            try:
                raw = run_command(
                    ["claude", "-p", "--model", self.name_model],
                    input_text=prompt,
                    timeout_seconds=timeout,
                )
            except ExternalToolError as error:
                logger.debug("Task name generation attempt failed: %s", error)
                last_error = error
                continue
            name = sanitize_task_name(raw)
            if is_valid_task_name(name):
                return name
            last_error = ValueError(f"Invalid task name format: {name!r}")
        raise ExternalToolError(
            f"Task name generation failed: {last_error}",
            tool="claude",
        )

    def start_command(self, system_prompt_path: Path, env: Mapping[str, str]) -> str:
        exports = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
        launch = f'{self.command} --system-prompt "$(cat {shlex.quote(str(system_prompt_path))})"'
        if not exports:
            return launch
        return f"export {exports} && {launch}"

    def await_ready(self, mux: MultiplexerDriver, target: str) -> None:
        for _ in range(self.ready_max_attempts):
            if READY_PATTERN.search(mux.capture_pane(target, 50)):
                return
            self._sleep(self.ready_poll_seconds)
        raise AgentTimeoutError(
            f"Timeout waiting for agent to be ready after {self.ready_max_attempts} attempts",
            attempts=self.ready_max_attempts,
        )

    def acknowledge_trust_prompt(self, mux: MultiplexerDriver, target: str) -> None:
        if TRUST_PATTERN.search(mux.capture_pane(target, 20)):
            mux.send_keys(target, "y", "Enter")

    def submit_prompt(self, mux: MultiplexerDriver, target: str, text: str) -> None:
        # Escape then Enter submits multi-line input instead of inserting a newline.
        mux.send_literal(target, text)
        self._sleep(0.1)
        mux.send_keys(target, "Escape")
        self._sleep(0.05)
        mux.send_keys(target, "Enter")

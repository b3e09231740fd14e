"""Runtime configuration for task orchestration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

WORK_MODES = ("worktree", "main")
ON_COMPLETE_MODES = ("confirm", "auto-merge", "auto-pr")

STATE_DIR_NAME = ".taskmux"
AGENTS_DIR_NAME = "agents"
QUEUE_DIR_NAME = ".queue"
LOG_FILE_NAME = "log"
PROMPT_FILE_NAME = "PROMPT.md"
AGENT_SETTINGS_LINK = ".claude"


@dataclass(slots=True)
class TimeoutSettings:
    """Bounds for external tool calls and readiness polling."""

    command_timeout_seconds: float = 30.0
    name_generation_timeouts: tuple[float, ...] = (3.0, 5.0, 10.0)
    ready_max_attempts: int = 60
    ready_poll_seconds: float = 0.5


@dataclass(slots=True)
class AgentSettings:
    """Agent CLI launch settings."""

    command: str = "claude --dangerously-skip-permissions"
    name_model: str = "haiku"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    project_dir: Path = field(default_factory=Path.cwd)
    state_dir_name: str = STATE_DIR_NAME
    work_mode: str = "worktree"
    on_complete: str = "confirm"
    session_name: str = ""
    debug: bool = False
    timeouts: TimeoutSettings = field(default_factory=TimeoutSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @property
    def state_dir(self) -> Path:
        return self.project_dir / self.state_dir_name

    @property
    def agents_dir(self) -> Path:
        return self.state_dir / AGENTS_DIR_NAME

    @property
    def queue_dir(self) -> Path:
        return self.state_dir / QUEUE_DIR_NAME

    @property
    def log_path(self) -> Path:
        return self.state_dir / LOG_FILE_NAME

    @property
    def prompt_path(self) -> Path:
        return self.state_dir / PROMPT_FILE_NAME

    @property
    def effective_session_name(self) -> str:
        return self.session_name or self.project_dir.name

    @classmethod
    def from_env(cls, project_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        resolved_project_dir = project_dir or Path(
            os.getenv("TASKMUX_PROJECT_DIR", "") or Path.cwd(),
        )
        return cls(
            project_dir=resolved_project_dir.resolve(),
            state_dir_name=os.getenv("TASKMUX_STATE_DIR_NAME", STATE_DIR_NAME),
            work_mode=os.getenv("TASKMUX_WORK_MODE", "worktree").strip().lower(),
            on_complete=os.getenv("TASKMUX_ON_COMPLETE", "confirm").strip().lower(),
            session_name=os.getenv("TASKMUX_SESSION", "").strip(),
            debug=_env_bool("TASKMUX_DEBUG", default=False),
            timeouts=TimeoutSettings(
                command_timeout_seconds=float(
                    os.getenv("TASKMUX_COMMAND_TIMEOUT_SECONDS", "30"),
                ),
                ready_max_attempts=int(os.getenv("TASKMUX_READY_MAX_ATTEMPTS", "60")),
                ready_poll_seconds=float(os.getenv("TASKMUX_READY_POLL_SECONDS", "0.5")),
            ),
            agent=AgentSettings(
                command=os.getenv(
                    "TASKMUX_AGENT_COMMAND",
                    "claude --dangerously-skip-permissions",
                ),
                name_model=os.getenv("TASKMUX_AGENT_NAME_MODEL", "haiku"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on unsupported values."""

        if self.work_mode not in WORK_MODES:
            raise ValueError(
                f"TASKMUX_WORK_MODE must be one of {', '.join(WORK_MODES)}: "
                f"{self.work_mode!r}",
            )
        if self.on_complete not in ON_COMPLETE_MODES:
            raise ValueError(
                f"TASKMUX_ON_COMPLETE must be one of {', '.join(ON_COMPLETE_MODES)}: "
                f"{self.on_complete!r}",
            )
        if self.timeouts.command_timeout_seconds <= 0:
            raise ValueError("TASKMUX_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.timeouts.ready_max_attempts <= 0:
            raise ValueError("TASKMUX_READY_MAX_ATTEMPTS must be > 0.")
        if self.timeouts.ready_poll_seconds < 0:
            raise ValueError("TASKMUX_READY_POLL_SECONDS must be >= 0.")
        if not self.state_dir_name or "/" in self.state_dir_name:
            raise ValueError(
                f"TASKMUX_STATE_DIR_NAME must be a plain directory name: {self.state_dir_name!r}",
            )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")

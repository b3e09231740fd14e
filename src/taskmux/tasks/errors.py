"""Error taxonomy shared by the task core and its drivers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskmux.tasks.models import CorruptionKind


class TaskmuxError(RuntimeError):
    """Base class for errors surfaced to the operator."""


class TaskNotFoundError(TaskmuxError):
    """Task directory does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Task not found: {name}")
        self.name = name


class NameAllocationError(TaskmuxError):
    """No unique task directory could be allocated."""

    def __init__(self, base_name: str, *, attempts: int) -> None:
        super().__init__(
            f"Failed to create unique task directory for {base_name!r} after {attempts} attempts",
        )
        self.base_name = base_name
        self.attempts = attempts


class ExternalToolError(TaskmuxError):
    """External command exited non-zero, timed out, or could not start."""

    def __init__(
        self,
        message: str,
        *,
        tool: str,
        returncode: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode
        self.timed_out = timed_out


class AgentTimeoutError(ExternalToolError):
    """Agent never reported readiness within the polling budget."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message, tool="agent", timed_out=True)
        self.attempts = attempts


class CorruptionDetectedError(TaskmuxError):
    """Task workspace diverged from the repository."""

    def __init__(self, message: str, *, kind: CorruptionKind) -> None:
        super().__init__(message)
        self.kind = kind


class RepairFailedError(TaskmuxError):
    """Recovery procedure for a corruption kind did not complete."""

    def __init__(self, message: str, *, kind: CorruptionKind | None) -> None:
        super().__init__(message)
        self.kind = kind


class InvalidStatusTransitionError(TaskmuxError):
    """Requested status change is not allowed from the task's current state."""

"""Bounded subprocess execution shared by the CLI-backed drivers."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from taskmux.tasks.errors import ExternalToolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def run_command(  # noqa: PLR0913
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
    strip: bool = True,
) -> str:
    """Run ``args`` and return its stdout.

    Raises ExternalToolError carrying the tool's stderr on non-zero exit, on
    timeout, or when the executable cannot be started.
    """

    tool = args[0] if args else "<empty>"
    logger.debug("exec: %s (cwd=%s)", " ".join(args), cwd or ".")
    try:
        completed = subprocess.run(  # noqa: S603
            list(args),
            cwd=cwd,
            input=input_text,
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except FileNotFoundError as error:
        raise ExternalToolError(f"Command not found: {tool}", tool=tool) from error
    except subprocess.TimeoutExpired as error:
        raise ExternalToolError(
            f"{tool} timed out after {timeout_seconds:g}s: {' '.join(args)}",
            tool=tool,
            timed_out=True,
        ) from error
    except OSError as error:
        raise ExternalToolError(f"{tool} failed to start: {error}", tool=tool) from error

    if completed.returncode != 0:
        stderr = (completed.stderr or "").strip()
        raise ExternalToolError(
            f"{' '.join(args)} exited with {completed.returncode}: {stderr}",
            tool=tool,
            returncode=completed.returncode,
        )
    stdout = completed.stdout or ""
    return stdout.strip() if strip else stdout

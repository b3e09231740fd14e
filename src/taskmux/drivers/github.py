"""GitHub CLI (gh) implementation of the review platform driver."""

from __future__ import annotations

import json
import re
from pathlib import Path

from taskmux.drivers.process import DEFAULT_TIMEOUT_SECONDS, run_command
from taskmux.tasks.errors import ExternalToolError

_PR_NUMBER_RE = re.compile(r"/pull/(\d+)\s*$")


class GhReviewDriver:
    """Creates and inspects pull requests through ``gh``."""

    def __init__(self, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    def _gh(self, root: Path, *args: str) -> str:
        return run_command(["gh", *args], cwd=root, timeout_seconds=self.timeout_seconds)

    def create_request(self, root: Path, title: str, body: str, base: str) -> int:
        args = ["pr", "create", "--title", title, "--body", body]
        if base:
            args.extend(["--base", base])
        output = self._gh(root, *args)
        return parse_pr_number(output)

    def is_merged(self, root: Path, number: int) -> bool:
        output = self._gh(root, "pr", "view", str(number), "--json", "state,mergedAt")
        try:
            payload = json.loads(output)
        except json.JSONDecodeError as error:
            raise ExternalToolError(
                f"Failed to parse PR status for #{number}: {output!r}",
                tool="gh",
            ) from error
        state = str(payload.get("state", "")).upper()
        return state == "MERGED" or bool(payload.get("mergedAt"))


def parse_pr_number(output: str) -> int:
    """Extract the PR number from the URL ``gh pr create`` prints last."""

    lines = [line.strip() for line in output.splitlines() if line.strip()]
    candidate = lines[-1] if lines else ""
    match = _PR_NUMBER_RE.search(candidate)
    if match is None:
        raise ExternalToolError(f"Unexpected PR URL format: {output!r}", tool="gh")
    return int(match.group(1))

"""Detection of tasks whose change-set already reached trunk."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from taskmux.drivers.base import ReviewPlatformDriver, WorkspaceDriver
from taskmux.tasks.errors import ExternalToolError
from taskmux.tasks.models import Task, TaskStatus
from taskmux.tasks.worktree import WorktreeMarkerError, resolve_worktree_head

logger = logging.getLogger(__name__)


class CompletionDetector:
    """Decides whether a task has landed.

    Landed means the review request merged, the branch is listed as merged
    into trunk, or (once the branch is gone) the worktree's own head commit
    is reachable from trunk. Either way the branch must have moved past the
    commit the task started at; a missing branch on its own proves nothing.
    """

    def __init__(
        self,
        *,
        project_dir: Path,
        workspace: WorkspaceDriver,
        review: ReviewPlatformDriver | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.workspace = workspace
        self.review = review

    def is_landed(self, task: Task, trunk: str, merged: set[str] | None = None) -> bool:
        if self._review_merged(task):
            return True

        if self.workspace.branch_exists(self.project_dir, task.branch):
            if merged is None:
                merged = set(self.workspace.merged_branches(self.project_dir, trunk))
            return task.branch in merged and self._branch_moved(task)

        return self._head_reached_trunk(task, trunk)

    def find_landed(self, tasks: Iterable[Task], trunk: str) -> list[Task]:
        merged = set(self.workspace.merged_branches(self.project_dir, trunk))
        landed: list[Task] = []
        for task in tasks:
            if task.status == TaskStatus.WAITING:
                continue
            if self.is_landed(task, trunk, merged):
                task.status = TaskStatus.DONE
                landed.append(task)
                logger.info("Task %s landed in %s", task.name, trunk)
        return landed

    def _review_merged(self, task: Task) -> bool:
        if self.review is None or task.review_id is None:
            return False
        try:
            return self.review.is_merged(self.project_dir, task.review_id)
        except ExternalToolError as error:
            logger.warning("Could not check review #%s for %s: %s", task.review_id, task.name, error)
            return False

    def _branch_moved(self, task: Task) -> bool:
        # A branch cut from trunk with no commits is always listed as merged.
        base = task.load_base_commit()
        if base is None:
            return True
        try:
            head = self.workspace.resolve_commit(self.project_dir, f"refs/heads/{task.branch}")
        except ExternalToolError as error:
            logger.warning("Could not resolve branch %s: %s", task.branch, error)
            return False
        return head != base

    def _head_reached_trunk(self, task: Task, trunk: str) -> bool:
        base = task.load_base_commit()
        if base is None or not task.workspace_path.is_dir():
            return False
        try:
            head = resolve_worktree_head(task.workspace_path)
        except (WorktreeMarkerError, OSError):
            return False
        if head == base:
            return False
        return self.workspace.is_ancestor(self.project_dir, head, trunk)

"""Diagnosis and repair of tasks whose worktree drifted from the repository."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from taskmux.drivers.base import WorkspaceDriver
from taskmux.tasks.errors import ExternalToolError, RepairFailedError
from taskmux.tasks.models import CorruptionKind, Task, TaskStatus
from taskmux.tasks.worktree import (
    GIT_MARKER_NAME,
    WorktreeMarkerError,
    copy_tree_contents,
    has_valid_marker,
    resolve_worktree_head,
)

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


class CorruptionDetector:
    """Compares each task's expected worktree with git's view of it.

    Only tasks without a live handler should be passed in; a running agent
    owns its worktree and is never second-guessed.
    """

    def __init__(self, *, project_dir: Path, workspace: WorkspaceDriver) -> None:
        self.project_dir = project_dir
        self.workspace = workspace

    def registered_paths(self) -> set[Path]:
        return {_normalize(entry.path) for entry in self.workspace.list_worktrees(self.project_dir)}

    def diagnose(self, task: Task, registered: set[Path]) -> CorruptionKind | None:
        worktree = task.workspace_path

        if not worktree.exists() and not worktree.is_symlink():
            if self.workspace.branch_exists(self.project_dir, task.branch):
                return CorruptionKind.MISSING_WORKTREE
            # Never materialized, or already fully torn down.
            return None

        if not worktree.is_dir() or not has_valid_marker(worktree):
            return CorruptionKind.INVALID_GIT

        if _normalize(worktree) not in registered:
            return CorruptionKind.NOT_IN_GIT

        if not self.workspace.branch_exists(self.project_dir, task.branch):
            return CorruptionKind.MISSING_BRANCH

        return None

    def find_corrupted(self, tasks: Iterable[Task]) -> list[Task]:
        """Diagnose every task; the worktree registry is read once per sweep."""

        registered = self.registered_paths()
        corrupted: list[Task] = []
        for task in tasks:
            kind = self.diagnose(task, registered)
            if kind is None:
                continue
            task.status = TaskStatus.CORRUPTED
            task.corruption = kind
            corrupted.append(task)
            logger.warning("Task %s is corrupted: %s", task.name, kind.description)
        return corrupted


class RecoveryEngine:
    """Applies the single repair procedure defined for each corruption kind."""

    def __init__(self, *, project_dir: Path, workspace: WorkspaceDriver) -> None:
        self.project_dir = project_dir
        self.workspace = workspace

    def recover(self, task: Task) -> None:
        kind = task.corruption
        handlers = {
            CorruptionKind.MISSING_WORKTREE: self._recover_missing_worktree,
            CorruptionKind.NOT_IN_GIT: self._recover_not_in_git,
            CorruptionKind.INVALID_GIT: self._recover_invalid_git,
            CorruptionKind.MISSING_BRANCH: self._recover_missing_branch,
        }
        handler = handlers.get(kind) if kind is not None else None
        if handler is None:
            raise RepairFailedError(f"Unknown corruption reason: {kind}", kind=kind)

        logger.info("Recovering task %s: %s", task.name, kind.repair_action)
        try:
            handler(task)
        except RepairFailedError:
            raise
        except (ExternalToolError, OSError, WorktreeMarkerError) as error:
            raise RepairFailedError(
                f"Failed to recover task {task.name} ({kind.value}): {error}",
                kind=kind,
            ) from error
        task.corruption = None
        task.load_status()
        logger.info("Recovered task %s", task.name)

    def _recover_missing_worktree(self, task: Task) -> None:
        # git refuses to add a path it still has registered.
        self._prune()
        self.workspace.add_worktree(
            self.project_dir,
            task.workspace_path,
            task.branch,
            create_branch=False,
        )

    def _recover_not_in_git(self, task: Task) -> None:
        shutil.rmtree(task.workspace_path)
        self._prune()
        create_branch = not self.workspace.branch_exists(self.project_dir, task.branch)
        self.workspace.add_worktree(
            self.project_dir,
            task.workspace_path,
            task.branch,
            create_branch=create_branch,
        )

    def _recover_invalid_git(self, task: Task) -> None:
        worktree = task.workspace_path
        backup = worktree.with_name(worktree.name + BACKUP_SUFFIX)
        create_branch = not self.workspace.branch_exists(self.project_dir, task.branch)

        if backup.exists():
            raise RepairFailedError(
                f"Backup directory already exists: {backup}",
                kind=CorruptionKind.INVALID_GIT,
            )
        worktree.rename(backup)
        self._prune()

        try:
            self.workspace.add_worktree(
                self.project_dir,
                worktree,
                task.branch,
                create_branch=create_branch,
            )
        except ExternalToolError:
            if worktree.exists():
                shutil.rmtree(worktree, ignore_errors=True)
            backup.rename(worktree)
            raise

        if backup.is_dir() and not backup.is_symlink():
            copy_tree_contents(backup, worktree, exclude=(GIT_MARKER_NAME,))
            shutil.rmtree(backup, ignore_errors=True)
        else:
            backup.unlink(missing_ok=True)

    def _recover_missing_branch(self, task: Task) -> None:
        head = resolve_worktree_head(task.workspace_path)
        self.workspace.create_branch(self.project_dir, task.branch, head)

    def _prune(self) -> None:
        try:
            self.workspace.prune_worktrees(self.project_dir)
        except ExternalToolError as error:
            logger.warning("worktree prune failed: %s", error)


def _normalize(path: Path) -> Path:
    return Path(path).resolve(strict=False)

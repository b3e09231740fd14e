"""Task store: allocation, reconstruction and teardown of task directories."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Collection
from pathlib import Path

from taskmux.drivers.base import TaskNamer, WorkspaceDriver
from taskmux.tasks.errors import (
    ExternalToolError,
    InvalidStatusTransitionError,
    NameAllocationError,
    TaskNotFoundError,
)
from taskmux.tasks.models import SIGNALED_STATUSES, Task, TaskStatus
from taskmux.tasks.naming import fallback_task_name, sanitize_task_name
from taskmux.tasks.worktree import copy_untracked_files

logger = logging.getLogger(__name__)

MAX_NAME_SUFFIX = 100


class TaskManager:
    """Creates, loads and tears down tasks under ``agents_dir``.

    Nothing is cached between calls: every load rebuilds the task from the
    marker files on disk so that separate process invocations agree.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        agents_dir: Path,
        project_dir: Path,
        workspace: WorkspaceDriver,
        namer: TaskNamer | None = None,
        isolation: bool = True,
        agent_settings_dir: Path | None = None,
    ) -> None:
        self.agents_dir = agents_dir
        self.project_dir = project_dir
        self.workspace = workspace
        self.namer = namer
        self.isolation = isolation
        self.agent_settings_dir = agent_settings_dir

    def create_task(self, content: str) -> Task:
        base_name = self._candidate_name(content)
        agent_dir = self._allocate_directory(base_name)
        task = Task(name=agent_dir.name, agent_dir=agent_dir)
        try:
            task.save_content(content)
        except OSError:
            task.remove()
            raise
        logger.info("Created task %s", task.name)
        return task

    def _candidate_name(self, content: str) -> str:
        if self.namer is not None:
            try:
                name = sanitize_task_name(self.namer.generate_task_name(content))
            except Exception as error:  # noqa: BLE001
                logger.warning("Task name generation failed, using fallback: %s", error)
            else:
                if name:
                    return name
        return fallback_task_name()

    def _allocate_directory(self, base_name: str) -> Path:
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        for attempt in range(MAX_NAME_SUFFIX + 1):
            name = base_name if attempt == 0 else f"{base_name}-{attempt}"
            candidate = self.agents_dir / name
            try:
                candidate.mkdir()
            except FileExistsError:
                continue
            return candidate
        raise NameAllocationError(base_name, attempts=MAX_NAME_SUFFIX + 1)

    def get_task(self, name: str) -> Task:
        agent_dir = self.agents_dir / name
        if not agent_dir.is_dir():
            raise TaskNotFoundError(name)

        task = Task(name=name, agent_dir=agent_dir)
        # A missing content file means the task is still being created.
        task.load_content()
        task.load_status()
        if task.has_lock():
            task.load_handler_id()
        task.load_review_id()
        return task

    def list_tasks(self) -> list[Task]:
        try:
            entries = sorted(self.agents_dir.iterdir())
        except FileNotFoundError:
            return []

        tasks: list[Task] = []
        for entry in entries:
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            try:
                tasks.append(self.get_task(entry.name))
            except (OSError, ValueError, TaskNotFoundError) as error:
                logger.warning("Skipping unreadable task %s: %s", entry.name, error)
        return tasks

    def find_task_by_handler(self, handler_id: str) -> Task | None:
        for task in self.list_tasks():
            if task.handler_id == handler_id:
                return task
        return None

    def find_incomplete_tasks(self, active_handler_ids: Collection[str]) -> list[Task]:
        """Tasks that hold the lock but whose handler window is gone or was never registered."""

        incomplete: list[Task] = []
        for task in self.list_tasks():
            if not task.has_lock():
                continue
            if task.handler_id is None or task.handler_id not in active_handler_ids:
                task.status = TaskStatus.PENDING
                incomplete.append(task)
        return incomplete

    def mark_status(self, task: Task, status: TaskStatus) -> Task:
        if status not in SIGNALED_STATUSES:
            raise InvalidStatusTransitionError(f"Status {status.value} cannot be signaled")
        if not task.has_lock():
            raise InvalidStatusTransitionError(
                f"Task {task.name} has no active handler; cannot mark it {status.value}",
            )
        task.save_signaled_status(status)
        logger.info("Task %s marked %s", task.name, status.value)
        return task

    def working_directory(self, task: Task) -> Path:
        return task.workspace_path if self.isolation else self.project_dir

    def setup_workspace(self, task: Task) -> None:
        """Materialize the isolated working tree, carrying uncommitted trunk state into it."""

        if not self.isolation:
            return

        worktree = task.workspace_path
        snapshot = self._best_effort_snapshot()
        untracked = self._best_effort_untracked()
        try:
            base_commit = self.workspace.resolve_commit(self.project_dir, "HEAD")
        except ExternalToolError as error:
            logger.warning("Could not resolve trunk HEAD for %s: %s", task.name, error)
            base_commit = ""

        self.workspace.add_worktree(self.project_dir, worktree, task.branch, create_branch=True)
        logger.info("Created worktree %s on branch %s", worktree, task.branch)
        if base_commit:
            task.save_base_commit(base_commit)

        if snapshot:
            try:
                self.workspace.stash_apply(worktree, snapshot)
            except ExternalToolError as error:
                logger.warning("Failed to apply uncommitted changes to %s: %s", worktree, error)
        if untracked:
            copy_untracked_files(untracked, self.project_dir, worktree)
        self._link_agent_settings(worktree)

    def _best_effort_snapshot(self) -> str:
        try:
            return self.workspace.stash_create(self.project_dir)
        except ExternalToolError as error:
            logger.warning("Failed to snapshot uncommitted changes: %s", error)
            return ""

    def _best_effort_untracked(self) -> list[str]:
        try:
            return self.workspace.untracked_files(self.project_dir)
        except ExternalToolError as error:
            logger.warning("Failed to list untracked files: %s", error)
            return []

    def _link_agent_settings(self, worktree: Path) -> None:
        if self.agent_settings_dir is None or not self.agent_settings_dir.exists():
            return
        link = worktree / self.agent_settings_dir.name
        if link.exists() or link.is_symlink():
            return
        try:
            link.symlink_to(self.agent_settings_dir)
        except OSError as error:
            logger.warning("Failed to link agent settings into %s: %s", worktree, error)

    def cleanup_task(self, task: Task) -> None:
        """Tear down workspace, branch and record; every step tolerates failure."""

        self.teardown_workspace(task)
        if task.exists():
            task.remove()
            logger.info("Removed task %s", task.name)

    def teardown_workspace(self, task: Task) -> None:
        if not self.isolation:
            return

        worktree = task.workspace_path
        if worktree.exists() or worktree.is_symlink():
            try:
                self.workspace.remove_worktree(self.project_dir, worktree, force=True)
            except ExternalToolError as error:
                logger.warning("worktree remove failed for %s, deleting: %s", worktree, error)
            if worktree.exists():
                shutil.rmtree(worktree, ignore_errors=True)

        try:
            self.workspace.prune_worktrees(self.project_dir)
        except ExternalToolError as error:
            logger.warning("worktree prune failed: %s", error)

        try:
            if self.workspace.branch_exists(self.project_dir, task.branch):
                self.workspace.delete_branch(self.project_dir, task.branch, force=True)
        except ExternalToolError as error:
            logger.warning("Failed to delete branch %s: %s", task.branch, error)

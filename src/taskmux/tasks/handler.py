"""Task lifecycle: handle, end, bulk merge and the session-attach sweep."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from taskmux.drivers.base import (
    AgentDriver,
    MultiplexerDriver,
    ReviewPlatformDriver,
    WindowOpts,
    WorkspaceDriver,
)
from taskmux.logging_setup import set_log_task
from taskmux.tasks.backlog import BacklogQueue
from taskmux.tasks.completion import CompletionDetector
from taskmux.tasks.errors import (
    AgentTimeoutError,
    CorruptionDetectedError,
    ExternalToolError,
)
from taskmux.tasks.manager import TaskManager
from taskmux.tasks.models import CorruptionKind, Task, TaskStatus
from taskmux.tasks.recovery import CorruptionDetector, RecoveryEngine

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"
AGENT_PANE_SUFFIX = ".0"
AUTO_COMMIT_MESSAGE = "chore: auto-commit on task end"


@dataclass(slots=True)
class HandleResult:
    """Outcome of one attempt to take ownership of a task."""

    task: Task
    acquired: bool
    handler_id: str | None = None


@dataclass(slots=True)
class EndResult:
    """What ending a task actually did."""

    task: Task
    committed: bool = False
    pushed: bool = False
    merged: bool = False
    review_id: int | None = None
    cleaned_up: bool = False
    next_task: str | None = None
    messages: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MergeOutcome:
    name: str
    merged: bool
    message: str


@dataclass(slots=True)
class SweepReport:
    """Reconciliation of the task population at session attach."""

    live: list[Task] = field(default_factory=list)
    landed: list[Task] = field(default_factory=list)
    corrupted: list[Task] = field(default_factory=list)
    incomplete: list[Task] = field(default_factory=list)


class TaskHandler:
    """Composes the task store with the external drivers.

    Every public method is meant to be called from a short-lived process; the
    handler lock is the only coordination between concurrent invocations.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        manager: TaskManager,
        backlog: BacklogQueue,
        workspace: WorkspaceDriver,
        mux: MultiplexerDriver,
        agent: AgentDriver,
        review: ReviewPlatformDriver | None = None,
        is_git_repo: bool = True,
        on_complete: str = "confirm",
        session_name: str = "",
        prompt_path: Path | None = None,
        settle_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.manager = manager
        self.backlog = backlog
        self.workspace = workspace
        self.mux = mux
        self.agent = agent
        self.review = review
        self.is_git_repo = is_git_repo
        self.on_complete = on_complete
        self.session_name = session_name
        self.prompt_path = prompt_path
        self.settle_seconds = settle_seconds
        self._sleep = sleep
        self.detector = CorruptionDetector(project_dir=manager.project_dir, workspace=workspace)
        self.recovery = RecoveryEngine(project_dir=manager.project_dir, workspace=workspace)
        self.completion = CompletionDetector(
            project_dir=manager.project_dir,
            workspace=workspace,
            review=review,
        )

    @property
    def project_dir(self) -> Path:
        return self.manager.project_dir

    # Handle

    def new_task(self, content: str) -> HandleResult:
        task = self.manager.create_task(content)
        return self.handle_task(task.name)

    def handle_task(self, name: str) -> HandleResult:
        set_log_task(name)
        task = self.manager.get_task(name)
        if not task.acquire_lock():
            logger.info("Task %s already being handled", name)
            return HandleResult(task=task, acquired=False, handler_id=task.load_handler_id())
        return self._handle_locked(task)

    def _handle_locked(self, task: Task) -> HandleResult:
        name = task.name
        created_workspace = False
        try:
            if self.manager.isolation and not task.workspace_path.exists():
                logger.info("Creating worktree for %s", name)
                self.manager.setup_workspace(task)
                created_workspace = True
            task.status = TaskStatus.WORKING
            handler_id = self.mux.new_window(
                WindowOpts(
                    name=task.window_name(),
                    start_dir=self.manager.working_directory(task),
                ),
            )
        except Exception:
            if created_workspace:
                self.manager.teardown_workspace(task)
            task.release_lock()
            raise

        task.save_handler_id(handler_id)
        logger.info("Task %s handled by window %s", name, handler_id)
        self._start_agent(task, handler_id)
        return HandleResult(task=task, acquired=True, handler_id=handler_id)

    def _start_agent(self, task: Task, handler_id: str) -> None:
        target = handler_id + AGENT_PANE_SUFFIX
        workdir = self.manager.working_directory(task)
        task.system_prompt_file.write_text(self._system_prompt(), "utf-8")
        task.user_prompt_file.write_text(self._user_prompt(task, workdir), "utf-8")

        env = {
            "TASK_NAME": task.name,
            "PROJECT_DIR": str(self.project_dir),
            "WINDOW_ID": handler_id,
            "ON_COMPLETE": self.on_complete,
            "SESSION_NAME": self.session_name,
        }
        if self.manager.isolation:
            env["WORKTREE_DIR"] = str(workdir)

        try:
            self.mux.split_window(handler_id, horizontal=True)
            self.mux.send_literal(target, self.agent.start_command(task.system_prompt_file, env))
            self.mux.send_keys(target, "Enter")
        except ExternalToolError as error:
            logger.warning("Failed to launch agent for %s: %s", task.name, error)
            return

        try:
            self.agent.await_ready(self.mux, target)
        except AgentTimeoutError as error:
            logger.warning("Timeout waiting for agent: %s", error)
        try:
            self.agent.acknowledge_trust_prompt(self.mux, target)
            self._sleep(self.settle_seconds)
            self.agent.submit_prompt(
                self.mux,
                target,
                f"Read and execute the task from '{task.user_prompt_file}'",
            )
        except ExternalToolError as error:
            logger.warning("Failed to send task instruction to %s: %s", task.name, error)
            return
        logger.info("Task %s started", task.name)

    def _system_prompt(self) -> str:
        if self.prompt_path is None or not self.prompt_path.is_file():
            return ""
        return self.prompt_path.read_text("utf-8")

    def _user_prompt(self, task: Task, workdir: Path) -> str:
        lines = [f"# Task: {task.name}", ""]
        if self.manager.isolation:
            lines.append(f"**Worktree**: {workdir}")
        lines.extend([f"**Project**: {self.project_dir}", "", task.content])
        return "\n".join(lines)

    # Status signals

    def signal_status(self, name: str, status: TaskStatus) -> Task:
        task = self.manager.mark_status(self.manager.get_task(name), status)
        if task.handler_id:
            try:
                self.mux.rename_window(task.handler_id, task.window_name())
            except ExternalToolError as error:
                logger.warning("Failed to rename window for %s: %s", name, error)
        return task

    # End

    def end_task(self, task: Task, *, merge: bool | None = None) -> EndResult:
        result = EndResult(task=task)
        auto_merge = self.on_complete == "auto-merge" if merge is None else merge
        if self.is_git_repo:
            self._commit_and_push(task, result)
            if auto_merge and self.manager.isolation:
                if not self._merge_into_trunk(task, result):
                    self._mark_waiting(task)
                    return result
            elif self.on_complete == "auto-pr" and self.manager.isolation and self.review:
                self._open_review(task, result)
                return result

        self._teardown(task, result)
        return result

    def _commit_and_push(self, task: Task, result: EndResult) -> None:
        workdir = self.manager.working_directory(task)
        try:
            if self.workspace.has_changes(workdir):
                logger.info("Committing changes for %s", task.name)
                self.workspace.add_all(workdir)
                stat = self.workspace.diff_stat(workdir)
                self.workspace.commit(workdir, f"{AUTO_COMMIT_MESSAGE}\n\n{stat}")
                result.committed = True
        except ExternalToolError as error:
            logger.warning("Auto-commit failed for %s: %s", task.name, error)
            result.messages.append(f"Auto-commit failed: {error}")

        if not self.manager.isolation:
            return
        try:
            self.workspace.push(workdir, DEFAULT_REMOTE, task.branch, set_upstream=True)
            result.pushed = True
        except ExternalToolError as error:
            logger.warning("Push failed for %s: %s", task.name, error)
            result.messages.append(f"Push failed: {error}")

    def _merge_into_trunk(self, task: Task, result: EndResult) -> bool:
        trunk = self.workspace.main_branch(self.project_dir)
        try:
            self.workspace.fetch(self.project_dir, DEFAULT_REMOTE)
        except ExternalToolError as error:
            logger.warning("Fetch failed: %s", error)
        try:
            self.workspace.checkout(self.project_dir, trunk)
        except ExternalToolError as error:
            logger.warning("Failed to checkout %s: %s", trunk, error)
            result.messages.append(f"Failed to checkout {trunk}: {error}")
            return False
        try:
            self.workspace.pull(self.project_dir)
        except ExternalToolError as error:
            logger.warning("Pull failed: %s", error)

        if not self._merge_branch(task, trunk, result):
            return False
        try:
            self.workspace.push(self.project_dir, DEFAULT_REMOTE, trunk, set_upstream=False)
        except ExternalToolError as error:
            logger.warning("Push of %s failed: %s", trunk, error)
            result.messages.append(f"Push of {trunk} failed: {error}")
        return True

    def _merge_branch(self, task: Task, trunk: str, result: EndResult) -> bool:
        try:
            self.workspace.merge(
                self.project_dir,
                task.branch,
                no_ff=True,
                message=f"Merge branch '{task.branch}'",
            )
        except ExternalToolError as error:
            logger.warning("Merge of %s failed, needs manual resolution: %s", task.name, error)
            result.messages.append(f"Merge of {task.branch} into {trunk} failed: {error}")
            try:
                self.workspace.merge_abort(self.project_dir)
            except ExternalToolError as abort_error:
                logger.warning("merge --abort failed: %s", abort_error)
            return False
        result.merged = True
        logger.info("Merged %s into %s", task.branch, trunk)
        return True

    def _open_review(self, task: Task, result: EndResult) -> None:
        if task.review_id is None:
            trunk = self.workspace.main_branch(self.project_dir)
            first_line = task.content.strip().splitlines()[0] if task.content.strip() else task.name
            review_id = self.review.create_request(
                self.manager.working_directory(task),
                first_line,
                task.content,
                trunk,
            )
            task.save_review_id(review_id)
            logger.info("Opened review #%s for %s", review_id, task.name)
        result.review_id = task.review_id
        if task.has_lock():
            self.manager.mark_status(task, TaskStatus.DONE)

    def _mark_waiting(self, task: Task) -> None:
        if task.has_lock():
            self.signal_status(task.name, TaskStatus.WAITING)

    def _teardown(self, task: Task, result: EndResult) -> None:
        handler_id = task.handler_id
        self.manager.cleanup_task(task)
        result.cleaned_up = True
        if handler_id:
            try:
                self.mux.kill_window(handler_id)
            except ExternalToolError as error:
                logger.warning("Failed to kill window %s: %s", handler_id, error)
        next_result = self.process_queue()
        if next_result is not None:
            result.next_task = next_result.task.name

    # Backlog

    def process_queue(self) -> HandleResult | None:
        entry = self.backlog.pop()
        if entry is None:
            return None
        logger.info("Starting task from backlog entry %03d", entry.number)
        return self.new_task(entry.content)

    # Bulk merge

    def merge_completed(self) -> list[MergeOutcome]:
        if not self.is_git_repo:
            raise ExternalToolError(
                "merge-completed only works in git repositories",
                tool="git",
            )
        trunk = self.workspace.main_branch(self.project_dir)
        outcomes: list[MergeOutcome] = []
        for task in self.manager.list_tasks():
            if task.status != TaskStatus.DONE:
                continue
            scratch = EndResult(task=task)
            self._commit_and_push(task, scratch)
            if not self.completion.is_landed(task, trunk) and not self._merge_branch(
                task,
                trunk,
                scratch,
            ):
                outcomes.append(MergeOutcome(task.name, False, "; ".join(scratch.messages)))
                continue
            self._teardown(task, scratch)
            outcomes.append(MergeOutcome(task.name, True, f"Merged {task.branch} into {trunk}"))
        return outcomes

    # Session attach

    def active_handler_ids(self) -> set[str]:
        try:
            return {window.window_id for window in self.mux.list_windows()}
        except ExternalToolError as error:
            # The session may not exist yet.
            logger.debug("Could not list windows: %s", error)
            return set()

    def sweep(self, *, cleanup_landed: bool = True) -> SweepReport:
        """Classify every task without a live handler.

        Completion runs first: a landed task is never reported as corrupted
        even when its branch is gone. Landed tasks are cleaned up unless
        ``cleanup_landed`` is False, which leaves the sweep read-only.
        """

        report = SweepReport()
        active = self.active_handler_ids()
        candidates: list[Task] = []
        for task in self.manager.list_tasks():
            if task.has_lock() and task.handler_id in active:
                report.live.append(task)
            else:
                candidates.append(task)

        if not self.is_git_repo:
            report.incomplete = [task for task in candidates if task.has_lock()]
            return report

        trunk = self.workspace.main_branch(self.project_dir)
        landed = self.completion.find_landed(candidates, trunk)
        if cleanup_landed:
            for task in landed:
                self.manager.cleanup_task(task)
        report.landed = landed

        landed_names = {task.name for task in landed}
        remaining = [task for task in candidates if task.name not in landed_names]
        if self.manager.isolation:
            report.corrupted = self.detector.find_corrupted(remaining)
        corrupted_names = {task.name for task in report.corrupted}
        report.incomplete = [
            task
            for task in remaining
            if task.has_lock() and task.name not in corrupted_names
        ]
        for task in report.incomplete:
            task.status = TaskStatus.PENDING
        return report

    def resume_task(self, name: str) -> HandleResult:
        """Re-handle a task whose handler died, refusing corrupted worktrees."""

        task = self.manager.get_task(name)
        stale_owner = task.lock_owner()
        if task.has_lock() and task.handler_id in self.active_handler_ids():
            return HandleResult(task=task, acquired=False, handler_id=task.handler_id)
        if self.manager.isolation and self.is_git_repo:
            kind = self.detector.diagnose(task, self.detector.registered_paths())
            if kind is not None:
                raise CorruptionDetectedError(
                    f"Task {name} is corrupted: {kind.description}",
                    kind=kind,
                )
        if not task.has_lock():
            return self.handle_task(name)
        if not task.take_over_lock(stale_owner):
            logger.info("Task %s was resumed by another process", name)
            return HandleResult(task=task, acquired=False, handler_id=task.load_handler_id())
        logger.info("Took over stale lock of %s", name)
        return self._handle_locked(task)

    def recover_task(self, name: str) -> CorruptionKind | None:
        task = self.manager.get_task(name)
        if task.has_lock() and task.handler_id in self.active_handler_ids():
            logger.info("Task %s has a live handler; not inspecting it", name)
            return None
        kind = self.detector.diagnose(task, self.detector.registered_paths())
        if kind is None:
            return None
        task.corruption = kind
        task.status = TaskStatus.CORRUPTED
        self.recovery.recover(task)
        return kind

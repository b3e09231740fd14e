"""Controllers for taskmux CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from taskmux.config import AGENT_SETTINGS_LINK, Settings
from taskmux.drivers import ClaudeAgentDriver, GhReviewDriver, GitWorkspaceDriver, TmuxDriver
from taskmux.logging_setup import set_log_task
from taskmux.tasks.backlog import BacklogQueue
from taskmux.tasks.errors import TaskNotFoundError
from taskmux.tasks.handler import TaskHandler
from taskmux.tasks.manager import TaskManager
from taskmux.tasks.models import CorruptionKind, Task, TaskStatus


@dataclass(slots=True)
class NewTaskCommand:
    """CLI input for creating and handling a task."""

    project_dir: Path | None
    content: str
    queue: bool = False


@dataclass(slots=True)
class HandleTaskCommand:
    """CLI input for taking ownership of an existing task."""

    project_dir: Path | None
    name: str
    resume: bool = False


@dataclass(slots=True)
class EndTaskCommand:
    """CLI input for ending a task by name or handler window id."""

    project_dir: Path | None
    name: str | None
    window_id: str | None
    merge: bool | None = None


@dataclass(slots=True)
class SignalStatusCommand:
    """CLI input for an agent-signaled status change."""

    project_dir: Path | None
    name: str
    status: str


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    project_dir: Path | None
    status: str | None = None


@dataclass(slots=True)
class TaskNameCommand:
    """CLI input for commands acting on a single task."""

    project_dir: Path | None
    name: str


@dataclass(slots=True)
class RecoverCommand:
    """CLI input for corruption repair."""

    project_dir: Path | None
    name: str | None
    dry_run: bool = False


@dataclass(slots=True)
class SweepCommand:
    """CLI input for the session-attach sweep."""

    project_dir: Path | None
    resume: bool = False
    repair: bool = False


@dataclass(slots=True)
class ProjectCommand:
    """CLI input for commands that only need the project."""

    project_dir: Path | None


@dataclass(slots=True)
class QueueAddCommand:
    """CLI input for adding a backlog entry."""

    project_dir: Path | None
    content: str


@dataclass(slots=True)
class CliResult:
    """Lines to render plus the success flag that drives the exit code."""

    lines: list[str]
    success: bool = True


HandlerFactory = Callable[[Settings], TaskHandler]


class TaskmuxCliController:
    """Coordinates task, backlog and recovery CLI operations."""

    def __init__(self, handler_factory: HandlerFactory | None = None) -> None:
        self.handler_factory = handler_factory or build_handler

    def _settings(self, project_dir: Path | None) -> Settings:
        settings = Settings.from_env(project_dir=project_dir)
        settings.validate()
        return settings

    def _handler(self, project_dir: Path | None) -> TaskHandler:
        return self.handler_factory(self._settings(project_dir))

    def new_task(self, command: NewTaskCommand) -> list[str]:
        if command.queue:
            return self.queue_add(QueueAddCommand(command.project_dir, command.content))
        handler = self._handler(command.project_dir)
        result = handler.new_task(command.content)
        return [
            f"Task created: name={result.task.name}",
            _handle_line(result.task, acquired=result.acquired, handler_id=result.handler_id),
        ]

    def handle_task(self, command: HandleTaskCommand) -> list[str]:
        set_log_task(command.name)
        handler = self._handler(command.project_dir)
        result = (
            handler.resume_task(command.name)
            if command.resume
            else handler.handle_task(command.name)
        )
        return [_handle_line(result.task, acquired=result.acquired, handler_id=result.handler_id)]

    def end_task(self, command: EndTaskCommand) -> CliResult:
        handler = self._handler(command.project_dir)
        task = _resolve_task(handler, name=command.name, window_id=command.window_id)
        set_log_task(task.name)
        result = handler.end_task(task, merge=command.merge)

        lines = [f"Ending task {task.name}"]
        if result.committed:
            lines.append("Committed pending changes")
        if result.pushed:
            lines.append(f"Pushed branch {task.branch}")
        if result.merged:
            lines.append(f"Merged {task.branch}")
        if result.review_id is not None:
            lines.append(f"Review request: #{result.review_id}")
        lines.extend(result.messages)
        if result.cleaned_up:
            lines.append("Cleanup completed")
        if result.next_task:
            lines.append(f"Started next backlog task: {result.next_task}")
        return CliResult(lines=lines, success=result.cleaned_up or result.review_id is not None)

    def signal_status(self, command: SignalStatusCommand) -> list[str]:
        set_log_task(command.name)
        handler = self._handler(command.project_dir)
        task = handler.signal_status(command.name, TaskStatus(command.status))
        return [f"Task {task.name}: status={task.status.value}"]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        manager = self._handler(command.project_dir).manager
        tasks = manager.list_tasks()
        if command.status:
            tasks = [task for task in tasks if task.status.value == command.status]
        if not tasks:
            return ["No tasks."]
        return [_task_line(task) for task in tasks]

    def show_task(self, command: TaskNameCommand) -> list[str]:
        manager = self._handler(command.project_dir).manager
        task = manager.get_task(command.name)
        return [
            f"name={task.name}",
            f"status={task.status.value}",
            f"handler={task.handler_id or '-'}",
            f"review={task.review_id if task.review_id is not None else '-'}",
            f"workdir={manager.working_directory(task)}",
            "",
            task.content,
        ]

    def cleanup_task(self, command: TaskNameCommand) -> list[str]:
        set_log_task(command.name)
        handler = self._handler(command.project_dir)
        try:
            task = handler.manager.get_task(command.name)
        except TaskNotFoundError:
            return [f"Task {command.name} already cleaned up"]
        handler.manager.cleanup_task(task)
        return [f"Task {command.name} cleaned up"]

    def recover(self, command: RecoverCommand) -> CliResult:
        handler = self._handler(command.project_dir)
        if command.name is not None:
            set_log_task(command.name)
            if command.dry_run:
                task = handler.manager.get_task(command.name)
                kind = handler.detector.diagnose(task, handler.detector.registered_paths())
                return CliResult(lines=[_diagnosis_line(command.name, kind)])
            kind = handler.recover_task(command.name)
            if kind is None:
                return CliResult(lines=[f"Task {command.name} is healthy"])
            return CliResult(lines=[f"Task {command.name} recovered ({kind.value})"])

        report = handler.sweep(cleanup_landed=False)
        lines = [
            f"Landed: {task.name} (left in place; attach-sweep cleans it up)"
            for task in report.landed
        ]
        lines.extend(
            f"Corrupted: {task.name} ({task.corruption.value})" for task in report.corrupted
        )
        if not report.corrupted:
            lines.append("No corrupted tasks.")
            return CliResult(lines=lines)
        if command.dry_run:
            return CliResult(lines=lines)
        return self._repair_all(handler, report.corrupted, lines)

    def _repair_all(self, handler: TaskHandler, tasks: list[Task], lines: list[str]) -> CliResult:
        success = True
        for task in tasks:
            try:
                handler.recovery.recover(task)
            except Exception as error:  # noqa: BLE001
                success = False
                lines.append(f"Failed to recover {task.name}: {error}")
                continue
            lines.append(f"Recovered {task.name}")
        return CliResult(lines=lines, success=success)

    def sweep(self, command: SweepCommand) -> CliResult:
        handler = self._handler(command.project_dir)
        report = handler.sweep()
        lines = [
            "Sweep summary: "
            f"live={len(report.live)} landed={len(report.landed)} "
            f"corrupted={len(report.corrupted)} incomplete={len(report.incomplete)}",
        ]
        lines.extend(f"Landed and cleaned up: {task.name}" for task in report.landed)
        success = True
        for task in report.corrupted:
            lines.append(
                f"Corrupted: {task.name} - {task.corruption.description}; "
                f"repair: {task.corruption.repair_action}",
            )
        if command.repair and report.corrupted:
            repaired = self._repair_all(handler, report.corrupted, [])
            lines.extend(repaired.lines)
            success = repaired.success
        for task in report.incomplete:
            if not command.resume:
                lines.append(f"Incomplete: {task.name}")
                continue
            result = handler.resume_task(task.name)
            lines.append(
                _handle_line(result.task, acquired=result.acquired, handler_id=result.handler_id),
            )
        return CliResult(lines=lines, success=success)

    def merge_completed(self, command: ProjectCommand) -> CliResult:
        handler = self._handler(command.project_dir)
        outcomes = handler.merge_completed()
        if not outcomes:
            return CliResult(lines=["No completed tasks."])
        lines = [
            f"{'Merged' if outcome.merged else 'Failed'}: {outcome.name} - {outcome.message}"
            for outcome in outcomes
        ]
        return CliResult(lines=lines, success=all(outcome.merged for outcome in outcomes))

    def queue_add(self, command: QueueAddCommand) -> list[str]:
        settings = self._settings(command.project_dir)
        entry = BacklogQueue(settings.queue_dir).add(command.content)
        return [f"Queued: {entry.path.name}"]

    def queue_list(self, command: ProjectCommand) -> list[str]:
        settings = self._settings(command.project_dir)
        entries = BacklogQueue(settings.queue_dir).list()
        if not entries:
            return ["Queue is empty."]
        return [f"{entry.number:03d}  {_first_line(entry.content)}" for entry in entries]

    def queue_pop(self, command: ProjectCommand) -> list[str]:
        settings = self._settings(command.project_dir)
        entry = BacklogQueue(settings.queue_dir).pop()
        if entry is None:
            return ["Queue is empty."]
        return [f"Popped: {entry.path.name}", entry.content]

    def queue_clear(self, command: ProjectCommand) -> list[str]:
        settings = self._settings(command.project_dir)
        removed = BacklogQueue(settings.queue_dir).clear()
        return [f"Removed {removed} queued entries"]

    def queue_process(self, command: ProjectCommand) -> list[str]:
        handler = self._handler(command.project_dir)
        result = handler.process_queue()
        if result is None:
            return ["Queue is empty."]
        return [_handle_line(result.task, acquired=result.acquired, handler_id=result.handler_id)]


def build_manager(
    settings: Settings,
    workspace: GitWorkspaceDriver,
    *,
    is_git_repo: bool,
    namer: ClaudeAgentDriver | None = None,
) -> TaskManager:
    return TaskManager(
        agents_dir=settings.agents_dir,
        project_dir=settings.project_dir,
        workspace=workspace,
        namer=namer,
        isolation=is_git_repo and settings.work_mode == "worktree",
        agent_settings_dir=settings.state_dir / AGENT_SETTINGS_LINK,
    )


def build_handler(settings: Settings) -> TaskHandler:
    """Wire the CLI-backed drivers for a real session."""

    timeout = settings.timeouts.command_timeout_seconds
    workspace = GitWorkspaceDriver(timeout_seconds=timeout)
    agent = ClaudeAgentDriver(
        command=settings.agent.command,
        name_model=settings.agent.name_model,
        name_timeouts=settings.timeouts.name_generation_timeouts,
        ready_max_attempts=settings.timeouts.ready_max_attempts,
        ready_poll_seconds=settings.timeouts.ready_poll_seconds,
    )
    is_git_repo = workspace.is_repository(settings.project_dir)
    manager = build_manager(settings, workspace, is_git_repo=is_git_repo, namer=agent)
    return TaskHandler(
        manager=manager,
        backlog=BacklogQueue(settings.queue_dir),
        workspace=workspace,
        mux=TmuxDriver(settings.effective_session_name, timeout_seconds=timeout),
        agent=agent,
        review=GhReviewDriver(timeout_seconds=timeout),
        is_git_repo=is_git_repo,
        on_complete=settings.on_complete,
        session_name=settings.effective_session_name,
        prompt_path=settings.prompt_path,
    )


def _resolve_task(handler: TaskHandler, *, name: str | None, window_id: str | None) -> Task:
    if name:
        return handler.manager.get_task(name)
    if window_id:
        task = handler.manager.find_task_by_handler(window_id)
        if task is None:
            raise TaskNotFoundError(f"window {window_id}")
        return task
    raise ValueError("Either a task name or a window id is required.")


def _handle_line(task: Task, *, acquired: bool, handler_id: str | None) -> str:
    if not acquired:
        return f"Task {task.name} already being handled (window={handler_id or '-'})"
    return f"Task {task.name} handled: window={handler_id} status={task.status.value}"


def _task_line(task: Task) -> str:
    review = f" review=#{task.review_id}" if task.review_id is not None else ""
    return (
        f"{task.name}  status={task.status.value} "
        f"window={task.handler_id or '-'}{review}  {_first_line(task.content)}"
    )


def _diagnosis_line(name: str, kind: CorruptionKind | None) -> str:
    if kind is None:
        return f"Task {name} is healthy"
    return f"Task {name}: {kind.value} - {kind.description}; repair: {kind.repair_action}"


def _first_line(content: str) -> str:
    stripped = content.strip()
    return stripped.splitlines()[0][:60] if stripped else ""

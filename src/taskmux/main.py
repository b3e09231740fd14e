"""CLI entrypoint for taskmux."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from taskmux import __version__
from taskmux.config import Settings
from taskmux.controllers import (
    CliResult,
    EndTaskCommand,
    HandleTaskCommand,
    ListTasksCommand,
    NewTaskCommand,
    ProjectCommand,
    QueueAddCommand,
    RecoverCommand,
    SignalStatusCommand,
    SweepCommand,
    TaskmuxCliController,
    TaskNameCommand,
)
from taskmux.logging_setup import configure_logging
from taskmux.tasks.errors import TaskmuxError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskmuxCliController()

ResultT = TypeVar("ResultT")

_project_dir_option = click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project root. Defaults to TASKMUX_PROJECT_DIR or the current directory.",
)


@click.group()
@click.version_option(version=__version__, prog_name="taskmux")
def taskmux() -> None:
    """Run coding agents on isolated git worktrees, one tmux window per task."""


@taskmux.command("new")
@_project_dir_option
@click.option("--queue", is_flag=True, default=False, help="Add to the backlog instead.")
@click.argument("content")
def new_task(project_dir: Path | None, queue: bool, content: str) -> None:
    """Create a task from CONTENT and start an agent on it."""

    _emit_lines(
        _run(
            "new",
            project_dir,
            lambda: CONTROLLER.new_task(
                NewTaskCommand(project_dir=project_dir, content=content, queue=queue),
            ),
        ),
    )


@taskmux.command("handle")
@_project_dir_option
@click.option(
    "--resume/--no-resume",
    default=False,
    show_default=True,
    help="Take over a task whose handler window died.",
)
@click.argument("name")
def handle_task(project_dir: Path | None, resume: bool, name: str) -> None:
    """Take ownership of task NAME in a new window."""

    _emit_lines(
        _run(
            "handle",
            project_dir,
            lambda: CONTROLLER.handle_task(
                HandleTaskCommand(project_dir=project_dir, name=name, resume=resume),
            ),
        ),
    )


@taskmux.command("end")
@_project_dir_option
@click.option("--window-id", default=None, help="Resolve the task by its handler window.")
@click.option(
    "--merge/--no-merge",
    default=None,
    help="Override TASKMUX_ON_COMPLETE for merging into trunk.",
)
@click.argument("name", required=False)
def end_task(
    project_dir: Path | None,
    window_id: str | None,
    merge: bool | None,
    name: str | None,
) -> None:
    """Commit, push and finish a task, then start the next backlog entry."""

    if not name and not window_id:
        raise click.UsageError("Pass a task NAME or --window-id.")
    _emit_result(
        _run(
            "end",
            project_dir,
            lambda: CONTROLLER.end_task(
                EndTaskCommand(
                    project_dir=project_dir,
                    name=name,
                    window_id=window_id,
                    merge=merge,
                ),
            ),
        ),
        failure="Task end did not complete; the task is kept for manual resolution.",
    )


@taskmux.command("status")
@_project_dir_option
@click.argument("name")
@click.argument("status", type=click.Choice(["working", "waiting", "done"]))
def signal_status(project_dir: Path | None, name: str, status: str) -> None:
    """Record an agent-signaled STATUS for task NAME."""

    _emit_lines(
        _run(
            "status",
            project_dir,
            lambda: CONTROLLER.signal_status(
                SignalStatusCommand(project_dir=project_dir, name=name, status=status),
            ),
        ),
    )


@taskmux.command("list")
@_project_dir_option
@click.option(
    "--status",
    type=click.Choice(["pending", "working", "waiting", "done"]),
    default=None,
    help="Only show tasks in this status.",
)
def list_tasks(project_dir: Path | None, status: str | None) -> None:
    """List tasks with their derived status."""

    _emit_lines(
        _run(
            "list",
            project_dir,
            lambda: CONTROLLER.list_tasks(ListTasksCommand(project_dir=project_dir, status=status)),
        ),
    )


@taskmux.command("show")
@_project_dir_option
@click.argument("name")
def show_task(project_dir: Path | None, name: str) -> None:
    """Show one task in detail."""

    _emit_lines(
        _run(
            "show",
            project_dir,
            lambda: CONTROLLER.show_task(TaskNameCommand(project_dir=project_dir, name=name)),
        ),
    )


@taskmux.command("cleanup")
@_project_dir_option
@click.argument("name")
def cleanup_task(project_dir: Path | None, name: str) -> None:
    """Remove the worktree, branch and record of task NAME."""

    _emit_lines(
        _run(
            "cleanup",
            project_dir,
            lambda: CONTROLLER.cleanup_task(TaskNameCommand(project_dir=project_dir, name=name)),
        ),
    )


@taskmux.command("recover")
@_project_dir_option
@click.option("--dry-run", is_flag=True, default=False, help="Diagnose without repairing.")
@click.argument("name", required=False)
def recover(project_dir: Path | None, dry_run: bool, name: str | None) -> None:
    """Diagnose and repair corrupted worktrees (one task or all idle tasks)."""

    _emit_result(
        _run(
            "recover",
            project_dir,
            lambda: CONTROLLER.recover(
                RecoverCommand(project_dir=project_dir, name=name, dry_run=dry_run),
            ),
        ),
        failure="Some tasks could not be recovered.",
    )


@taskmux.command("attach-sweep")
@_project_dir_option
@click.option(
    "--resume/--no-resume",
    default=False,
    show_default=True,
    help="Re-handle incomplete tasks.",
)
@click.option(
    "--repair/--no-repair",
    default=False,
    show_default=True,
    help="Repair corrupted tasks.",
)
def attach_sweep(project_dir: Path | None, resume: bool, repair: bool) -> None:
    """Reconcile tasks on session attach: landed, corrupted and incomplete."""

    _emit_result(
        _run(
            "attach-sweep",
            project_dir,
            lambda: CONTROLLER.sweep(
                SweepCommand(project_dir=project_dir, resume=resume, repair=repair),
            ),
        ),
        failure="Some tasks could not be repaired.",
    )


@taskmux.command("merge-completed")
@_project_dir_option
def merge_completed(project_dir: Path | None) -> None:
    """Merge every done task into trunk and clean it up."""

    _emit_result(
        _run(
            "merge-completed",
            project_dir,
            lambda: CONTROLLER.merge_completed(ProjectCommand(project_dir=project_dir)),
        ),
        failure="Some completed tasks could not be merged.",
    )


@taskmux.group()
def queue() -> None:
    """Backlog commands."""


@queue.command("add")
@_project_dir_option
@click.argument("content")
def queue_add(project_dir: Path | None, content: str) -> None:
    """Append CONTENT to the backlog."""

    _emit_lines(
        _run(
            "queue-add",
            project_dir,
            lambda: CONTROLLER.queue_add(QueueAddCommand(project_dir=project_dir, content=content)),
        ),
    )


@queue.command("list")
@_project_dir_option
def queue_list(project_dir: Path | None) -> None:
    """Show backlog entries in pop order."""

    _emit_lines(
        _run(
            "queue-list",
            project_dir,
            lambda: CONTROLLER.queue_list(ProjectCommand(project_dir=project_dir)),
        ),
    )


@queue.command("pop")
@_project_dir_option
def queue_pop(project_dir: Path | None) -> None:
    """Remove and print the lowest-numbered entry."""

    _emit_lines(
        _run(
            "queue-pop",
            project_dir,
            lambda: CONTROLLER.queue_pop(ProjectCommand(project_dir=project_dir)),
        ),
    )


@queue.command("clear")
@_project_dir_option
def queue_clear(project_dir: Path | None) -> None:
    """Delete every backlog entry."""

    _emit_lines(
        _run(
            "queue-clear",
            project_dir,
            lambda: CONTROLLER.queue_clear(ProjectCommand(project_dir=project_dir)),
        ),
    )


@queue.command("process")
@_project_dir_option
def queue_process(project_dir: Path | None) -> None:
    """Start a task from the next backlog entry."""

    _emit_lines(
        _run(
            "queue-process",
            project_dir,
            lambda: CONTROLLER.queue_process(ProjectCommand(project_dir=project_dir)),
        ),
    )


def _run(script: str, project_dir: Path | None, action: Callable[[], ResultT]) -> ResultT:
    try:
        settings = Settings.from_env(project_dir=project_dir)
        configure_logging(settings.log_path, debug=settings.debug, script=script)
        return action()
    except (TaskmuxError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_result(result: CliResult, *, failure: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    taskmux()

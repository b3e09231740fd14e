from __future__ import annotations

import shutil
from pathlib import Path

import allure
import pytest

from conftest import FakeWorkspaceDriver
from taskmux.tasks.errors import RepairFailedError
from taskmux.tasks.manager import TaskManager
from taskmux.tasks.models import CorruptionKind, Task, TaskStatus
from taskmux.tasks.recovery import CorruptionDetector, RecoveryEngine
from taskmux.tasks.worktree import has_valid_marker

pytestmark = [
    allure.epic("Recovery"),
    allure.feature("Corruption Detection and Repair"),
]

AGENT_COMMIT = "d" * 40


@pytest.fixture()
def detector(project_dir: Path, workspace: FakeWorkspaceDriver) -> CorruptionDetector:
    return CorruptionDetector(project_dir=project_dir, workspace=workspace)


@pytest.fixture()
def engine(project_dir: Path, workspace: FakeWorkspaceDriver) -> RecoveryEngine:
    return RecoveryEngine(project_dir=project_dir, workspace=workspace)


@pytest.fixture()
def task(manager: TaskManager) -> Task:
    created = manager.create_task("Fix the login flow")
    manager.setup_workspace(created)
    return created


def _diagnose(detector: CorruptionDetector, task: Task) -> CorruptionKind | None:
    return detector.diagnose(task, detector.registered_paths())


def _repair(engine: RecoveryEngine, task: Task, kind: CorruptionKind) -> None:
    task.corruption = kind
    task.status = TaskStatus.CORRUPTED
    engine.recover(task)


def test_healthy_worktree_has_no_corruption(detector: CorruptionDetector, task: Task) -> None:
    assert _diagnose(detector, task) is None


def test_never_materialized_task_is_healthy(
    detector: CorruptionDetector,
    manager: TaskManager,
) -> None:
    pending = manager.create_task("Not started")

    assert _diagnose(detector, pending) is None


def test_deleted_worktree_is_recreated_on_existing_branch(
    detector: CorruptionDetector,
    engine: RecoveryEngine,
    workspace: FakeWorkspaceDriver,
    task: Task,
) -> None:
    workspace.commit_on(task.workspace_path, task.branch, AGENT_COMMIT)
    shutil.rmtree(task.workspace_path)

    assert _diagnose(detector, task) == CorruptionKind.MISSING_WORKTREE

    _repair(engine, task, CorruptionKind.MISSING_WORKTREE)

    assert workspace.called("add_worktree")[-1] == (task.workspace_path, task.branch, False)
    assert workspace.called("create_branch") == []
    assert workspace.branches[task.branch] == AGENT_COMMIT
    assert task.corruption is None
    assert _diagnose(detector, task) is None


def test_unregistered_worktree_is_replaced(
    detector: CorruptionDetector,
    engine: RecoveryEngine,
    workspace: FakeWorkspaceDriver,
    task: Task,
) -> None:
    workspace.registry.clear()

    assert _diagnose(detector, task) == CorruptionKind.NOT_IN_GIT

    _repair(engine, task, CorruptionKind.NOT_IN_GIT)

    assert workspace.called("add_worktree")[-1] == (task.workspace_path, task.branch, False)
    assert _diagnose(detector, task) is None


def test_invalid_marker_is_repaired_and_files_restored(
    detector: CorruptionDetector,
    engine: RecoveryEngine,
    task: Task,
) -> None:
    (task.workspace_path / "src").mkdir()
    (task.workspace_path / "src" / "login.py").write_text("work in progress", "utf-8")
    (task.workspace_path / ".git").write_text("garbage", "utf-8")

    assert _diagnose(detector, task) == CorruptionKind.INVALID_GIT

    _repair(engine, task, CorruptionKind.INVALID_GIT)

    assert has_valid_marker(task.workspace_path)
    assert (task.workspace_path / "src" / "login.py").read_text("utf-8") == "work in progress"
    assert not task.workspace_path.with_name("worktree.backup").exists()
    assert _diagnose(detector, task) is None


def test_worktree_replaced_by_file_is_invalid(
    detector: CorruptionDetector,
    engine: RecoveryEngine,
    task: Task,
) -> None:
    shutil.rmtree(task.workspace_path)
    task.workspace_path.write_text("not a directory", "utf-8")

    assert _diagnose(detector, task) == CorruptionKind.INVALID_GIT

    _repair(engine, task, CorruptionKind.INVALID_GIT)

    assert task.workspace_path.is_dir()
    assert not task.workspace_path.with_name("worktree.backup").exists()


def test_invalid_marker_repair_restores_backup_when_recreate_fails(
    engine: RecoveryEngine,
    workspace: FakeWorkspaceDriver,
    task: Task,
) -> None:
    (task.workspace_path / "notes.txt").write_text("keep me", "utf-8")
    (task.workspace_path / ".git").write_text("garbage", "utf-8")
    workspace.fail("add_worktree", "fatal: cannot lock ref")

    with pytest.raises(RepairFailedError, match="cannot lock ref") as excinfo:
        _repair(engine, task, CorruptionKind.INVALID_GIT)

    assert excinfo.value.kind == CorruptionKind.INVALID_GIT
    assert (task.workspace_path / "notes.txt").read_text("utf-8") == "keep me"
    assert not task.workspace_path.with_name("worktree.backup").exists()


def test_invalid_marker_repair_refuses_to_clobber_existing_backup(
    engine: RecoveryEngine,
    task: Task,
) -> None:
    (task.workspace_path / ".git").write_text("garbage", "utf-8")
    task.workspace_path.with_name("worktree.backup").mkdir()

    with pytest.raises(RepairFailedError, match="Backup directory already exists"):
        _repair(engine, task, CorruptionKind.INVALID_GIT)

    assert task.workspace_path.is_dir()


def test_missing_branch_is_recreated_from_worktree_reflog(
    detector: CorruptionDetector,
    engine: RecoveryEngine,
    workspace: FakeWorkspaceDriver,
    task: Task,
) -> None:
    workspace.commit_on(task.workspace_path, task.branch, AGENT_COMMIT)
    workspace.delete_branch(workspace.root, task.branch, force=True)

    assert _diagnose(detector, task) == CorruptionKind.MISSING_BRANCH

    _repair(engine, task, CorruptionKind.MISSING_BRANCH)

    assert workspace.called("create_branch") == [(task.branch, AGENT_COMMIT)]
    assert _diagnose(detector, task) is None


def test_first_matching_rule_wins(
    detector: CorruptionDetector,
    workspace: FakeWorkspaceDriver,
    task: Task,
) -> None:
    (task.workspace_path / ".git").write_text("garbage", "utf-8")
    workspace.registry.clear()
    workspace.delete_branch(workspace.root, task.branch, force=True)

    assert _diagnose(detector, task) == CorruptionKind.INVALID_GIT


def test_find_corrupted_marks_tasks(
    detector: CorruptionDetector,
    manager: TaskManager,
    workspace: FakeWorkspaceDriver,
    task: Task,
) -> None:
    healthy = manager.create_task("Healthy task")
    manager.setup_workspace(healthy)
    shutil.rmtree(task.workspace_path)

    corrupted = detector.find_corrupted(manager.list_tasks())

    assert [item.name for item in corrupted] == [task.name]
    assert corrupted[0].status == TaskStatus.CORRUPTED
    assert corrupted[0].corruption == CorruptionKind.MISSING_WORKTREE
    assert workspace.called("list_worktrees") == [()]


def test_recover_without_kind_fails(engine: RecoveryEngine, task: Task) -> None:
    with pytest.raises(RepairFailedError, match="Unknown corruption"):
        engine.recover(task)

"""Shared test fixtures and in-memory drivers."""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from pathlib import Path

import pytest

from taskmux.drivers.base import Window, WindowOpts, WorkingTree
from taskmux.tasks.backlog import BacklogQueue
from taskmux.tasks.errors import AgentTimeoutError, ExternalToolError
from taskmux.tasks.handler import TaskHandler
from taskmux.tasks.manager import TaskManager

TRUNK_HEAD = "b" * 40
ZERO_SHA = "0" * 40


class FakeWorkspaceDriver:
    """Git double that keeps branches and the worktree registry in memory.

    Worktrees get a real ``.git`` pointer file, a per-worktree gitdir with
    ``HEAD`` and a reflog, and loose refs in a shared common dir, so marker
    inspection code runs against the same layout git produces.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.common_dir = root / ".fakegit"
        self.trunk = "main"
        self.trunk_head = TRUNK_HEAD
        self.branches: dict[str, str] = {}
        self.registry: dict[Path, str] = {}
        self.merged: set[str] = set()
        self.trunk_commits: set[str] = {TRUNK_HEAD}
        self.dirty: set[Path] = set()
        self.is_repo = True
        self.snapshot = ""
        self.untracked: list[str] = []
        self.failures: dict[str, ExternalToolError] = {}
        self.calls: list[tuple[str, tuple]] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]

    def called(self, name: str) -> list[tuple]:
        return [args for call, args in self.calls if call == name]

    def fail(self, name: str, message: str = "boom") -> None:
        self.failures[name] = ExternalToolError(message, tool="git", returncode=1)

    # Helpers for tests

    def gitdir_for(self, path: Path) -> Path:
        return self.common_dir / "worktrees" / path.parent.name

    def write_ref(self, branch: str, sha: str) -> None:
        ref = self.common_dir / "refs" / "heads" / branch
        ref.parent.mkdir(parents=True, exist_ok=True)
        ref.write_text(sha + "\n", "utf-8")
        self.branches[branch] = sha

    def commit_on(self, path: Path, branch: str, sha: str) -> None:
        """Simulate an agent commit in the worktree at ``path``."""

        previous = self.branches.get(branch, ZERO_SHA)
        self.write_ref(branch, sha)
        log = self.gitdir_for(path) / "logs" / "HEAD"
        with log.open("a", encoding="utf-8") as handle:
            handle.write(f"{previous} {sha} Agent <agent@example.com> 1700000000 +0000\tcommit\n")

    # WorkspaceDriver

    def is_repository(self, root: Path) -> bool:
        return self.is_repo

    def main_branch(self, root: Path) -> str:
        return self.trunk

    def add_worktree(self, root: Path, path: Path, branch: str, *, create_branch: bool) -> None:
        self._record("add_worktree", path, branch, create_branch)
        if create_branch and branch in self.branches:
            raise ExternalToolError(f"branch {branch} already exists", tool="git", returncode=128)
        if not create_branch and branch not in self.branches:
            raise ExternalToolError(f"invalid reference: {branch}", tool="git", returncode=128)
        if path.exists():
            raise ExternalToolError(f"{path} already exists", tool="git", returncode=128)
        if path.resolve() in self.registry:
            raise ExternalToolError(
                f"{path} is a missing but already registered worktree",
                tool="git",
                returncode=128,
            )

        sha = self.branches.get(branch, self.trunk_head)
        self.write_ref(branch, sha)
        gitdir = self.gitdir_for(path)
        if gitdir.exists():
            shutil.rmtree(gitdir)
        (gitdir / "logs").mkdir(parents=True)
        (gitdir / "HEAD").write_text(f"ref: refs/heads/{branch}\n", "utf-8")
        (gitdir / "commondir").write_text("../..\n", "utf-8")
        (gitdir / "logs" / "HEAD").write_text(
            f"{ZERO_SHA} {sha} Agent <agent@example.com> 1700000000 +0000\tcheckout\n",
            "utf-8",
        )
        path.mkdir(parents=True)
        (path / ".git").write_text(f"gitdir: {gitdir}\n", "utf-8")
        self.registry[path.resolve()] = branch

    def remove_worktree(self, root: Path, path: Path, *, force: bool) -> None:
        self._record("remove_worktree", path, force)
        resolved = path.resolve()
        if resolved not in self.registry:
            raise ExternalToolError(f"{path} is not a working tree", tool="git", returncode=128)
        del self.registry[resolved]
        shutil.rmtree(path, ignore_errors=True)

    def prune_worktrees(self, root: Path) -> None:
        self._record("prune_worktrees")
        for path in [path for path in self.registry if not path.exists()]:
            del self.registry[path]

    def list_worktrees(self, root: Path) -> list[WorkingTree]:
        self._record("list_worktrees")
        return [WorkingTree(path=path, branch=branch) for path, branch in self.registry.items()]

    def branch_exists(self, root: Path, branch: str) -> bool:
        return branch in self.branches

    def delete_branch(self, root: Path, branch: str, *, force: bool) -> None:
        self._record("delete_branch", branch, force)
        self.branches.pop(branch, None)
        (self.common_dir / "refs" / "heads" / branch).unlink(missing_ok=True)

    def create_branch(self, root: Path, branch: str, start_point: str | None = None) -> None:
        self._record("create_branch", branch, start_point)
        self.write_ref(branch, start_point or self.trunk_head)

    def merged_branches(self, root: Path, into: str) -> list[str]:
        self._record("merged_branches", into)
        return sorted(self.merged & set(self.branches))

    def resolve_commit(self, root: Path, ref: str) -> str:
        self._record("resolve_commit", ref)
        return self.branches.get(ref.removeprefix("refs/heads/"), self.trunk_head)

    def is_ancestor(self, root: Path, commit: str, of: str) -> bool:
        return commit in self.trunk_commits

    def has_changes(self, root: Path) -> bool:
        self._record("has_changes", root)
        return root in self.dirty

    def add_all(self, root: Path) -> None:
        self._record("add_all", root)

    def commit(self, root: Path, message: str) -> None:
        self._record("commit", root, message)
        self.dirty.discard(root)

    def diff_stat(self, root: Path) -> str:
        return " 1 file changed, 1 insertion(+)"

    def push(self, root: Path, remote: str, branch: str, *, set_upstream: bool) -> None:
        self._record("push", remote, branch, set_upstream)

    def fetch(self, root: Path, remote: str) -> None:
        self._record("fetch", remote)

    def pull(self, root: Path) -> None:
        self._record("pull")

    def checkout(self, root: Path, target: str) -> None:
        self._record("checkout", target)

    def merge(self, root: Path, branch: str, *, no_ff: bool, message: str = "") -> None:
        self._record("merge", branch, no_ff)
        self.merged.add(branch)
        self.trunk_commits.add(self.branches.get(branch, ""))

    def merge_abort(self, root: Path) -> None:
        self._record("merge_abort")

    def status(self, root: Path) -> str:
        return ""

    def stash_create(self, root: Path) -> str:
        self._record("stash_create")
        return self.snapshot

    def stash_apply(self, root: Path, snapshot: str) -> None:
        self._record("stash_apply", snapshot)

    def untracked_files(self, root: Path) -> list[str]:
        self._record("untracked_files")
        return list(self.untracked)


class FakeMux:
    """Multiplexer double with numbered windows and recorded keystrokes."""

    def __init__(self) -> None:
        self.windows: dict[str, str] = {}
        self.sent: list[tuple[str, tuple[str, ...]]] = []
        self.literals: list[tuple[str, str]] = []
        self.splits: list[str] = []
        self.killed: list[str] = []
        self.pane_text = "╭─ ready"
        self.fail_new_window = False
        self.list_error: ExternalToolError | None = None
        self._counter = 0

    def new_window(self, opts: WindowOpts) -> str:
        if self.fail_new_window:
            raise ExternalToolError("no server running", tool="tmux", returncode=1)
        self._counter += 1
        window_id = f"@{self._counter}"
        self.windows[window_id] = opts.name
        return window_id

    def kill_window(self, target: str) -> None:
        self.killed.append(target)
        self.windows.pop(target, None)

    def rename_window(self, target: str, name: str) -> None:
        self.windows[target] = name

    def list_windows(self) -> list[Window]:
        if self.list_error is not None:
            raise self.list_error
        return [
            Window(window_id=window_id, name=name, index=index)
            for index, (window_id, name) in enumerate(self.windows.items())
        ]

    def split_window(self, target: str, *, horizontal: bool, command: str | None = None) -> None:
        self.splits.append(target)

    def send_keys(self, target: str, *keys: str) -> None:
        self.sent.append((target, keys))

    def send_literal(self, target: str, text: str) -> None:
        self.literals.append((target, text))

    def capture_pane(self, target: str, lines: int) -> str:
        return self.pane_text


class FakeAgent:
    """Agent double that records how it was driven."""

    def __init__(self) -> None:
        self.ready_error: AgentTimeoutError | None = None
        self.prompts: list[tuple[str, str]] = []
        self.envs: list[dict[str, str]] = []

    def start_command(self, system_prompt_path: Path, env: Mapping[str, str]) -> str:
        self.envs.append(dict(env))
        return f"agent --system-prompt {system_prompt_path}"

    def await_ready(self, mux, target: str) -> None:
        if self.ready_error is not None:
            raise self.ready_error

    def acknowledge_trust_prompt(self, mux, target: str) -> None:
        return None

    def submit_prompt(self, mux, target: str, text: str) -> None:
        self.prompts.append((target, text))


class FakeReview:
    """Review platform double numbering requests from 40."""

    def __init__(self) -> None:
        self.created: list[tuple[str, str, str]] = []
        self.merged: set[int] = set()
        self.next_number = 40

    def create_request(self, root: Path, title: str, body: str, base: str) -> int:
        self.next_number += 1
        self.created.append((title, body, base))
        return self.next_number

    def is_merged(self, root: Path, number: int) -> bool:
        return number in self.merged


class FakeNamer:
    def __init__(self, name: str = "fix-login-bug", error: Exception | None = None) -> None:
        self.name = name
        self.error = error

    def generate_task_name(self, content: str) -> str:
        if self.error is not None:
            raise self.error
        return self.name


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def agents_dir(project_dir: Path) -> Path:
    return project_dir / ".taskmux" / "agents"


@pytest.fixture()
def workspace(project_dir: Path) -> FakeWorkspaceDriver:
    return FakeWorkspaceDriver(project_dir)


@pytest.fixture()
def mux() -> FakeMux:
    return FakeMux()


@pytest.fixture()
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture()
def review() -> FakeReview:
    return FakeReview()


@pytest.fixture()
def namer() -> FakeNamer:
    return FakeNamer()


@pytest.fixture()
def manager(
    agents_dir: Path,
    project_dir: Path,
    workspace: FakeWorkspaceDriver,
    namer: FakeNamer,
) -> TaskManager:
    return TaskManager(
        agents_dir=agents_dir,
        project_dir=project_dir,
        workspace=workspace,
        namer=namer,
    )


@pytest.fixture()
def backlog(project_dir: Path) -> BacklogQueue:
    return BacklogQueue(project_dir / ".taskmux" / ".queue")


@pytest.fixture()
def handler(  # noqa: PLR0913
    manager: TaskManager,
    backlog: BacklogQueue,
    workspace: FakeWorkspaceDriver,
    mux: FakeMux,
    agent: FakeAgent,
    review: FakeReview,
) -> TaskHandler:
    return TaskHandler(
        manager=manager,
        backlog=backlog,
        workspace=workspace,
        mux=mux,
        agent=agent,
        review=review,
        session_name="project",
        settle_seconds=0,
        sleep=lambda _seconds: None,
    )

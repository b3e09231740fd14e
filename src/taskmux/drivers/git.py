"""git CLI implementation of the workspace driver."""

from __future__ import annotations

from pathlib import Path

from taskmux.drivers.base import WorkingTree
from taskmux.drivers.process import DEFAULT_TIMEOUT_SECONDS, run_command
from taskmux.tasks.errors import ExternalToolError

DEFAULT_MAIN_BRANCH = "main"


class GitWorkspaceDriver:
    """Issues primitive git commands; every call is bounded by ``timeout_seconds``."""

    def __init__(self, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    def _git(self, root: Path, *args: str, strip: bool = True) -> str:
        return run_command(
            ["git", *args],
            cwd=root,
            timeout_seconds=self.timeout_seconds,
            strip=strip,
        )

    def _succeeds(self, root: Path, *args: str) -> bool:
        try:
            self._git(root, *args)
        except ExternalToolError:
            return False
        return True

    # Repository

    def is_repository(self, root: Path) -> bool:
        return self._succeeds(root, "rev-parse", "--git-dir")

    def main_branch(self, root: Path) -> str:
        try:
            output = self._git(root, "symbolic-ref", "refs/remotes/origin/HEAD", "--short")
        except ExternalToolError:
            output = ""
        if output:
            return output.rsplit("/", 1)[-1]
        for candidate in ("main", "master"):
            if self.branch_exists(root, candidate):
                return candidate
        return DEFAULT_MAIN_BRANCH

    # Worktree

    def add_worktree(self, root: Path, path: Path, branch: str, *, create_branch: bool) -> None:
        if create_branch:
            self._git(root, "worktree", "add", "-b", branch, str(path))
        else:
            self._git(root, "worktree", "add", str(path), branch)

    def remove_worktree(self, root: Path, path: Path, *, force: bool) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        self._git(root, *args)

    def prune_worktrees(self, root: Path) -> None:
        self._git(root, "worktree", "prune")

    def list_worktrees(self, root: Path) -> list[WorkingTree]:
        return parse_worktree_porcelain(self._git(root, "worktree", "list", "--porcelain"))

    # Branch

    def branch_exists(self, root: Path, branch: str) -> bool:
        return self._succeeds(root, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")

    def delete_branch(self, root: Path, branch: str, *, force: bool) -> None:
        self._git(root, "branch", "-D" if force else "-d", branch)

    def create_branch(self, root: Path, branch: str, start_point: str | None = None) -> None:
        args = ["branch", branch]
        if start_point:
            args.append(start_point)
        self._git(root, *args)

    def merged_branches(self, root: Path, into: str) -> list[str]:
        output = self._git(root, "branch", "--merged", into)
        return parse_branch_listing(output)

    def resolve_commit(self, root: Path, ref: str) -> str:
        return self._git(root, "rev-parse", "--verify", f"{ref}^{{commit}}")

    def is_ancestor(self, root: Path, commit: str, of: str) -> bool:
        return self._succeeds(root, "merge-base", "--is-ancestor", commit, of)

    # Changes

    def has_changes(self, root: Path) -> bool:
        return bool(self._git(root, "status", "--porcelain"))

    def add_all(self, root: Path) -> None:
        self._git(root, "add", "-A")

    def commit(self, root: Path, message: str) -> None:
        self._git(root, "commit", "-m", message)

    def diff_stat(self, root: Path) -> str:
        return self._git(root, "diff", "--cached", "--stat")

    def status(self, root: Path) -> str:
        return self._git(root, "status", "-s")

    def stash_create(self, root: Path) -> str:
        return self._git(root, "stash", "create")

    def stash_apply(self, root: Path, snapshot: str) -> None:
        self._git(root, "stash", "apply", snapshot)

    def untracked_files(self, root: Path) -> list[str]:
        output = self._git(root, "ls-files", "--others", "--exclude-standard")
        return [line for line in output.splitlines() if line]

    # Remote

    def push(self, root: Path, remote: str, branch: str, *, set_upstream: bool) -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        self._git(root, *args, remote, branch)

    def fetch(self, root: Path, remote: str) -> None:
        self._git(root, "fetch", remote)

    def pull(self, root: Path) -> None:
        self._git(root, "pull")

    def checkout(self, root: Path, target: str) -> None:
        self._git(root, "checkout", target)

    # Merge

    def merge(self, root: Path, branch: str, *, no_ff: bool, message: str = "") -> None:
        args = ["merge"]
        if no_ff:
            args.append("--no-ff")
        if message:
            args.extend(["-m", message])
        args.append(branch)
        self._git(root, *args)

    def merge_abort(self, root: Path) -> None:
        self._git(root, "merge", "--abort")


def parse_worktree_porcelain(output: str) -> list[WorkingTree]:
    """Parse ``git worktree list --porcelain`` into registry entries."""

    worktrees: list[WorkingTree] = []
    current: WorkingTree | None = None
    for line in output.splitlines():
        if not line.strip():
            if current is not None:
                worktrees.append(current)
                current = None
            continue
        if line.startswith("worktree "):
            if current is not None:
                worktrees.append(current)
            current = WorkingTree(path=Path(line.removeprefix("worktree ").strip()))
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line.removeprefix("HEAD ").strip()
        elif line.startswith("branch "):
            current.branch = line.removeprefix("branch ").strip().removeprefix("refs/heads/")
    if current is not None:
        worktrees.append(current)
    return worktrees


def parse_branch_listing(output: str) -> list[str]:
    """Parse ``git branch`` output, dropping current/worktree markers."""

    names: list[str] = []
    for line in output.splitlines():
        name = line.strip().lstrip("*+").strip()
        if name and not name.startswith("("):
            names.append(name)
    return names

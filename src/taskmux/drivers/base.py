"""Capability interfaces for the external tools the task core drives."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class WorkingTree:
    """One entry of the repository's working-tree registry."""

    path: Path
    branch: str = ""
    head: str = ""


@dataclass(slots=True)
class Window:
    """One multiplexer window."""

    window_id: str
    name: str
    index: int = 0


@dataclass(slots=True)
class WindowOpts:
    """Inputs for creating a multiplexer window."""

    name: str
    start_dir: Path
    detached: bool = True
    command: str | None = None


class WorkspaceDriver(Protocol):
    """Version-control primitives needed to manage isolated working trees."""

    def is_repository(self, root: Path) -> bool: ...

    def main_branch(self, root: Path) -> str: ...

    def add_worktree(self, root: Path, path: Path, branch: str, *, create_branch: bool) -> None: ...

    def remove_worktree(self, root: Path, path: Path, *, force: bool) -> None: ...

    def prune_worktrees(self, root: Path) -> None: ...

    def list_worktrees(self, root: Path) -> list[WorkingTree]: ...

    def branch_exists(self, root: Path, branch: str) -> bool: ...

    def delete_branch(self, root: Path, branch: str, *, force: bool) -> None: ...

    def create_branch(self, root: Path, branch: str, start_point: str | None = None) -> None: ...

    def merged_branches(self, root: Path, into: str) -> list[str]: ...

    def resolve_commit(self, root: Path, ref: str) -> str: ...

    def is_ancestor(self, root: Path, commit: str, of: str) -> bool: ...

    def has_changes(self, root: Path) -> bool: ...

    def add_all(self, root: Path) -> None: ...

    def commit(self, root: Path, message: str) -> None: ...

    def diff_stat(self, root: Path) -> str: ...

    def push(self, root: Path, remote: str, branch: str, *, set_upstream: bool) -> None: ...

    def fetch(self, root: Path, remote: str) -> None: ...

    def pull(self, root: Path) -> None: ...

    def checkout(self, root: Path, target: str) -> None: ...

    def merge(self, root: Path, branch: str, *, no_ff: bool, message: str = "") -> None: ...

    def merge_abort(self, root: Path) -> None: ...

    def status(self, root: Path) -> str: ...

    def stash_create(self, root: Path) -> str: ...

    def stash_apply(self, root: Path, snapshot: str) -> None: ...

    def untracked_files(self, root: Path) -> list[str]: ...


class MultiplexerDriver(Protocol):
    """Terminal multiplexer window and pane primitives."""

    def new_window(self, opts: WindowOpts) -> str: ...

    def kill_window(self, target: str) -> None: ...

    def rename_window(self, target: str, name: str) -> None: ...

    def list_windows(self) -> list[Window]: ...

    def split_window(self, target: str, *, horizontal: bool, command: str | None = None) -> None: ...

    def send_keys(self, target: str, *keys: str) -> None: ...

    def send_literal(self, target: str, text: str) -> None: ...

    def capture_pane(self, target: str, lines: int) -> str: ...


class ReviewPlatformDriver(Protocol):
    """Code-review platform primitives."""

    def create_request(self, root: Path, title: str, body: str, base: str) -> int: ...

    def is_merged(self, root: Path, number: int) -> bool: ...


class AgentDriver(Protocol):
    """Interactive coding-agent primitives driven through a multiplexer pane."""

    def start_command(self, system_prompt_path: Path, env: Mapping[str, str]) -> str: ...

    def await_ready(self, mux: MultiplexerDriver, target: str) -> None: ...

    def acknowledge_trust_prompt(self, mux: MultiplexerDriver, target: str) -> None: ...

    def submit_prompt(self, mux: MultiplexerDriver, target: str, text: str) -> None: ...


class TaskNamer(Protocol):
    """Derives a filesystem-safe task name from a work description."""

    def generate_task_name(self, content: str) -> str: ...

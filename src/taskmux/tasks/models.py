"""Task entity and its on-disk markers."""

from __future__ import annotations

import shutil
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

TASK_FILE_NAME = "task"
LOCK_DIR_NAME = ".tab-lock"
HANDLER_ID_FILE_NAME = "window_id"
STATUS_FILE_NAME = "status"
CLAIM_FILE_NAME = "claim"
TAKEOVER_DIR_NAME = "takeover"
REVIEW_FILE_NAME = ".pr"
BASE_COMMIT_FILE_NAME = ".base"
SYSTEM_PROMPT_FILE_NAME = ".system-prompt"
USER_PROMPT_FILE_NAME = ".user-prompt"
WORKTREE_DIR_NAME = "worktree"

MAX_WINDOW_NAME_LEN = 12

EMOJI_WORKING = "🤖"
EMOJI_WAITING = "💬"
EMOJI_DONE = "✅"
EMOJI_WARNING = "⚠️"


class TaskStatus(str, Enum):
    """Task lifecycle states derived from on-disk markers."""

    PENDING = "pending"
    WORKING = "working"
    WAITING = "waiting"
    DONE = "done"
    CORRUPTED = "corrupted"


class CorruptionKind(str, Enum):
    """Closed set of workspace/repository divergences."""

    MISSING_WORKTREE = "missing_worktree"
    NOT_IN_GIT = "not_in_git"
    INVALID_GIT = "invalid_git"
    MISSING_BRANCH = "missing_branch"

    @property
    def description(self) -> str:
        return _CORRUPTION_DESCRIPTIONS[self]

    @property
    def repair_action(self) -> str:
        return _CORRUPTION_ACTIONS[self]


_CORRUPTION_DESCRIPTIONS = {
    CorruptionKind.MISSING_WORKTREE: "Worktree directory is missing but branch exists",
    CorruptionKind.NOT_IN_GIT: "Worktree directory exists but is not registered in git",
    CorruptionKind.INVALID_GIT: "Worktree .git file is corrupted or invalid",
    CorruptionKind.MISSING_BRANCH: "Worktree exists but the branch is missing",
}

_CORRUPTION_ACTIONS = {
    CorruptionKind.MISSING_WORKTREE: "Recreate worktree from existing branch",
    CorruptionKind.NOT_IN_GIT: "Remove directory and recreate worktree",
    CorruptionKind.INVALID_GIT: "Backup files, recreate worktree, restore files",
    CorruptionKind.MISSING_BRANCH: "Create branch from worktree HEAD",
}

# Statuses an agent may signal while it owns the task.
SIGNALED_STATUSES = frozenset({TaskStatus.WORKING, TaskStatus.WAITING, TaskStatus.DONE})


@dataclass(slots=True)
class Task:
    """One unit of agent work rooted at ``agent_dir``.

    Only ``name`` and ``agent_dir`` are identity. Everything else is a cache of
    marker files and is rebuilt by :meth:`TaskManager.get_task` on every load.
    """

    name: str
    agent_dir: Path
    status: TaskStatus = TaskStatus.PENDING
    content: str = ""
    handler_id: str | None = None
    review_id: int | None = None
    corruption: CorruptionKind | None = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def task_file(self) -> Path:
        return self.agent_dir / TASK_FILE_NAME

    @property
    def lock_dir(self) -> Path:
        return self.agent_dir / LOCK_DIR_NAME

    @property
    def handler_id_file(self) -> Path:
        return self.lock_dir / HANDLER_ID_FILE_NAME

    @property
    def status_file(self) -> Path:
        return self.lock_dir / STATUS_FILE_NAME

    @property
    def claim_file(self) -> Path:
        return self.lock_dir / CLAIM_FILE_NAME

    @property
    def review_file(self) -> Path:
        return self.agent_dir / REVIEW_FILE_NAME

    @property
    def base_commit_file(self) -> Path:
        return self.agent_dir / BASE_COMMIT_FILE_NAME

    @property
    def system_prompt_file(self) -> Path:
        return self.agent_dir / SYSTEM_PROMPT_FILE_NAME

    @property
    def user_prompt_file(self) -> Path:
        return self.agent_dir / USER_PROMPT_FILE_NAME

    @property
    def workspace_path(self) -> Path:
        return self.agent_dir / WORKTREE_DIR_NAME

    @property
    def branch(self) -> str:
        return self.name

    # Handler lock

    def has_lock(self) -> bool:
        return self.lock_dir.is_dir()

    def acquire_lock(self) -> bool:
        """Atomically create the lock directory.

        Returns False when another handler already owns the task. Any other
        filesystem failure propagates.
        """

        try:
            self.lock_dir.mkdir()
        except FileExistsError:
            return False
        return True

    def release_lock(self) -> None:
        shutil.rmtree(self.lock_dir, ignore_errors=True)

    def lock_owner(self) -> tuple[str | None, str | None]:
        """Identity of the current lock holder: handler id and takeover claim."""

        return _read_marker(self.handler_id_file), _read_marker(self.claim_file)

    def take_over_lock(self, stale_owner: tuple[str | None, str | None]) -> bool:
        """Inherit a dead handler's lock without ever releasing it.

        Succeeds only while the lock still belongs to ``stale_owner``. Takeovers
        serialize on a directory inside the lock, and each one writes a fresh
        claim, so of several resumers that saw the same dead owner exactly one
        wins. The winner leaves the lock held and unregistered.
        """

        mutex = self.lock_dir / TAKEOVER_DIR_NAME
        try:
            mutex.mkdir()
        except (FileExistsError, FileNotFoundError):
            return False
        try:
            if self.lock_owner() != stale_owner:
                return False
            self.claim_file.write_text(uuid.uuid4().hex, "utf-8")
            self.handler_id_file.unlink(missing_ok=True)
            self.status_file.unlink(missing_ok=True)
            self.handler_id = None
            self.status = TaskStatus.PENDING
        finally:
            mutex.rmdir()
        return True

    def save_handler_id(self, handler_id: str) -> None:
        self.handler_id_file.write_text(handler_id, "utf-8")
        self.handler_id = handler_id

    def load_handler_id(self) -> str | None:
        try:
            value = self.handler_id_file.read_text("utf-8").strip()
        except FileNotFoundError:
            return None
        self.handler_id = value or None
        return self.handler_id

    # Signaled status

    def save_signaled_status(self, status: TaskStatus) -> None:
        if status == TaskStatus.WORKING:
            self.status_file.unlink(missing_ok=True)
        else:
            self.status_file.write_text(status.value, "utf-8")
        self.status = status

    def load_status(self) -> TaskStatus:
        if not self.has_lock():
            self.status = TaskStatus.PENDING
            return self.status
        try:
            raw = self.status_file.read_text("utf-8").strip()
        except FileNotFoundError:
            raw = ""
        if raw == TaskStatus.WAITING.value:
            self.status = TaskStatus.WAITING
        elif raw == TaskStatus.DONE.value:
            self.status = TaskStatus.DONE
        else:
            self.status = TaskStatus.WORKING
        return self.status

    # Content

    def save_content(self, content: str) -> None:
        self.task_file.write_text(content, "utf-8")
        self.content = content

    def load_content(self) -> str:
        try:
            self.content = self.task_file.read_text("utf-8")
        except FileNotFoundError:
            self.content = ""
        return self.content

    # Review request

    def has_review(self) -> bool:
        return self.review_file.is_file()

    def save_review_id(self, review_id: int) -> None:
        self.review_file.write_text(str(review_id), "utf-8")
        self.review_id = review_id

    def load_review_id(self) -> int | None:
        try:
            raw = self.review_file.read_text("utf-8").strip()
        except FileNotFoundError:
            self.review_id = None
            return None
        try:
            self.review_id = int(raw)
        except ValueError as error:
            raise ValueError(f"Invalid review id in {self.review_file}: {raw!r}") from error
        return self.review_id

    # Base commit

    def save_base_commit(self, commit: str) -> None:
        self.base_commit_file.write_text(commit, "utf-8")

    def load_base_commit(self) -> str | None:
        try:
            value = self.base_commit_file.read_text("utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    # Presentation

    def window_name(self) -> str:
        emoji = {
            TaskStatus.WAITING: EMOJI_WAITING,
            TaskStatus.DONE: EMOJI_DONE,
            TaskStatus.CORRUPTED: EMOJI_WARNING,
        }.get(self.status, EMOJI_WORKING)
        return emoji + self.name[:MAX_WINDOW_NAME_LEN]

    def exists(self) -> bool:
        return self.agent_dir.is_dir()

    def remove(self) -> None:
        shutil.rmtree(self.agent_dir, ignore_errors=True)


def _read_marker(path: Path) -> str | None:
    try:
        value = path.read_text("utf-8").strip()
    except FileNotFoundError:
        return None
    return value or None

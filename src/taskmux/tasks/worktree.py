"""Direct inspection of a working tree's ``.git`` marker and file copy helpers."""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_MARKER_NAME = ".git"
_GITDIR_PREFIX = "gitdir:"
_SHA_RE = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")


class WorktreeMarkerError(ValueError):
    """The working tree marker is missing or cannot be followed to a commit."""


def has_valid_marker(worktree: Path) -> bool:
    """True when ``worktree/.git`` is a ``gitdir:`` pointer file."""

    marker = worktree / GIT_MARKER_NAME
    if not marker.is_file():
        return False
    try:
        first_line = marker.read_text("utf-8").splitlines()[0]
    except (OSError, UnicodeDecodeError, IndexError):
        return False
    return first_line.startswith(_GITDIR_PREFIX) and bool(
        first_line.removeprefix(_GITDIR_PREFIX).strip(),
    )


def read_gitdir(worktree: Path) -> Path:
    """Follow ``worktree/.git`` to the per-worktree metadata directory."""

    if not has_valid_marker(worktree):
        raise WorktreeMarkerError(f"Invalid .git file format in {worktree}")
    first_line = (worktree / GIT_MARKER_NAME).read_text("utf-8").splitlines()[0]
    gitdir = Path(first_line.removeprefix(_GITDIR_PREFIX).strip())
    if not gitdir.is_absolute():
        gitdir = (worktree / gitdir).resolve()
    return gitdir


def common_dir(gitdir: Path) -> Path:
    """Repository-wide metadata directory shared by all worktrees."""

    pointer = gitdir / "commondir"
    if not pointer.is_file():
        return gitdir
    target = Path(pointer.read_text("utf-8").strip())
    return target if target.is_absolute() else (gitdir / target).resolve()


def resolve_worktree_head(worktree: Path) -> str:
    """Return the commit checked out in ``worktree`` without calling git.

    A symbolic HEAD is resolved through loose refs, then ``packed-refs``, and
    finally through the worktree's own reflog, which still records the commit
    after the branch ref itself has been deleted.
    """

    gitdir = read_gitdir(worktree)
    try:
        head = (gitdir / "HEAD").read_text("utf-8").strip()
    except OSError as error:
        raise WorktreeMarkerError(f"Cannot read HEAD in {gitdir}: {error}") from error

    if _SHA_RE.match(head):
        return head
    if not head.startswith("ref:"):
        raise WorktreeMarkerError(f"Unrecognized HEAD in {gitdir}: {head!r}")

    ref = head.removeprefix("ref:").strip()
    shared = common_dir(gitdir)
    for base in (gitdir, shared):
        loose = base / ref
        if loose.is_file():
            value = loose.read_text("utf-8").strip()
            if _SHA_RE.match(value):
                return value

    packed = _lookup_packed_ref(shared / "packed-refs", ref)
    if packed is not None:
        return packed

    reflog = _last_reflog_commit(gitdir / "logs" / "HEAD")
    if reflog is not None:
        return reflog
    raise WorktreeMarkerError(f"Cannot resolve {ref} for worktree {worktree}")


def _lookup_packed_ref(path: Path, ref: str) -> str | None:
    if not path.is_file():
        return None
    for line in path.read_text("utf-8").splitlines():
        if not line or line.startswith(("#", "^")):
            continue
        sha, _, name = line.partition(" ")
        if name.strip() == ref and _SHA_RE.match(sha):
            return sha
    return None


def _last_reflog_commit(path: Path) -> str | None:
    if not path.is_file():
        return None
    lines = [line for line in path.read_text("utf-8").splitlines() if line.strip()]
    if not lines:
        return None
    # "<old> <new> <author> <timestamp> <tz>\t<message>"
    fields = lines[-1].split()
    if len(fields) < 2 or not _SHA_RE.match(fields[1]):  # noqa: PLR2004
        return None
    return fields[1]


def copy_tree_contents(src: Path, dst: Path, *, exclude: Iterable[str] = ()) -> None:
    """Copy everything under ``src`` into ``dst``, skipping excluded names."""

    excluded = set(exclude)
    dst.mkdir(parents=True, exist_ok=True)
    for entry in src.iterdir():
        if entry.name in excluded:
            continue
        target = dst / entry.name
        if entry.is_dir() and not entry.is_symlink():
            shutil.copytree(
                entry,
                target,
                symlinks=True,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(*excluded) if excluded else None,
            )
        else:
            shutil.copy2(entry, target, follow_symlinks=False)


def copy_untracked_files(files: Iterable[str], src_dir: Path, dst_dir: Path) -> list[str]:
    """Copy repository-relative ``files``; returns the ones that could not be copied."""

    failed: list[str] = []
    for relative in files:
        source = src_dir / relative
        target = dst_dir / relative
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target, follow_symlinks=False)
        except OSError as error:
            logger.warning("Failed to copy untracked file %s: %s", relative, error)
            failed.append(relative)
    return failed

"""Durable FIFO of work descriptions waiting to become tasks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".task"
_ENTRY_RE = re.compile(r"^(\d+)\.task$")
MAX_ADD_ATTEMPTS = 100


@dataclass(slots=True)
class BacklogEntry:
    """One queued description; ``number`` is its position key."""

    number: int
    path: Path
    content: str


def entry_file_name(number: int) -> str:
    return f"{number:03d}{ENTRY_SUFFIX}"


class BacklogQueue:
    """Ordered by the number encoded in each file name, never by directory order.

    Entries are written once and deleted once. Numbers are derived from the
    current maximum; an emptied queue restarts at 001.
    """

    def __init__(self, queue_dir: Path) -> None:
        self.queue_dir = queue_dir

    def add(self, content: str) -> BacklogEntry:
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        number = self._next_number()
        for _ in range(MAX_ADD_ATTEMPTS):
            path = self.queue_dir / entry_file_name(number)
            try:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(content)
            except FileExistsError:
                number += 1
                continue
            logger.info("Queued backlog entry %s", path.name)
            return BacklogEntry(number=number, path=path, content=content)
        raise OSError(f"Could not allocate a backlog entry in {self.queue_dir}")

    def list(self) -> list[BacklogEntry]:
        try:
            candidates = list(self.queue_dir.iterdir())
        except FileNotFoundError:
            return []

        entries: list[BacklogEntry] = []
        for path in candidates:
            match = _ENTRY_RE.match(path.name)
            if match is None or not path.is_file():
                continue
            try:
                content = path.read_text("utf-8")
            except (OSError, UnicodeDecodeError) as error:
                logger.warning("Skipping unreadable backlog entry %s: %s", path.name, error)
                continue
            entries.append(BacklogEntry(number=int(match.group(1)), path=path, content=content))
        entries.sort(key=lambda entry: entry.number)
        return entries

    def pop(self) -> BacklogEntry | None:
        for entry in self.list():
            try:
                entry.path.unlink()
            except FileNotFoundError:
                # Another consumer took it first.
                continue
            logger.info("Popped backlog entry %s", entry.path.name)
            return entry
        return None

    def count(self) -> int:
        return len(self.list())

    def clear(self) -> int:
        removed = 0
        for entry in self.list():
            entry.path.unlink(missing_ok=True)
            removed += 1
        return removed

    def _next_number(self) -> int:
        entries = self.list()
        return entries[-1].number + 1 if entries else 1

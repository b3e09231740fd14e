"""Task name sanitization and deterministic fallbacks."""

from __future__ import annotations

import re
from collections.abc import Container
from datetime import datetime

MAX_TASK_NAME_LEN = 32
MIN_TASK_NAME_LEN = 8
CONTENT_NAME_LEN = 30

TASK_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{6,30}[a-z0-9]$")
_INVALID_CHARS_RE = re.compile(r"[^a-z0-9-]+")
_HYPHEN_RUN_RE = re.compile(r"-{2,}")
_NON_ALNUM_RUN_RE = re.compile(r"[^a-z0-9]+")


def sanitize_task_name(raw: str) -> str:
    """Normalize free text into a lowercase hyphenated slug."""

    name = raw.strip().strip("\"'`").lower()
    name = name.replace(" ", "-").replace("_", "-")
    name = _INVALID_CHARS_RE.sub("", name)
    name = _HYPHEN_RUN_RE.sub("-", name).strip("-")
    if len(name) > MAX_TASK_NAME_LEN:
        name = name[:MAX_TASK_NAME_LEN].rstrip("-")
    return name


def is_valid_task_name(name: str) -> bool:
    return bool(TASK_NAME_PATTERN.match(name))


def fallback_task_name(now: datetime | None = None) -> str:
    moment = now or datetime.now()
    return f"task-{moment:%y%m%d%H%M%S}"


def name_from_content(content: str, existing: Container[str] = ()) -> str:
    """Derive a name from the first line of a description without any agent call."""

    first_line = content.splitlines()[0] if content.strip() else ""
    name = first_line.strip()[:CONTENT_NAME_LEN].lower()
    name = _NON_ALNUM_RUN_RE.sub("-", name).strip("-")
    if len(name) < MIN_TASK_NAME_LEN:
        name = f"queue-task-{name}".rstrip("-")

    base_name = name
    counter = 1
    while name in existing:
        name = f"{base_name}-{counter}"
        counter += 1
    return name

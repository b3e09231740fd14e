from __future__ import annotations

from pathlib import Path

import allure

from taskmux.tasks.backlog import BacklogQueue, entry_file_name

pytestmark = [
    allure.epic("Backlog"),
    allure.feature("Durable FIFO"),
]


def test_entries_pop_in_order_then_none(tmp_path: Path) -> None:
    queue = BacklogQueue(tmp_path / ".queue")
    for content in ("first", "second", "third"):
        queue.add(content)

    assert sorted(path.name for path in queue.queue_dir.iterdir()) == [
        "001.task",
        "002.task",
        "003.task",
    ]
    assert [queue.pop().content for _ in range(3)] == ["first", "second", "third"]
    assert queue.pop() is None


def test_order_is_numeric_not_lexical(tmp_path: Path) -> None:
    queue_dir = tmp_path / ".queue"
    queue_dir.mkdir()
    (queue_dir / "1000.task").write_text("late", "utf-8")
    (queue_dir / "999.task").write_text("early", "utf-8")

    queue = BacklogQueue(queue_dir)

    assert [entry.number for entry in queue.list()] == [999, 1000]
    assert queue.add("next").path.name == "1001.task"


def test_gaps_are_allowed_and_next_number_follows_max(tmp_path: Path) -> None:
    queue_dir = tmp_path / ".queue"
    queue_dir.mkdir()
    (queue_dir / "002.task").write_text("b", "utf-8")
    (queue_dir / "005.task").write_text("e", "utf-8")
    queue = BacklogQueue(queue_dir)

    assert queue.add("f").number == 6
    assert queue.pop().content == "b"


def test_foreign_files_are_ignored(tmp_path: Path) -> None:
    queue_dir = tmp_path / ".queue"
    queue_dir.mkdir()
    (queue_dir / "notes.txt").write_text("x", "utf-8")
    (queue_dir / "001.task.tmp").write_text("x", "utf-8")
    (queue_dir / "001.task").write_text("real", "utf-8")

    queue = BacklogQueue(queue_dir)

    assert queue.count() == 1
    assert queue.pop().content == "real"
    assert queue.pop() is None


def test_missing_directory_is_an_empty_queue(tmp_path: Path) -> None:
    queue = BacklogQueue(tmp_path / "absent")

    assert queue.list() == []
    assert queue.pop() is None
    assert queue.clear() == 0


def test_pop_skips_entry_taken_by_another_consumer(tmp_path: Path, monkeypatch) -> None:
    queue = BacklogQueue(tmp_path / ".queue")
    queue.add("taken")
    queue.add("mine")
    snapshot = queue.list()
    (queue.queue_dir / entry_file_name(1)).unlink()
    monkeypatch.setattr(queue, "list", lambda: snapshot)

    entry = queue.pop()

    assert entry is not None
    assert entry.content == "mine"


def test_clear_removes_every_entry(tmp_path: Path) -> None:
    queue = BacklogQueue(tmp_path / ".queue")
    queue.add("a")
    queue.add("b")

    assert queue.clear() == 2
    assert queue.count() == 0
    assert queue.add("c").number == 1


def test_undecodable_entry_is_skipped(tmp_path: Path) -> None:
    queue = BacklogQueue(tmp_path / ".queue")
    queue.add("first")
    (queue.queue_dir / entry_file_name(2)).write_bytes(b"\xff\xfe broken")
    (queue.queue_dir / entry_file_name(3)).write_text("third", "utf-8")

    assert [entry.number for entry in queue.list()] == [1, 3]
    assert queue.pop().content == "first"
    assert queue.count() == 1
    assert queue.add("fourth").path.name == "004.task"

from __future__ import annotations

import multiprocessing
import threading
from pathlib import Path

import allure

from taskmux.tasks.models import Task

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Handler Lock"),
]

CONTENDERS = 8


def _try_acquire(agent_dir: str) -> bool:
    path = Path(agent_dir)
    return Task(name=path.name, agent_dir=path).acquire_lock()


def test_parallel_processes_acquire_lock_exactly_once(tmp_path: Path) -> None:
    agent_dir = tmp_path / "race-for-lock"
    agent_dir.mkdir()

    context = multiprocessing.get_context("fork")
    with context.Pool(CONTENDERS) as pool:
        results = pool.map(_try_acquire, [str(agent_dir)] * CONTENDERS)

    assert results.count(True) == 1
    assert (agent_dir / ".tab-lock").is_dir()


def test_parallel_threads_acquire_lock_exactly_once(tmp_path: Path) -> None:
    agent_dir = tmp_path / "race-for-lock"
    agent_dir.mkdir()
    barrier = threading.Barrier(CONTENDERS)
    results: list[bool] = []
    results_lock = threading.Lock()

    def contend() -> None:
        task = Task(name=agent_dir.name, agent_dir=agent_dir)
        barrier.wait()
        acquired = task.acquire_lock()
        with results_lock:
            results.append(acquired)

    threads = [threading.Thread(target=contend) for _ in range(CONTENDERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1


def _try_take_over(agent_dir: str) -> bool:
    path = Path(agent_dir)
    return Task(name=path.name, agent_dir=path).take_over_lock(("@7", None))


def test_parallel_takeovers_of_a_dead_handler_succeed_exactly_once(tmp_path: Path) -> None:
    agent_dir = tmp_path / "race-for-lock"
    agent_dir.mkdir()
    stale = Task(name=agent_dir.name, agent_dir=agent_dir)
    stale.acquire_lock()
    stale.save_handler_id("@7")

    context = multiprocessing.get_context("fork")
    with context.Pool(CONTENDERS) as pool:
        results = pool.map(_try_take_over, [str(agent_dir)] * CONTENDERS)

    assert results.count(True) == 1
    assert stale.has_lock()
    handler_id, claim = stale.lock_owner()
    assert handler_id is None
    assert claim is not None
    assert not (stale.lock_dir / "takeover").exists()


def test_takeover_refuses_a_lock_that_changed_owner(tmp_path: Path) -> None:
    agent_dir = tmp_path / "fix-login-bug"
    agent_dir.mkdir()
    task = Task(name=agent_dir.name, agent_dir=agent_dir)
    task.acquire_lock()
    task.save_handler_id("@7")
    observed = task.lock_owner()

    assert task.take_over_lock(observed)
    task.save_handler_id("@8")

    assert not task.take_over_lock(observed)
    assert task.load_handler_id() == "@8"


def test_takeover_of_a_released_lock_fails(tmp_path: Path) -> None:
    agent_dir = tmp_path / "fix-login-bug"
    agent_dir.mkdir()
    task = Task(name=agent_dir.name, agent_dir=agent_dir)

    assert not task.take_over_lock((None, None))
    assert not task.has_lock()

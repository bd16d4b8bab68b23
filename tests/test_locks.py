from __future__ import annotations

import fcntl
import logging
import multiprocessing
import time
from pathlib import Path

import pytest

from conftest import Person
from persistent_map import InitializationError, LockAnomaly, PersistentMap
from persistent_map.locks import DirectoryLock, OpenDirectoryRegistry
from persistent_map.settings import Settings

CTX = multiprocessing.get_context("fork")
SETTINGS = Settings(cache_size=16, log_lock_events=False, json_indent=2)


def _broken_flock(fd, op):
    raise OSError(37, "No locks available")


def test_lock_context_acquires_and_releases(tmp_path: Path):
    lock = DirectoryLock(tmp_path / "lock")
    with lock:
        assert lock.held
    assert not lock.held
    assert lock.anomalies == []
    lock.close()
    assert lock.closed


def test_flock_failure_is_an_anomaly_not_an_error(tmp_path: Path, monkeypatch, caplog):
    seen: list[LockAnomaly] = []
    lock = DirectoryLock(tmp_path / "lock", on_anomaly=seen.append)

    monkeypatch.setattr(fcntl, "flock", _broken_flock)
    ran = False
    with caplog.at_level(logging.WARNING, logger="persistent_map.locks"):
        with lock:
            ran = True

    assert ran
    # one failure, one record: the release after a failed acquire stays quiet
    assert [a.phase for a in seen] == ["acquire"]
    assert isinstance(seen[0].cause, OSError)
    assert lock.anomalies == seen
    assert "LOCK ANOMALY" in caplog.text
    lock.close()


def test_closed_lock_reports_anomaly(tmp_path: Path):
    lock = DirectoryLock(tmp_path / "lock")
    lock.close()
    lock.close()
    with lock:
        pass
    assert [a.phase for a in lock.anomalies] == ["acquire"]
    assert all(a.cause is None for a in lock.anomalies)


def test_failing_anomaly_handler_is_ignored(tmp_path: Path, monkeypatch):
    def _handler(anomaly):
        raise RuntimeError("handler bug")

    lock = DirectoryLock(tmp_path / "lock", on_anomaly=_handler)
    monkeypatch.setattr(fcntl, "flock", _broken_flock)
    with lock:
        pass
    assert len(lock.anomalies) == 1
    lock.close()


def test_store_operations_survive_lock_anomalies(tmp_path: Path, monkeypatch):
    seen: list[LockAnomaly] = []
    with PersistentMap(tmp_path / "s", Person, on_lock_anomaly=seen.append, settings=SETTINGS) as store:
        monkeypatch.setattr(fcntl, "flock", _broken_flock)
        store.put("a", Person(name="A", age=1))
        assert store.get("a") == Person(name="A", age=1)
        assert store.remove("a") == Person(name="A", age=1)
    assert seen
    assert {a.phase for a in seen} == {"acquire"}


def test_failed_release_is_reported_once(tmp_path: Path, monkeypatch):
    real_flock = fcntl.flock

    def _unlock_fails(fd, op):
        if op == fcntl.LOCK_UN:
            raise OSError(5, "Input/output error")
        real_flock(fd, op)

    lock = DirectoryLock(tmp_path / "lock")
    monkeypatch.setattr(fcntl, "flock", _unlock_fails)
    with lock:
        assert lock.held
    assert [a.phase for a in lock.anomalies] == ["release"]
    assert not lock.held

    # the next cycle starts clean
    monkeypatch.setattr(fcntl, "flock", real_flock)
    with lock:
        pass
    assert len(lock.anomalies) == 1
    lock.close()


def test_lock_events_logged_at_debug(tmp_path: Path, caplog):
    lock = DirectoryLock(tmp_path / "lock", log_events=True)
    with caplog.at_level(logging.DEBUG, logger="persistent_map.locks"):
        with lock:
            pass
    assert "LOCK ACQUIRE" in caplog.text
    assert "LOCK RELEASE" in caplog.text
    lock.close()


def test_registry_allows_one_live_owner(tmp_path: Path):
    class Owner:
        pass

    registry = OpenDirectoryRegistry()
    first, second = Owner(), Owner()
    registry.claim(tmp_path, first)
    registry.claim(tmp_path, first)
    assert registry.is_open(tmp_path)

    with pytest.raises(InitializationError):
        registry.claim(tmp_path, second)

    registry.release(tmp_path, second)
    assert registry.is_open(tmp_path)
    registry.release(tmp_path, first)
    assert not registry.is_open(tmp_path)
    registry.claim(tmp_path, second)

    # a handle that was garbage collected without close() does not block
    del second
    registry.claim(tmp_path, first)


def _hold_lock(lock_path: str, locked, released) -> None:
    lock = DirectoryLock(Path(lock_path))
    with lock:
        locked.set()
        time.sleep(0.5)
        released.set()
    lock.close()


def test_put_waits_for_lock_held_by_another_process(tmp_path: Path):
    store_dir = tmp_path / "shared"
    store_dir.mkdir()
    locked, released = CTX.Event(), CTX.Event()
    proc = CTX.Process(target=_hold_lock, args=(str(store_dir / "lock"), locked, released))
    proc.start()
    try:
        assert locked.wait(10)
        with PersistentMap(store_dir, Person, settings=SETTINGS) as store:
            store.put("late", Person(name="Late", age=1))
            # the put could only finish once the other process let go
            assert released.is_set()
    finally:
        proc.join(10)
    assert proc.exitcode == 0


def _writer(store_dir: str, count: int) -> None:
    with PersistentMap(store_dir, Person, settings=SETTINGS) as store:
        for i in range(count):
            store.put(f"k{i}", Person(name=f"n{i}", age=i))


def test_puts_and_clears_from_two_processes_stay_consistent(tmp_path: Path):
    store_dir = tmp_path / "shared"
    proc = CTX.Process(target=_writer, args=(str(store_dir), 200))
    proc.start()
    try:
        time.sleep(0.05)
        with PersistentMap(store_dir, Person, settings=SETTINGS) as store:
            clears = 0
            while proc.is_alive() or clears == 0:
                store.clear()
                clears += 1
                assert (store_dir / "data").is_dir()
    finally:
        proc.join(30)
    assert proc.exitcode == 0

    # every surviving entry is complete, and the survivors are exactly the
    # puts that came after the last clear
    with PersistentMap(store_dir, Person, settings=SETTINGS) as store:
        for key, value in store.entries():
            assert value == Person(name=f"n{key[1:]}", age=int(key[1:]))
        indices = sorted(int(key[1:]) for key in store)
    if indices:
        assert indices == list(range(indices[0], 200))
    assert not (store_dir / "write.tmp").exists()

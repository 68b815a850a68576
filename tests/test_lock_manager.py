"""Tests for the cross-process sync lock.

Same-process tests construct two LockManagers for one root; because both
report the same PID, the second one sees a live owner and must back off.
The multiprocess tests use real child processes.
"""
import multiprocessing
import os
import re
import sys
import threading
import time

import pytest

from mnote.exceptions import SyncLockedError
from mnote.services.lock_manager import LockManager, is_process_running

DEAD_PID = 999999999

fork_only = pytest.mark.skipif(
    sys.platform == "win32" or "fork" not in multiprocessing.get_all_start_methods(),
    reason="requires the fork start method",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


class TestAcquireRelease:
    def test_acquire_writes_pid_and_timestamp(self, lock_manager):
        assert lock_manager.acquire()
        raw = lock_manager.lock_path.read_text()
        assert re.fullmatch(r"\d+\|\d+", raw)
        pid, stamp = raw.split("|")
        assert int(pid) == os.getpid()
        assert abs(int(stamp) - _now_ms()) < 60_000

    def test_lock_file_location(self, lock_manager, notes_root):
        assert lock_manager.lock_path == notes_root / ".mnote-sync.lock"

    def test_second_acquire_fails(self, lock_manager, notes_root):
        other = LockManager(notes_root)
        assert lock_manager.acquire()
        assert not other.acquire()
        assert lock_manager.release()
        assert other.acquire()

    def test_release_removes_file(self, lock_manager):
        lock_manager.acquire()
        assert lock_manager.release()
        assert not lock_manager.lock_path.exists()

    def test_release_only_by_owner(self, lock_manager):
        lock_manager.lock_path.write_text(f"1|{_now_ms()}")
        assert not lock_manager.release()
        assert lock_manager.lock_path.exists()

    def test_release_without_lock(self, lock_manager):
        assert not lock_manager.release()

    def test_is_locked(self, lock_manager, notes_root):
        assert not lock_manager.is_locked()
        lock_manager.acquire()
        assert LockManager(notes_root).is_locked()


class TestStaleLocks:
    def test_dead_owner_taken_over(self, lock_manager):
        lock_manager.lock_path.write_text(f"{DEAD_PID}|{_now_ms()}")
        assert lock_manager.acquire()
        assert lock_manager.read_owner()[0] == os.getpid()

    def test_old_lock_taken_over(self, notes_root):
        manager = LockManager(notes_root, stale_after=600)
        two_hours_ago = _now_ms() - 2 * 3600 * 1000
        manager.lock_path.write_text(f"{os.getpid()}|{two_hours_ago}")
        assert manager.acquire()
        assert manager.read_owner()[1] > two_hours_ago

    def test_fresh_live_lock_respected(self, lock_manager):
        lock_manager.lock_path.write_text(f"{os.getpid()}|{_now_ms()}")
        assert not lock_manager.acquire()

    def test_garbage_lock_judged_by_age(self, lock_manager):
        lock_manager.lock_path.write_text("not a lock")
        assert not lock_manager.acquire()
        old = time.time() - 3600
        os.utime(lock_manager.lock_path, (old, old))
        assert lock_manager.acquire()

    def test_takeover_race_leaves_single_holder(self, notes_root, monkeypatch):
        first = LockManager(notes_root)
        second = LockManager(notes_root)
        first.lock_path.write_text(f"{DEAD_PID}|0")
        judged = second._stale_snapshot

        def judged_then_overtaken():
            snapshot = judged()
            assert first.acquire()
            return snapshot

        monkeypatch.setattr(second, "_stale_snapshot", judged_then_overtaken)
        assert not second.acquire()
        owner = first.read_owner()
        assert owner is not None and owner[1] > 0
        assert [p.name for p in notes_root.iterdir() if p.name.endswith(".stale")] == []

    def test_takeover_leaves_no_tombstone(self, lock_manager, notes_root):
        lock_manager.lock_path.write_text(f"{DEAD_PID}|0")
        assert lock_manager.acquire()
        assert sorted(p.name for p in notes_root.iterdir() if p.name.startswith(".mnote-sync")) == [
            ".mnote-sync.lock"
        ]

    def test_is_process_running(self):
        assert is_process_running(os.getpid())
        assert not is_process_running(DEAD_PID)
        assert not is_process_running(0)


class TestWaiting:
    def test_wait_times_out(self, lock_manager, notes_root):
        LockManager(notes_root).acquire()
        start = time.monotonic()
        assert not lock_manager.acquire(wait=True, timeout=0.3)
        assert time.monotonic() - start >= 0.25

    def test_wait_succeeds_after_release(self, lock_manager, notes_root):
        holder = LockManager(notes_root)
        holder.acquire()
        timer = threading.Timer(0.1, holder.release)
        timer.start()
        try:
            assert lock_manager.acquire(wait=True, timeout=5)
        finally:
            timer.cancel()

    def test_held_context_manager(self, lock_manager):
        with lock_manager.held():
            assert lock_manager.lock_path.exists()
        assert not lock_manager.lock_path.exists()

    def test_held_raises_when_taken(self, lock_manager, notes_root):
        LockManager(notes_root).acquire()
        with pytest.raises(SyncLockedError):
            with lock_manager.held():
                pass


def _race_worker(root, start, done, results):
    manager = LockManager(root)
    start.wait()
    results.put(manager.acquire(wait=False))
    done.wait(10)
    manager.release()


def _hold_and_exit(root):
    LockManager(root).acquire()
    # Exit without releasing, as if the process had crashed
    os._exit(0)


@fork_only
class TestMultiProcess:
    def test_exactly_one_process_wins(self, notes_root):
        ctx = multiprocessing.get_context("fork")
        start, done = ctx.Event(), ctx.Event()
        results = ctx.Queue()
        workers = [
            ctx.Process(target=_race_worker, args=(str(notes_root), start, done, results))
            for _ in range(4)
        ]
        for w in workers:
            w.start()
        start.set()
        try:
            outcomes = [results.get(timeout=10) for _ in workers]
        finally:
            done.set()
            for w in workers:
                w.join(timeout=10)
        assert outcomes.count(True) == 1
        assert not (notes_root / ".mnote-sync.lock").exists()

    def test_crashed_holder_is_stale(self, notes_root, lock_manager):
        ctx = multiprocessing.get_context("fork")
        proc = ctx.Process(target=_hold_and_exit, args=(str(notes_root),))
        proc.start()
        proc.join(timeout=10)
        owner = lock_manager.read_owner()
        assert owner is not None and owner[0] == proc.pid
        assert lock_manager.acquire()
        assert lock_manager.read_owner()[0] == os.getpid()

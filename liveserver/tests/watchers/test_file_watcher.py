"""Tests for the polling SimpleWatcher."""

import asyncio
import os
import time
from unittest.mock import Mock

import pytest
from conftest import bump_mtime

from liveserver.watchers.file_watcher import (
    MIN_SLEEPTIME,
    FileWatcher,
    LoopOutcome,
    SimpleWatcher,
    WatchConfig,
    WatcherStatus,
)

FAST = WatchConfig(sleeptime=MIN_SLEEPTIME)


async def wait_until(condition, timeout: float = 2.0) -> bool:
    """Poll a condition until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        await asyncio.sleep(0.01)
    return condition()


class TestWatcherSetup:
    """Test cases for watcher construction and the watch list."""

    def test_initial_status_idle(self):
        """Test that a watcher without a callback is idle."""
        watcher = SimpleWatcher()
        assert watcher.status is WatcherStatus.IDLE
        assert watcher.is_running() is False

    def test_initial_status_runnable(self):
        """Test that a watcher with a callback is runnable."""
        watcher = SimpleWatcher(Mock())
        assert watcher.status is WatcherStatus.RUNNABLE

    def test_sleeptime_clamped(self):
        """Test that too short intervals are raised to the minimum."""
        watcher = SimpleWatcher(config=WatchConfig(sleeptime=0.001))
        assert watcher.sleeptime == MIN_SLEEPTIME

        watcher = SimpleWatcher(config=WatchConfig(sleeptime=0.5))
        assert watcher.sleeptime == 0.5

    def test_satisfies_file_watcher_protocol(self):
        """Test that SimpleWatcher provides the watcher operations."""
        assert isinstance(SimpleWatcher(), FileWatcher)

    def test_watch_file_is_idempotent(self, sample_file):
        """Test that watching a file twice keeps one entry."""
        watcher = SimpleWatcher()

        watcher.watch_file(sample_file)
        watcher.watch_file(str(sample_file))

        assert len(watcher.watched_files) == 1
        assert watcher.is_file_watched(sample_file)

    def test_watch_missing_file_ignored(self, tmp_path):
        """Test that a missing file is not added."""
        watcher = SimpleWatcher()
        watcher.watch_file(tmp_path / "missing.txt")

        assert watcher.watched_files == []
        assert not watcher.is_file_watched(tmp_path / "missing.txt")

    def test_watch_order_preserved(self, tmp_path):
        """Test that files are kept in the order they were added."""
        paths = []
        for name in ("b.txt", "a.txt", "c.txt"):
            path = tmp_path / name
            path.write_text(name)
            paths.append(str(path))

        watcher = SimpleWatcher()
        for path in paths:
            watcher.watch_file(path)

        assert [watched.path for watched in watcher.watched_files] == paths

    def test_get_status(self, sample_file):
        """Test the status report of an idle watcher."""
        watcher = SimpleWatcher(Mock(), FAST)
        watcher.watch_file(sample_file)

        status = watcher.get_status()

        assert status["status"] == "runnable"
        assert status["is_running"] is False
        assert status["watched_files"] == [str(sample_file)]
        assert status["statistics"]["sweeps"] == 0
        assert status["last_error"] is None


class TestWatcherLifecycle:
    """Test cases for starting and stopping the polling task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test the basic lifecycle."""
        watcher = SimpleWatcher(Mock(), FAST)

        await watcher.start()
        assert watcher.status is WatcherStatus.RUNNING
        assert watcher.active_loops == 1

        assert await watcher.stop() is True
        assert watcher.status is WatcherStatus.RUNNABLE
        assert watcher.active_loops == 0
        assert watcher.last_outcome is LoopOutcome.STOPPED

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self):
        """Test that stopping an idle watcher reports it was not running."""
        watcher = SimpleWatcher(Mock(), FAST)
        assert await watcher.stop() is False

    @pytest.mark.asyncio
    async def test_start_twice_keeps_single_task(self):
        """Test that a second start does not spawn another loop."""
        watcher = SimpleWatcher(Mock(), FAST)

        await watcher.start()
        task = watcher.task
        await watcher.start()

        assert watcher.task is task
        assert watcher.active_loops == 1
        assert watcher.stats["loops_started"] == 1

        await watcher.stop()

    @pytest.mark.asyncio
    async def test_restart_cycles_never_overlap(self):
        """Test that repeated start/stop cycles leave at most one loop alive."""
        watcher = SimpleWatcher(Mock(), FAST)

        for _ in range(5):
            await watcher.start()
            assert watcher.active_loops == 1
            await watcher.stop()
            assert watcher.active_loops == 0

        assert watcher.stats["loops_started"] == 5

    @pytest.mark.asyncio
    async def test_stop_after_external_cancel(self):
        """Test that stop tolerates a task cancelled elsewhere."""
        watcher = SimpleWatcher(Mock(), FAST)
        await watcher.start()

        watcher.task.cancel()

        assert await watcher.stop() is True
        assert watcher.is_running() is False
        assert watcher.active_loops == 0

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        """Test using the watcher as an async context manager."""
        async with SimpleWatcher(Mock(), FAST) as watcher:
            assert watcher.is_running()

        assert not watcher.is_running()

    @pytest.mark.asyncio
    async def test_loop_without_callback_does_not_sweep(self, sample_file):
        """Test that a watcher without callback skips checking files."""
        watcher = SimpleWatcher(config=FAST)
        watcher.watch_file(sample_file)

        await watcher.start()
        await asyncio.sleep(MIN_SLEEPTIME * 4)
        await watcher.stop()

        assert watcher.stats["sweeps"] == 0


class TestChangeDetection:
    """Test cases for sweeps and callbacks."""

    @pytest.mark.asyncio
    async def test_callback_once_per_change(self, sample_file):
        """Test that one modification triggers exactly one callback."""
        callback = Mock()
        watcher = SimpleWatcher(callback, FAST)
        watcher.watch_file(sample_file)
        await watcher.start()

        bump_mtime(sample_file)
        assert await wait_until(lambda: callback.call_count >= 1)

        # further sweeps must not report the same change again
        await asyncio.sleep(MIN_SLEEPTIME * 4)
        await watcher.stop()

        callback.assert_called_once_with(str(sample_file))
        assert watcher.stats["changes_detected"] == 1

    @pytest.mark.asyncio
    async def test_callbacks_follow_watch_order(self, tmp_path):
        """Test that several changes in one sweep are reported in list order."""
        first = tmp_path / "first.txt"
        second = tmp_path / "second.txt"
        first.write_text("1")
        second.write_text("2")

        seen = []
        watcher = SimpleWatcher(seen.append, FAST)
        watcher.watch_file(second)
        watcher.watch_file(first)

        bump_mtime(first)
        bump_mtime(second)
        await watcher.start()
        assert await wait_until(lambda: len(seen) == 2)
        await watcher.stop()

        assert seen == [str(second), str(first)]

    @pytest.mark.asyncio
    async def test_deleted_file_removed(self, tmp_path, sample_file):
        """Test that a deleted file is dropped from the list without a callback."""
        other = tmp_path / "other.txt"
        other.write_text("other")

        callback = Mock()
        watcher = SimpleWatcher(callback, FAST)
        watcher.watch_file(sample_file)
        watcher.watch_file(other)
        await watcher.start()

        sample_file.unlink()
        assert await wait_until(lambda: not watcher.is_file_watched(sample_file))
        await watcher.stop()

        callback.assert_not_called()
        assert [watched.path for watched in watcher.watched_files] == [str(other)]
        assert watcher.stats["files_removed"] == 1

    @pytest.mark.asyncio
    async def test_file_added_while_running(self, sample_file):
        """Test that files added to a running watcher are checked."""
        callback = Mock()
        watcher = SimpleWatcher(callback, FAST)
        await watcher.start()

        watcher.watch_file(sample_file)
        await asyncio.sleep(MIN_SLEEPTIME * 2)
        bump_mtime(sample_file)

        assert await wait_until(lambda: callback.call_count == 1)
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_callback_error_interrupts(self, sample_file):
        """Test that a failing callback ends the loop and flags the watcher."""
        callback = Mock(side_effect=RuntimeError("boom"))
        watcher = SimpleWatcher(callback, FAST)
        watcher.watch_file(sample_file)
        await watcher.start()

        bump_mtime(sample_file)
        assert await wait_until(lambda: not watcher.is_running())

        assert watcher.status is WatcherStatus.INTERRUPTED
        assert watcher.last_outcome is LoopOutcome.FAILED
        assert str(watcher.last_error) == "boom"
        assert watcher.active_loops == 0
        assert watcher.get_status()["last_error"] == "boom"

        # a stopped, interrupted watcher has nothing left to stop
        assert await watcher.stop() is False

    @pytest.mark.asyncio
    async def test_start_clears_interruption(self, sample_file):
        """Test that starting again after a failure resumes watching."""
        callback = Mock(side_effect=[RuntimeError("boom"), None])
        watcher = SimpleWatcher(callback, FAST)
        watcher.watch_file(sample_file)
        await watcher.start()

        bump_mtime(sample_file)
        assert await wait_until(lambda: watcher.status is WatcherStatus.INTERRUPTED)

        await watcher.start()
        assert watcher.status is WatcherStatus.RUNNING
        assert watcher.last_error is None

        bump_mtime(sample_file)
        assert await wait_until(lambda: callback.call_count == 2)
        await watcher.stop()


class TestCallbackSwap:
    """Test cases for set_callback."""

    @pytest.mark.asyncio
    async def test_swap_while_running_keeps_files(self, tmp_path):
        """Test that replacing the callback restarts the loop and keeps the list."""
        a = tmp_path / "a.txt"
        b = tmp_path / "b.txt"
        a.write_text("a")
        b.write_text("b")

        old_callback = Mock()
        new_callback = Mock()
        watcher = SimpleWatcher(old_callback, FAST)
        watcher.watch_file(a)
        watcher.watch_file(b)
        await watcher.start()

        await watcher.set_callback(new_callback)

        assert watcher.is_running()
        assert watcher.active_loops == 1
        assert [watched.path for watched in watcher.watched_files] == [str(a), str(b)]

        bump_mtime(b)
        assert await wait_until(lambda: new_callback.call_count == 1)
        await watcher.stop()

        new_callback.assert_called_once_with(str(b))
        old_callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_swap_while_stopped_does_not_start(self):
        """Test that setting a callback on a stopped watcher leaves it stopped."""
        watcher = SimpleWatcher(config=FAST)
        callback = Mock()

        await watcher.set_callback(callback)

        assert watcher.callback is callback
        assert watcher.is_running() is False
        assert watcher.status is WatcherStatus.RUNNABLE


class TestEndToEnd:
    """Watch a file, edit it, and stop."""

    @pytest.mark.asyncio
    async def test_modify_single_file(self, sample_file):
        """Test the complete watch cycle on one file."""
        recorded_paths = []
        watcher = SimpleWatcher(
            lambda path: recorded_paths.append(os.path.basename(path)),
            WatchConfig(sleeptime=0.05),
        )
        watcher.watch_file(sample_file)
        await watcher.start()

        await asyncio.sleep(0.1)
        bump_mtime(sample_file)
        await asyncio.sleep(0.3)

        assert await watcher.stop() is True
        assert recorded_paths == ["x.txt"]
        assert watcher.status is WatcherStatus.RUNNABLE

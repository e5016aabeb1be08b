"""
Polling File Watcher for the Live-Reload Server

This module provides the file watcher driving browser reloads: a single
asyncio task sweeps a list of watched files at a fixed interval and invokes
a callback for every file whose modification time moved forward.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from liveserver.exceptions import PathNotFoundError
from liveserver.watchers.watched_file import ChangeState, WatchedFile

MIN_SLEEPTIME = 0.05
DEFAULT_SLEEPTIME = 0.1

# Upper bound for start() waiting on the polling task to begin
START_TIMEOUT = 5.0

FileChangedCallback = Callable[[str], Any]


@dataclass
class WatchConfig:
    """Configuration for file watching behavior."""

    # Seconds between two sweeps, clamped to MIN_SLEEPTIME
    sleeptime: float = DEFAULT_SLEEPTIME

    # Logging configuration
    log_level: str = "INFO"


class WatcherStatus(Enum):
    """Lifecycle states of a watcher."""

    IDLE = "idle"
    RUNNABLE = "runnable"
    RUNNING = "running"
    INTERRUPTED = "interrupted"


class LoopOutcome(Enum):
    """How a polling loop ended."""

    STOPPED = "stopped"
    FAILED = "failed"


@runtime_checkable
class FileWatcher(Protocol):
    """Operations the server needs from a file watcher."""

    @property
    def status(self) -> WatcherStatus: ...

    async def start(self) -> None: ...

    async def stop(self) -> bool: ...

    async def set_callback(self, callback: FileChangedCallback) -> None: ...

    def watch_file(self, path: str | os.PathLike[str]) -> None: ...


class SimpleWatcher:
    """
    Polling file watcher.

    Features:
    - One asyncio polling task at most, started and stopped cooperatively
    - Callback hot-swapping that keeps the list of watched files
    - Deleted files are dropped from the list after the sweep that notices them
    - Callback failures stop the loop and flag the watcher as interrupted
    """

    def __init__(self, callback: FileChangedCallback | None = None, config: WatchConfig | None = None) -> None:
        """
        Initialize the watcher.

        Args:
            callback: Called with the path of every changed file
            config: Watch configuration, defaults to WatchConfig()
        """
        self.config = config or WatchConfig()

        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(getattr(logging, self.config.log_level.upper(), logging.INFO))

        self.callback = callback
        self.sleeptime = max(MIN_SLEEPTIME, self.config.sleeptime)
        self.watched_files: list[WatchedFile] = []

        # Polling task state
        self.task: asyncio.Task[LoopOutcome] | None = None
        self._stop_requested = False
        self._loop_started: asyncio.Event | None = None
        self.active_loops = 0

        # Failure tracking
        self.interrupted = False
        self.last_error: BaseException | None = None
        self.last_outcome: LoopOutcome | None = None

        self.start_time: float | None = None
        self.stats = {
            "sweeps": 0,
            "changes_detected": 0,
            "files_removed": 0,
            "loops_started": 0,
        }

    @property
    def status(self) -> WatcherStatus:
        """Current lifecycle state."""
        if self.interrupted:
            return WatcherStatus.INTERRUPTED
        if self.is_running():
            return WatcherStatus.RUNNING
        if self.callback is not None:
            return WatcherStatus.RUNNABLE
        return WatcherStatus.IDLE

    def is_running(self) -> bool:
        """Check whether the polling task is alive."""
        return self.task is not None and not self.task.done()

    def is_file_watched(self, path: str | os.PathLike[str]) -> bool:
        """Check whether a path is already in the watch list."""
        path = os.fspath(path)
        return any(watched.path == path for watched in self.watched_files)

    def watch_file(self, path: str | os.PathLike[str]) -> None:
        """
        Add a file to the watch list.

        Missing files and files already watched are ignored.

        Args:
            path: Path of the file to watch
        """
        if self.is_file_watched(path):
            return

        try:
            watched = WatchedFile.from_path(path)
        except PathNotFoundError:
            self.logger.debug(f"Not watching '{os.fspath(path)}': file does not exist")
            return

        self.watched_files.append(watched)
        self.logger.debug(f"Now watching '{watched.path}'")

    async def set_callback(self, callback: FileChangedCallback) -> None:
        """
        Set or replace the callback, restarting the loop if it was running.

        Args:
            callback: Called with the path of every changed file
        """
        was_running = await self.stop()
        self.callback = callback
        if was_running:
            await self.start()

    async def start(self) -> None:
        """Start the polling task unless it is already running."""
        if self.is_running():
            return

        self._stop_requested = False
        self.interrupted = False
        self.last_error = None
        self._loop_started = asyncio.Event()

        self.task = asyncio.create_task(self._watch_loop())

        # Make sure the loop is live so a stop() right after start() sees it running
        try:
            await asyncio.wait_for(self._loop_started.wait(), timeout=START_TIMEOUT)
        except asyncio.TimeoutError:
            self.logger.warning(f"Polling task did not report running within {START_TIMEOUT}s")

        self.start_time = time.time()
        self.logger.debug(
            f"File watcher started. Watching {len(self.watched_files)} files every {self.sleeptime}s"
        )

    async def stop(self) -> bool:
        """
        Stop the polling task and wait until it has finished.

        The watch list and callback are kept for a later start().

        Returns:
            True if the watcher was running when called
        """
        if not self.is_running():
            return False

        task = self.task
        assert task is not None
        self._stop_requested = True

        # asyncio.wait never raises, so a task cancelled from elsewhere is tolerated
        await asyncio.wait({task})

        if task.cancelled():
            self.logger.debug("Polling task was cancelled before stopping")

        uptime = time.time() - self.start_time if self.start_time else 0
        self.logger.debug(f"File watcher stopped. Uptime: {uptime:.1f}s")
        return True

    async def _watch_loop(self) -> LoopOutcome:
        """Main polling loop."""
        self.active_loops += 1
        self.stats["loops_started"] += 1
        if self._loop_started is not None:
            self._loop_started.set()

        outcome = LoopOutcome.STOPPED
        try:
            while not self._stop_requested:
                await asyncio.sleep(self.sleeptime)
                if self._stop_requested:
                    break

                # Without a callback there is nothing to report, so skip checking
                if self.callback is None:
                    continue

                self._sweep()

        except Exception as e:
            outcome = LoopOutcome.FAILED
            self.interrupted = True
            self.last_error = e
            self.logger.error(
                f"Exception in file-watching task, the server needs to be stopped: {e}", exc_info=True
            )

        finally:
            self.active_loops -= 1

        self.last_outcome = outcome
        return outcome

    def _sweep(self) -> None:
        """Check every watched file once, in insertion order."""
        callback = self.callback
        assert callback is not None

        deleted: list[WatchedFile] = []
        for watched in list(self.watched_files):
            state = watched.has_changed()

            if state is ChangeState.CHANGED:
                watched.mark_unchanged()
                self.stats["changes_detected"] += 1
                callback(watched.path)

            elif state is ChangeState.DELETED:
                self.logger.info(f"File '{watched.path}' does not exist, removing it from watched files")
                deleted.append(watched)

        if deleted:
            removed = {id(watched) for watched in deleted}
            self.watched_files = [watched for watched in self.watched_files if id(watched) not in removed]
            self.stats["files_removed"] += len(deleted)

        self.stats["sweeps"] += 1

    def get_status(self) -> dict[str, Any]:
        """Get current watcher status and statistics."""
        uptime = time.time() - self.start_time if self.start_time and self.is_running() else 0

        return {
            "status": self.status.value,
            "is_running": self.is_running(),
            "uptime_seconds": uptime,
            "sleeptime": self.sleeptime,
            "watched_files": [watched.path for watched in self.watched_files],
            "statistics": self.stats.copy(),
            "last_error": str(self.last_error) if self.last_error else None,
        }

    async def __aenter__(self) -> "SimpleWatcher":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()

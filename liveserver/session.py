"""Serve session: everything one running live-reload server owns."""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

from liveserver.watchers.file_watcher import FileWatcher, SimpleWatcher, WatchConfig, WatcherStatus
from liveserver.websocket.viewer_registry import ViewerRegistry

logger = logging.getLogger(__name__)

CORE_LOOP_INTERVAL = 0.1

CoreLoopFunction = Callable[[int, FileWatcher], None]


@dataclass
class LiveSession:
    """
    State of one serve session.

    Created when serving starts and torn down by shutdown(); nothing is
    shared between sessions.
    """

    content_dir: Path
    watcher: FileWatcher
    viewers: ViewerRegistry = field(default_factory=ViewerRegistry)
    verbose: bool = False

    # Called every core loop cycle with the cycle counter and the watcher
    coreloop: CoreLoopFunction | None = None

    @classmethod
    def create(
        cls,
        content_dir: Path,
        config: WatchConfig | None = None,
        verbose: bool = False,
        coreloop: CoreLoopFunction | None = None,
    ) -> "LiveSession":
        """
        Build a session with a SimpleWatcher reloading the session's viewers.

        Args:
            content_dir: Directory to serve
            config: Watch configuration for the watcher
            verbose: Log file changes and connections
            coreloop: Optional function run every core loop cycle

        Returns:
            A new session, not started yet
        """
        config = config or WatchConfig()
        if verbose:
            config = replace(config, log_level="DEBUG")

        viewers = ViewerRegistry()
        watcher = SimpleWatcher(viewers.on_file_changed, config)
        return cls(content_dir=content_dir, watcher=watcher, viewers=viewers, verbose=verbose, coreloop=coreloop)

    def needs_shutdown(self) -> bool:
        """Check whether the watcher failed."""
        return self.watcher.status is WatcherStatus.INTERRUPTED

    async def run_core_loop(self, on_interrupt: Callable[[], None] | None = None) -> int:
        """
        Poll the session for failures until one happens or the task is cancelled.

        Args:
            on_interrupt: Called once when the session needs to shut down

        Returns:
            Number of cycles run
        """
        counter = 1
        while not self.needs_shutdown():
            if self.coreloop is not None:
                self.coreloop(counter, self.watcher)
            counter += 1
            await asyncio.sleep(CORE_LOOP_INTERVAL)

        logger.warning("⚠️ File watching was interrupted, shutting down the server")
        if on_interrupt is not None:
            on_interrupt()
        return counter

    async def shutdown(self) -> None:
        """Stop the watcher and close every viewer."""
        logger.debug("Shutting down live-reload session")
        await self.watcher.stop()
        await self.viewers.close_all()

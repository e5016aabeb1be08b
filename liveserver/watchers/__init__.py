"""
File watching utilities for the live-reload server.

This module provides the polling watcher that notices changes to served
files so connected browsers can be told to reload.
"""

from liveserver.watchers.file_watcher import (
    FileWatcher,
    LoopOutcome,
    SimpleWatcher,
    WatchConfig,
    WatcherStatus,
)
from liveserver.watchers.watched_file import ChangeState, WatchedFile

__all__ = [
    "ChangeState",
    "FileWatcher",
    "LoopOutcome",
    "SimpleWatcher",
    "WatchConfig",
    "WatchedFile",
    "WatcherStatus",
]

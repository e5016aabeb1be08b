"""
Watched file records and change detection primitives.

A WatchedFile pairs a path with the modification time observed the last
time it was examined. The watcher compares it against the file on disk on
every sweep.
"""

import os
from dataclasses import dataclass
from enum import Enum

from liveserver.exceptions import PathNotFoundError


class ChangeState(Enum):
    """Result of checking a watched file against the file on disk."""

    DELETED = -1
    UNCHANGED = 0
    CHANGED = 1


@dataclass
class WatchedFile:
    """A file being watched and its last known modification time."""

    path: str
    mtime: float

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "WatchedFile":
        """
        Create a record for an existing file.

        Args:
            path: Path of the file to watch

        Returns:
            A WatchedFile holding the file's current modification time

        Raises:
            PathNotFoundError: If the path is not an existing file
        """
        path = os.fspath(path)
        if not os.path.isfile(path):
            raise PathNotFoundError(path)

        try:
            mtime = os.path.getmtime(path)
        except FileNotFoundError as e:
            raise PathNotFoundError(path) from e

        return cls(path=path, mtime=mtime)

    def has_changed(self) -> ChangeState:
        """Check the file on disk; a missing file is reported, never raised."""
        try:
            current = os.path.getmtime(self.path)
        except FileNotFoundError:
            return ChangeState.DELETED

        if not os.path.isfile(self.path):
            return ChangeState.DELETED

        return ChangeState.CHANGED if current > self.mtime else ChangeState.UNCHANGED

    def mark_unchanged(self) -> None:
        """Record the current modification time as seen."""
        try:
            self.mtime = os.path.getmtime(self.path)
        except FileNotFoundError:
            # deleted since the check, the next sweep removes it
            pass

"""
Viewer Registry for the Live-Reload Server

Keeps track of the WebSocket connections opened by served pages (one per
browser tab) and tells them to reload when the files they show change:
- HTML pages only reload the tabs displaying that page
- Any other asset (stylesheets, scripts, images) reloads every tab
"""

import asyncio
import logging
import os
from typing import Any

from fastapi import WebSocket

UPDATE_MESSAGE = "update"
PAGE_EXTENSIONS = frozenset({".html", ".htm"})


def is_page(path: str) -> bool:
    """Check whether a path is an HTML page rather than a shared asset."""
    return os.path.splitext(path)[1].lower() in PAGE_EXTENSIONS


class ViewerRegistry:
    """
    Maps served file paths to the WebSocket viewers displaying them.

    Features:
    - Per-path viewer lists, one entry per open tab
    - Reload fan-out on file change, broadcast for non-page assets
    - Viewers are closed after notification; reloaded pages reconnect
    - Transport errors are contained to the failing viewer
    """

    def __init__(self) -> None:
        """Initialize the registry."""
        self.logger = logging.getLogger(__name__)

        self._viewers: dict[str, list[WebSocket]] = {}

        # Notification tasks scheduled from the watcher callback
        self.pending_tasks: set[asyncio.Task[None]] = set()

        self.stats = {
            "total_viewers": 0,
            "notifications_sent": 0,
            "transport_errors": 0,
        }

    def register_viewer(self, path: str, websocket: WebSocket) -> None:
        """
        Add a viewer for a served file.

        Args:
            path: Filesystem path of the file displayed by the viewer
            websocket: Accepted WebSocket connection of the viewer
        """
        self._viewers.setdefault(path, []).append(websocket)
        self.stats["total_viewers"] += 1
        self.logger.debug(f"Viewer connected for '{path}'. Viewers on this file: {len(self._viewers[path])}")

    def unregister_viewer(self, path: str, websocket: WebSocket) -> None:
        """
        Drop a viewer that went away on its own.

        Args:
            path: Filesystem path the viewer was registered for
            websocket: The viewer's WebSocket connection
        """
        viewers = self._viewers.get(path)
        if viewers is None:
            return

        if websocket in viewers:
            viewers.remove(websocket)
            self.logger.debug(f"Viewer disconnected from '{path}'")

        if not viewers:
            del self._viewers[path]

    def get_viewers(self, path: str) -> list[WebSocket]:
        """Get a copy of the viewers registered for a path."""
        return list(self._viewers.get(path, []))

    def get_viewer_count(self) -> int:
        """Get the number of open viewers across all paths."""
        return sum(len(viewers) for viewers in self._viewers.values())

    def on_file_changed(self, path: str) -> None:
        """
        Watcher callback: notify the viewers affected by a changed file.

        Viewer lists are emptied here, before any await, so a viewer that
        connects afterwards is never handed a stale notification.

        Args:
            path: Path of the changed file
        """
        self.logger.debug(f"Reacting to change in file '{path}'...")

        if is_page(path):
            self.notify_path(path)
        else:
            self.notify_all()

    def notify_path(self, path: str) -> None:
        """Schedule the reload of every viewer of one path."""
        batch = self._take(path)
        if batch:
            self._schedule(self.notify_and_close(batch))

    def notify_all(self) -> None:
        """Schedule the reload of every viewer in the registry."""
        for path in list(self._viewers):
            self.notify_path(path)

    def _take(self, path: str) -> list[WebSocket]:
        """Remove and return the viewers registered for a path."""
        viewers = self._viewers.get(path)
        if not viewers:
            return []
        batch = list(viewers)
        viewers.clear()
        return batch

    def _schedule(self, coro: Any) -> None:
        """Run a notification coroutine as a tracked task."""
        task = asyncio.create_task(coro)
        self.pending_tasks.add(task)
        task.add_done_callback(self.pending_tasks.discard)

    async def notify_and_close(self, viewers: list[WebSocket]) -> int:
        """
        Send the reload message to each viewer, close it, and empty the list.

        A broken viewer never prevents the others from being notified.

        Args:
            viewers: Viewer list to process

        Returns:
            Number of viewers that received the message
        """
        batch = list(viewers)
        viewers.clear()

        notified = 0
        for websocket in batch:
            try:
                await self._send_to_client(websocket, UPDATE_MESSAGE)
                notified += 1
            except Exception as e:
                self.stats["transport_errors"] += 1
                self.logger.debug(f"Failed to send update to viewer: {e}")

            try:
                await websocket.close()
            except Exception as e:
                self.stats["transport_errors"] += 1
                self.logger.debug(f"Failed to close viewer: {e}")

        self.stats["notifications_sent"] += notified
        return notified

    async def _send_to_client(self, websocket: WebSocket, message: str) -> None:
        """
        Send a text message to a specific viewer.

        Args:
            websocket: The viewer's WebSocket connection
            message: The text to send
        """
        await websocket.send_text(message)

    async def wait_pending(self) -> None:
        """Wait until every scheduled notification has been delivered."""
        while self.pending_tasks:
            await asyncio.gather(*list(self.pending_tasks), return_exceptions=True)

    async def close_all(self) -> None:
        """Close every viewer and empty the registry."""
        await self.wait_pending()

        viewers = [websocket for batch in self._viewers.values() for websocket in batch]
        self._viewers.clear()

        for websocket in viewers:
            try:
                await websocket.close()
            except Exception as e:
                self.logger.debug(f"Error closing viewer during shutdown: {e}")

        if viewers:
            self.logger.info(f"Closed {len(viewers)} remaining viewer(s)")

    def get_stats(self) -> dict[str, Any]:
        """Get comprehensive statistics."""
        return {
            **self.stats,
            "current_viewers": self.get_viewer_count(),
            "viewers_by_path": {path: len(viewers) for path, viewers in self._viewers.items() if viewers},
            "pending_notifications": len(self.pending_tasks),
        }

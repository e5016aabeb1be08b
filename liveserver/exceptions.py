"""Exceptions raised by the live-reload server."""


class LiveServerError(Exception):
    """Base class for all live-reload server errors."""


class PathNotFoundError(LiveServerError):
    """Raised when a path that should be watched does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"File not found: {path}")
        self.path = path


class PathTraversalError(LiveServerError):
    """Raised when a requested path resolves outside the content directory."""


class ConfigurationError(LiveServerError):
    """Raised for invalid server, watcher or docs-build configuration."""

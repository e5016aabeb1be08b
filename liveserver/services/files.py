"""Static file service: resolves request paths, injects the reload script and feeds the watcher."""

import logging
import mimetypes
import re
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote

from fastapi import HTTPException
from jinja2 import Environment

from liveserver.exceptions import PathTraversalError

if TYPE_CHECKING:
    from liveserver.watchers.file_watcher import FileWatcher

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"
HTML_EXTENSIONS = {".html", ".htm"}

# Opens a WebSocket on the page's own path; the server answers "update" when
# the page or one of its assets changes, then closes the socket.
BROWSER_RELOAD_SCRIPT = """<!-- browser reload script, added by liveserver -->
<script type="text/javascript">
  (function () {
    var protocol = window.location.protocol === "https:" ? "wss://" : "ws://";
    var ws = new WebSocket(protocol + window.location.host + window.location.pathname);
    ws.onmessage = function (msg) {
      if (msg.data === "update") {
        ws.close();
        window.location.reload();
      }
    };
  })();
</script>
"""

NOT_FOUND_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>404: file not found</title></head>
<body>
<h1>404: file not found</h1>
<p>Nothing is served at <code>{{ request_path }}</code>.</p>
<p>The most likely reason is that the URL you entered has a mistake in it or that the
requested page has been deleted or renamed. Check also that the server is still running.</p>
</body>
</html>
"""

END_BODY_RE = re.compile(rb"</body>", re.IGNORECASE)

_templates = Environment(autoescape=True)


def inject_reload_script(content: bytes) -> bytes:
    """
    Insert the browser reload script right before the closing body tag.

    Pages without a closing body tag get the script appended at the end.
    The page bytes are kept as they are, whatever their encoding.

    Args:
        content: Raw HTML page content

    Returns:
        Page content including the reload script
    """
    script = BROWSER_RELOAD_SCRIPT.encode("utf-8")
    match = END_BODY_RE.search(content)
    if match is None:
        return content + script
    return content[: match.start()] + script + content[match.start() :]


def render_not_found(request_path: str) -> str:
    """Render the 404 page for a request path."""
    return _templates.from_string(NOT_FOUND_TEMPLATE).render(request_path=request_path)


class StaticFileService:
    """Service serving files from a content directory and registering them with a watcher."""

    def __init__(self, content_dir: Path, watcher: "FileWatcher") -> None:
        """
        Initialize the static file service.

        Args:
            content_dir: Directory whose files are served
            watcher: Watcher every served file is added to
        """
        self.content_dir = content_dir.resolve()
        self.watcher = watcher

    def resolve_fs_path(self, request_path: str) -> str | None:
        """
        Map a request path to a file under the content directory.

        A trailing slash or a directory resolves to its index.html.

        Args:
            request_path: URL path of the request, e.g. "/blog/index.html"

        Returns:
            Filesystem path of the file, or None if there is no such file

        Raises:
            PathTraversalError: If the path resolves outside the content directory
        """
        relative = unquote(request_path.split("?", 1)[0]).lstrip("/")
        try:
            candidate = (self.content_dir / relative).resolve()
        except ValueError:
            # embedded null byte, no file can have that name
            return None

        try:
            candidate.relative_to(self.content_dir)
        except ValueError as e:
            raise PathTraversalError(f"Path escapes the content directory: {request_path!r}") from e

        if request_path.endswith("/") or candidate.is_dir():
            candidate = candidate / INDEX_FILE

        return str(candidate) if candidate.is_file() else None

    def serve(self, request_path: str) -> tuple[bytes, str]:
        """
        Read a file for a request, adding the reload script to HTML pages.

        The file is added to the watcher so later edits trigger a reload.

        Args:
            request_path: URL path of the request

        Returns:
            Tuple of (content, media_type)

        Raises:
            HTTPException: 403 for paths outside the content directory, 404 if not found
        """
        try:
            fs_path = self.resolve_fs_path(request_path)
        except PathTraversalError as e:
            logger.warning(f"Rejected request path: {e}")
            raise HTTPException(status_code=403, detail="Forbidden") from e

        if fs_path is None:
            raise HTTPException(status_code=404, detail=render_not_found(request_path))

        path = Path(fs_path)
        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        content = path.read_bytes()
        if path.suffix.lower() in HTML_EXTENSIONS:
            content = inject_reload_script(content)

        self.watcher.watch_file(fs_path)
        return content, media_type

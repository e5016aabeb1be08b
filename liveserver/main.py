"""
Live-Reload Web Server

FastAPI application serving a directory of static files. HTML pages get a
small script that opens a WebSocket back to the server; when a served file
changes on disk the page is told to reload.
"""

import argparse
import asyncio
import logging
import shlex
import sys
import time
import webbrowser
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, Response, WebSocket
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from liveserver.exceptions import ConfigurationError, PathTraversalError
from liveserver.services.docs_build import DocsBuildConfig, DocsBuilder
from liveserver.services.files import StaticFileService
from liveserver.session import LiveSession
from liveserver.utils.utils import (
    configure_logging,
    get_server_config,
    get_watch_config,
    print_startup_info,
    validate_content_dir,
    validate_port,
)
from liveserver.watchers.file_watcher import SimpleWatcher

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"
APP_TITLE = "LiveServer"

# WebSocket close code for a viewer asking for a file that is not served
POLICY_VIOLATION = 1008

# Seconds between checks for the server to start listening before opening a browser
BROWSER_POLL_INTERVAL = 0.05


# ----------------------
# Response Models
# ----------------------


class HealthResponse(BaseModel):  # type: ignore[misc]
    status: str
    service: str
    version: str
    content_directory: str
    watcher_status: str
    watched_files_count: int
    viewers_count: int
    uptime_seconds: float


class StatusResponse(BaseModel):  # type: ignore[misc]
    watcher: dict[str, Any]
    viewers: dict[str, Any]


def create_app(session: LiveSession, on_interrupt: Callable[[], None] | None = None) -> FastAPI:
    """
    Build the FastAPI application for a serve session.

    Args:
        session: Session providing the content directory, watcher and viewers
        on_interrupt: Called when the watcher fails and the server must stop

    Returns:
        The configured application
    """
    file_service = StaticFileService(session.content_dir, session.watcher)
    start_ts = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Start the watcher and core loop, and tear the session down on exit.

        Args:
            app: FastAPI application instance

        Yields:
            None during application lifecycle
        """
        logger.info(f"Starting {APP_TITLE} v{APP_VERSION}")
        logger.info(f"Content directory: {file_service.content_dir}")

        await session.watcher.start()
        core_task = asyncio.create_task(session.run_core_loop(on_interrupt))

        yield

        logger.info("⋮ shutting down LiveServer")

        if not core_task.done():
            core_task.cancel()
        await asyncio.gather(core_task, return_exceptions=True)

        try:
            await session.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

        logger.info("✓ LiveServer shut down.")

    app = FastAPI(
        title=APP_TITLE,
        version=APP_VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.session = session

    # Browsers must refetch edited files after a reload
    @app.middleware("http")  # type: ignore[misc]
    async def add_no_cache_headers(request: Request, call_next: Any) -> Response:
        response: Response = await call_next(request)
        response.headers.setdefault("Cache-Control", "no-cache")
        return response

    @app.get("/_liveserver/health", response_model=HealthResponse)  # type: ignore[misc]
    async def health_check() -> HealthResponse:
        """Health check endpoint for monitoring server status."""
        watcher_status = session.watcher.status.value
        watched = getattr(session.watcher, "watched_files", [])

        return HealthResponse(
            status="unhealthy" if session.needs_shutdown() else "healthy",
            service="liveserver",
            version=APP_VERSION,
            content_directory=str(file_service.content_dir),
            watcher_status=watcher_status,
            watched_files_count=len(watched),
            viewers_count=session.viewers.get_viewer_count(),
            uptime_seconds=time.monotonic() - start_ts,
        )

    @app.get("/_liveserver/status", response_model=StatusResponse)  # type: ignore[misc]
    async def watcher_status() -> StatusResponse:
        """Get detailed watcher and viewer statistics."""
        if isinstance(session.watcher, SimpleWatcher):
            watcher_info = session.watcher.get_status()
        else:
            watcher_info = {"status": session.watcher.status.value}

        return StatusResponse(watcher=watcher_info, viewers=session.viewers.get_stats())

    @app.get("/{path:path}")  # type: ignore[misc]
    async def serve_file(request: Request, path: str) -> Response:
        """
        Serve a file from the content directory.

        HTML pages include the reload script, and every served file is watched.
        """
        try:
            content, media_type = file_service.serve(request.url.path)
        except HTTPException as e:
            if e.status_code == 404:
                return HTMLResponse(content=e.detail, status_code=404)
            raise

        return Response(content=content, media_type=media_type)

    @app.websocket("/{path:path}")  # type: ignore[misc]
    async def viewer_endpoint(websocket: WebSocket, path: str) -> None:
        """
        Keep a viewer connection open until the page is told to reload.

        The connection is registered against the file the page was served
        from and stays open until the server closes it or the tab goes away.
        """
        try:
            fs_path = file_service.resolve_fs_path(websocket.url.path)
        except PathTraversalError:
            fs_path = None

        if fs_path is None:
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        session.viewers.register_viewer(fs_path, websocket)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except Exception as e:
            logger.debug(f"Viewer connection for '{fs_path}' ended with an error: {e}")
        finally:
            session.viewers.unregister_viewer(fs_path, websocket)

    return app


async def serve_and_open(server: uvicorn.Server, url: str | None = None) -> None:
    """
    Run a uvicorn server, opening a browser at url once it is listening.

    Args:
        server: The server to run
        url: Page to open, or None to leave the browser alone
    """
    serve_task = asyncio.create_task(server.serve())

    if url is not None:
        while not server.started and not serve_task.done():
            await asyncio.sleep(BROWSER_POLL_INTERVAL)
        if server.started:
            logger.info(f"🌐 Opening {url} in the browser")
            webbrowser.open(url)

    await serve_task


def run_server(session: LiveSession, host: str, port: int, log_level: str, open_browser: bool = False) -> None:
    """
    Serve a session with uvicorn until interrupted.

    Args:
        session: The session to serve
        host: Interface to bind
        port: Port to bind
        log_level: uvicorn log level
        open_browser: Open the served site in a browser once listening
    """
    server: uvicorn.Server | None = None

    def request_shutdown() -> None:
        if server is not None:
            server.should_exit = True

    app = create_app(session, on_interrupt=request_shutdown)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=log_level,
        access_log=session.verbose,
        ws_ping_interval=None,
    )
    server = uvicorn.Server(config)
    url = f"http://{host}:{port}/" if open_browser else None

    try:
        asyncio.run(serve_and_open(server, url))
    except KeyboardInterrupt:
        logger.info("\n👋 Server stopped by user")


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="liveserver",
        description="Serve a directory and reload the browser when served files change",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  liveserver serve site/                      # Serve ./site on http://127.0.0.1:8000
  liveserver serve -p 8080 -v                 # Serve the current directory, verbose
  liveserver serve site/ --open               # Serve ./site and open it in a browser
  liveserver docs --build-command "python docs/make.py"

Settings are also read from the environment (or a .env file):
HOST, PORT, LOG_LEVEL, CONTENT_DIR, WATCH_SLEEPTIME, LIVESERVER_VERBOSE, LIVESERVER_OPEN_BROWSER
        """,
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--host", help="Host to bind (default: 127.0.0.1)")
    common.add_argument("-p", "--port", type=int, help="Port between 8000 and 9000 (default: 8000)")
    common.add_argument("-v", "--verbose", action="store_true", help="Report file changes and connections")
    common.add_argument("--sleeptime", type=float, help="Seconds between two file checks (default: 0.1)")
    common.add_argument("--open", action="store_true", help="Open the served site in a browser")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Serve a directory")
    serve_parser.add_argument("directory", nargs="?", help="Directory to serve (default: current directory)")

    docs_parser = subparsers.add_parser("docs", parents=[common], help="Build and serve documentation")
    docs_parser.add_argument("--build-command", required=True, help="Command building the documentation")
    docs_parser.add_argument("--folder", default="docs", help="Documentation folder (default: docs)")
    docs_parser.add_argument("--build", default="build", help="Build folder inside the docs folder")
    docs_parser.add_argument("--skip-dir", action="append", default=[], help="Directory whose changes are ignored")
    docs_parser.add_argument("--skip-file", action="append", default=[], help="File whose changes are ignored")
    docs_parser.add_argument("--include-dir", action="append", default=[], help="Extra directory to watch")
    docs_parser.add_argument("--include-file", action="append", default=[], help="Extra file to watch")

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the live-reload server.

    Environment Variables:
        HOST: Server host (default: 127.0.0.1)
        PORT: Server port, 8000-9000 (default: 8000)
        LOG_LEVEL: Logging level (default: info)
        CONTENT_DIR: Directory to serve (default: current directory)
        WATCH_SLEEPTIME: Seconds between file checks (default: 0.1)
        LIVESERVER_VERBOSE: Report file changes and connections (default: false)
        LIVESERVER_OPEN_BROWSER: Open the served site in a browser (default: false)
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        server_config = get_server_config()
        watch_config = get_watch_config()

        if args.host:
            server_config["host"] = args.host
        if args.port is not None:
            server_config["port"] = args.port
        if args.sleeptime is not None:
            watch_config.sleeptime = args.sleeptime
        server_config["verbose"] = server_config["verbose"] or args.verbose
        server_config["open_browser"] = server_config["open_browser"] or args.open

        validate_port(server_config["port"])
        configure_logging(server_config["log_level"], server_config["verbose"])

        if args.command == "docs":
            docs_config = DocsBuildConfig(
                build_command=shlex.split(args.build_command),
                foldername=Path(args.folder),
                buildfoldername=args.build,
                skip_dirs=[Path(p) for p in args.skip_dir],
                skip_files=[Path(p) for p in args.skip_file],
                include_dirs=[Path(p) for p in args.include_dir],
                include_files=[Path(p) for p in args.include_file],
            )
            session = LiveSession.create(docs_config.build_dir, watch_config, verbose=server_config["verbose"])
            builder = DocsBuilder(docs_config, session.watcher, session.viewers)
            builder.scan_docs()
            session.watcher.callback = builder.on_file_changed

            if not builder.run_build():
                raise ConfigurationError("The initial documentation build failed, not serving.")
            validate_content_dir(docs_config.build_dir)
        else:
            content_dir = Path(args.directory) if args.directory else server_config["content_dir"]
            validate_content_dir(content_dir)
            session = LiveSession.create(content_dir, watch_config, verbose=server_config["verbose"])

    except ConfigurationError as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

    print_startup_info(session.content_dir, server_config, watch_config)
    run_server(
        session,
        server_config["host"],
        server_config["port"],
        server_config["log_level"],
        open_browser=server_config["open_browser"],
    )


if __name__ == "__main__":
    main()

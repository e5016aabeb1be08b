"""
Documentation build integration.

Watches the sources of a documentation folder, re-runs a build command when
one of them changes, and reloads the browsers viewing the built site.
"""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from liveserver.exceptions import ConfigurationError
from liveserver.watchers.file_watcher import SimpleWatcher
from liveserver.websocket.viewer_registry import ViewerRegistry

logger = logging.getLogger(__name__)


@dataclass
class DocsBuildConfig:
    """Configuration for serving a documentation folder."""

    build_command: list[str]
    foldername: Path = Path("docs")
    buildfoldername: str = "build"

    # Changes under these never trigger a build, unless listed in include_files
    skip_dirs: list[Path] = field(default_factory=list)
    skip_files: list[Path] = field(default_factory=list)

    # Watched in addition to <foldername>/src
    include_dirs: list[Path] = field(default_factory=list)
    include_files: list[Path] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Normalize every path to an absolute one with symlinks resolved."""
        self.foldername = Path(self.foldername).resolve()
        self.skip_dirs = [Path(p).resolve() for p in self.skip_dirs]
        self.skip_files = [Path(p).resolve() for p in self.skip_files]
        self.include_dirs = [Path(p).resolve() for p in self.include_dirs]
        self.include_files = [Path(p).resolve() for p in self.include_files]

    @property
    def source_dir(self) -> Path:
        return self.foldername / "src"

    @property
    def build_dir(self) -> Path:
        return self.foldername / self.buildfoldername

    @property
    def build_script(self) -> Path | None:
        """The build command's script if it lives in the docs folder, e.g. docs/make.py."""
        for arg in self.build_command[1:]:
            candidate = Path(arg)
            if not candidate.is_absolute():
                candidate = Path.cwd() / candidate
            candidate = candidate.resolve()
            if candidate.is_file() and _is_within(candidate, self.foldername):
                return candidate
        return None


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.relative_to(directory)
    except ValueError:
        return False
    return True


def _walk_files(directory: Path) -> list[Path]:
    return sorted(p for p in directory.rglob("*") if p.is_file())


class DocsBuilder:
    """Runs the documentation build when watched sources change."""

    def __init__(self, config: DocsBuildConfig, watcher: SimpleWatcher, viewers: ViewerRegistry) -> None:
        """
        Initialize the builder.

        Args:
            config: Documentation build configuration
            watcher: Watcher that receives the documentation sources
            viewers: Registry notified after a successful build
        """
        self.config = config
        self.watcher = watcher
        self.viewers = viewers
        self.builds_run = 0
        self.builds_failed = 0

    def scan_docs(self) -> int:
        """
        Add the documentation sources to the watcher.

        Returns:
            Number of files being watched afterwards

        Raises:
            ConfigurationError: If the docs folder or its src folder is missing
        """
        folder = self.config.foldername
        if not folder.is_dir() or not self.config.source_dir.is_dir():
            raise ConfigurationError(f"Could not find a {folder}/ or {folder}/src/ folder.")

        build_script = self.config.build_script
        if build_script is not None:
            self.watcher.watch_file(build_script)

        for path in _walk_files(self.config.source_dir):
            self.watcher.watch_file(path)

        for directory in self.config.include_dirs:
            if directory.is_dir():
                for path in _walk_files(directory):
                    self.watcher.watch_file(path)

        for path in self.config.include_files:
            self.watcher.watch_file(path)

        logger.info(f"Watching {len(self.watcher.watched_files)} documentation source file(s)")
        return len(self.watcher.watched_files)

    def run_build(self) -> bool:
        """
        Run the build command once.

        Returns:
            True if the command exited successfully
        """
        self.builds_run += 1
        logger.info(f"🔨 Building documentation: {' '.join(self.config.build_command)}")

        try:
            subprocess.run(self.config.build_command, check=True)
        except FileNotFoundError as e:
            self.builds_failed += 1
            logger.error(f"❌ Build command not found: {e}")
            return False
        except subprocess.CalledProcessError as e:
            self.builds_failed += 1
            logger.error(f"❌ Documentation build failed with exit code {e.returncode}")
            return False

        logger.info("✅ Documentation built")
        return True

    def should_build(self, path: Path) -> bool:
        """Check whether a change to a file warrants a rebuild."""
        # generated files must not retrigger the build
        if _is_within(path, self.config.build_dir):
            return False

        if path in self.config.include_files:
            return True

        if any(_is_within(path, directory) for directory in self.config.skip_dirs):
            return False

        return path not in self.config.skip_files

    def on_file_changed(self, fs_path: str) -> None:
        """
        Watcher callback for documentation sources.

        Args:
            fs_path: Path of the changed file
        """
        path = Path(fs_path).resolve()
        if not self.should_build(path):
            logger.debug(f"Ignoring change to '{path}'")
            return

        # the build script may now generate other pages, start the list afresh
        if path == self.config.build_script:
            self.watcher.watched_files.clear()
            self.scan_docs()

        # sources are not the served pages, so every open page reloads
        if self.run_build():
            self.viewers.notify_all()

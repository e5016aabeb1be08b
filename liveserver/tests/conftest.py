"""Pytest configuration and fixtures for LiveServer tests."""

import os
from pathlib import Path

import pytest

SAMPLE_SITE = {
    "index.html": "<html><head><title>Home</title></head><body><h1>Home</h1></body></html>",
    "about.html": "<html><body><p>About</p></body></html>",
    "style.css": "body { color: black; }",
    "blog/index.html": "<html><body><h1>Blog</h1></body></html>",
    "notes.txt": "plain text",
}


def bump_mtime(path: Path | str, seconds: float = 5.0) -> float:
    """
    Move a file's modification time forward.

    Filesystems with coarse timestamps would otherwise miss an edit made
    right after the file was first seen.

    Returns:
        The new modification time
    """
    current = os.path.getmtime(path)
    new_mtime = current + seconds
    os.utime(path, (new_mtime, new_mtime))
    return new_mtime


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """Create a small static site to serve."""
    root = tmp_path / "site"
    for relative, content in SAMPLE_SITE.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    return root


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    """Create a single file to watch."""
    path = tmp_path / "x.txt"
    path.write_text("hello")
    return path

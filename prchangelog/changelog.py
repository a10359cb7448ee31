"""
Changelog file reading and writing.
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

from .render import render_release_title


DEFAULT_FILE = "CHANGES.md"


def read_changelog(path: Path) -> str:
    """Read the changelog, or return an empty string if it does not exist."""
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8")


def release_exists(contents: str, version: str) -> bool:
    """Check whether ``version`` already has a heading in the changelog."""
    title = re.escape(render_release_title(version))
    return re.search(rf"^{title}$", contents, re.MULTILINE) is not None


def merge_changelog(new_contents: str, existing: str, overwrite: bool) -> str:
    """Combine freshly rendered content with the existing changelog."""
    if overwrite or not existing:
        return new_contents
    return f"{new_contents}\n{existing}"


def write_changelog(path: Path, new_contents: str, existing: str = "", overwrite: bool = False) -> Path:
    """
    Write the changelog in one atomic replace.

    Args:
        path: Changelog file
        new_contents: Rendered releases
        existing: Current file contents (prepended to unless overwriting)
        overwrite: Replace the whole file

    Returns:
        Path to the written changelog
    """
    contents = merge_changelog(new_contents, existing, overwrite)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(contents)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    return path

"""Filesystem helpers for atomic writes and timestamp queries."""

from __future__ import annotations

import contextlib
import os
from pathlib import Path

TEMP_SUFFIX = ".tmp"


def temporary_path(path: Path) -> Path:
    """Return the sibling path an action writes to before renaming into *path*."""
    return path.with_name(path.name + TEMP_SUFFIX)


def atomic_write_text(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = temporary_path(path)
    try:
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
    except BaseException:
        remove_if_exists(tmp_path)
        raise
    return path


def remove_if_exists(path: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        path.unlink()


def mtime_ns(path: Path) -> int | None:
    """Query existence and modification time in one stat() call."""
    try:
        return os.stat(path).st_mtime_ns
    except FileNotFoundError:
        return None

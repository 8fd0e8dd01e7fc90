"""Directory traversal for the classification pipeline."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

from smartdir.errors import WalkError


def iter_files(root: Path | str) -> Iterator[Path]:
    """Yield every regular file below ``root`` depth-first.

    Directories are descended into but never yielded; symlinks and special
    files are skipped. The generator is lazy and cannot be restarted.

    Raises:
        WalkError: On the first directory or entry that cannot be read. The
            walk stops there; files already yielded stay yielded.
    """
    root = Path(root).expanduser().absolute()
    try:
        if root.is_file() and not root.is_symlink():
            yield root
            return
    except OSError as exc:
        raise WalkError(f"failed to inspect {root}: {exc}") from exc

    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                ordered = sorted(entries, key=lambda entry: entry.name)
            directories = []
            for entry in ordered:
                if entry.is_dir(follow_symlinks=False):
                    directories.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    yield Path(entry.path)
        except OSError as exc:
            raise WalkError(f"failed to walk {current}: {exc}") from exc
        stack.extend(reversed(directories))


def iter_directories(root: Path | str) -> Iterator[Path]:
    """Yield ``root`` and every directory below it (symlinks not followed)."""
    root = Path(root).expanduser().absolute()
    stack = [root]
    while stack:
        current = stack.pop()
        yield current
        try:
            with os.scandir(current) as entries:
                children = sorted(
                    Path(entry.path) for entry in entries if entry.is_dir(follow_symlinks=False)
                )
        except OSError as exc:
            raise WalkError(f"failed to walk {current}: {exc}") from exc
        stack.extend(reversed(children))


__all__ = ["iter_files", "iter_directories"]

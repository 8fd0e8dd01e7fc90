"""Error taxonomy shared by the processing pipeline, monitor, and dedup tools."""

from __future__ import annotations

from pathlib import Path


class SmartdirError(Exception):
    """Base exception for smartdir operations."""


class WalkError(SmartdirError):
    """Raised when directory traversal fails; aborts the whole walk."""


class ProcessingError(SmartdirError):
    """Base class for failures scoped to a single file.

    Attributes:
        path: File that failed to process, when known.
    """

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class FileAccessError(ProcessingError):
    """Raised when a file cannot be stat'ed, read, or deleted."""


class HashError(ProcessingError):
    """Raised when reading a file fails while computing its fingerprint."""


class SinkError(ProcessingError):
    """Raised when the metadata store or search index rejects a write."""


__all__ = [
    "SmartdirError",
    "WalkError",
    "ProcessingError",
    "FileAccessError",
    "HashError",
    "SinkError",
]

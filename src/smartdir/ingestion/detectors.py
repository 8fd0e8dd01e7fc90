"""File type detection and content fingerprinting."""

from __future__ import annotations

import hashlib
from pathlib import Path

from smartdir.errors import HashError

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_CHUNK_SIZE = 1024 * 1024

_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".rtf": "application/rtf",
    ".txt": "text/plain; charset=utf-8",
    ".md": "text/markdown; charset=utf-8",
    ".csv": "text/csv; charset=utf-8",
    ".html": "text/html; charset=utf-8",
    ".htm": "text/html; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".json": "application/json",
    ".xml": "text/xml; charset=utf-8",
    ".yaml": "application/yaml",
    ".yml": "application/yaml",
    ".js": "text/javascript; charset=utf-8",
    ".ts": "text/typescript",
    ".py": "text/x-python",
    ".go": "text/x-go",
    ".java": "text/x-java",
    ".cpp": "text/x-c++src",
    ".c": "text/x-csrc",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".7z": "application/x-7z-compressed",
    ".rar": "application/vnd.rar",
}


class TypeDetector:
    """Map file extensions to MIME types using a static table."""

    def detect(self, path: Path) -> str:
        """Return the MIME type for ``path``; unknown extensions are generic binary."""
        return _MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)


class HashComputer:
    """Compute SHA-256 content fingerprints by streaming each file once."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.chunk_size = max(1, chunk_size)

    def compute(self, path: Path) -> str:
        """Return the hex digest of the file contents.

        Raises:
            HashError: If the file cannot be read.
        """
        digest = hashlib.sha256()
        try:
            with Path(path).open("rb") as handle:
                for chunk in iter(lambda: handle.read(self.chunk_size), b""):
                    digest.update(chunk)
        except OSError as exc:
            raise HashError(f"hashing failed for {path}: {exc}", path=path) from exc
        return digest.hexdigest()


__all__ = ["TypeDetector", "HashComputer", "DEFAULT_MIME_TYPE"]

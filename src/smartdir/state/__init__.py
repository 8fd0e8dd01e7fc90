"""Metadata persistence for smartdir: SQL store, index pairing, and records."""

from __future__ import annotations

from smartdir.errors import SinkError

from .database import MetadataStore
from .models import FileAccess, FileRecord, IndexDocument, join_tags, split_tags
from .sink import MetadataSink, SinkTransaction

__all__ = [
    "MetadataStore",
    "MetadataSink",
    "SinkTransaction",
    "FileRecord",
    "FileAccess",
    "IndexDocument",
    "SinkError",
    "join_tags",
    "split_tags",
]

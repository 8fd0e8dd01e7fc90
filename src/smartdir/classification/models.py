"""Types shared by the classification engine and its callers."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Protocol, runtime_checkable


class Category(str, Enum):
    """Closed set of file categories; ``OTHER`` is the catch-all."""

    IMAGES = "images"
    DOCUMENTS = "documents"
    VIDEOS = "videos"
    AUDIO = "audio"
    CODE = "code"
    ARCHIVES = "archives"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> "Category | None":
        """Return the category named by ``value`` or ``None`` when unrecognized."""
        if not value:
            return None
        normalized = value.strip().strip("\"'.").lower()
        try:
            return cls(normalized)
        except ValueError:
            return None


@runtime_checkable
class ClassificationPort(Protocol):
    """Capability used by the pipeline to categorize and tag files.

    Implementations never raise; they degrade to local rules instead.
    """

    def classify(self, path: Path) -> Category:
        """Return the category for ``path``."""
        ...

    def generate_tags(self, path: Path, category: Category) -> List[str]:
        """Return an ordered list of tags for ``path``."""
        ...


__all__ = ["Category", "ClassificationPort"]

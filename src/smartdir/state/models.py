"""Metadata records persisted by the store and mirrored into the search index."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from smartdir.classification.models import Category


def split_tags(value: str | None) -> List[str]:
    """Split a comma-joined tag string into an ordered list."""
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def join_tags(tags: List[str]) -> str:
    """Join tags into the comma-separated storage form."""
    return ",".join(tags)


class IndexDocument(BaseModel):
    """Search index payload for a file, keyed by the record id."""

    id: int
    path: str
    category: str
    hash: str
    tags: str = ""


class FileRecord(BaseModel):
    """Metadata describing a processed file.

    Attributes:
        path: Absolute path; unique per record.
        hash: Hex SHA-256 digest of the content.
        size: Size in bytes.
        mime_type: MIME type derived from the extension.
        category: Assigned category.
        tags: Ordered, de-duplicated tags.
        id: Numeric identity assigned by the store.
        created_at: First time the record was stored.
        updated_at: Last time the record was written.
    """

    path: str
    hash: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    category: Category = Category.OTHER
    tags: List[str] = Field(default_factory=list)
    id: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return split_tags(value)
        return value

    def to_document(self) -> IndexDocument:
        """Return the index document for this record.

        Raises:
            ValueError: If the record has not been stored yet.
        """
        if self.id is None:
            raise ValueError(f"Record for {self.path} has no id; store it before indexing.")
        return IndexDocument(
            id=self.id,
            path=self.path,
            category=self.category.value,
            hash=self.hash,
            tags=join_tags(self.tags),
        )


class FileAccess(BaseModel):
    """Search hit counter for a path."""

    path: str
    access_count: int = 0
    category: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["FileRecord", "IndexDocument", "FileAccess", "split_tags", "join_tags"]

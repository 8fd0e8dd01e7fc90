"""Text normalization utilities for search indexing."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from smartdir.state.models import IndexDocument

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[/\\_\-.,]+")


def normalize_search_text(text: str, *, limit: int = 4096) -> str:
    """Return lower-cased text with control characters stripped and whitespace collapsed.

    Args:
        text: Source text assembled from document fields or a query.
        limit: Maximum number of characters retained; ``0`` disables the cap.

    Returns:
        str: Normalized text.
    """

    sanitized = _CONTROL_CHARS.sub(" ", text)
    sanitized = _WHITESPACE.sub(" ", sanitized).strip().lower()
    if limit > 0:
        return sanitized[:limit]
    return sanitized


def document_text(document: IndexDocument, fields: Sequence[str]) -> str:
    """Build the searchable text for ``document`` from the configured fields.

    Paths and comma-joined tags are also split into tokens so that a query for
    ``report`` matches ``/home/me/q3-report.pdf``.
    """

    payload = document.model_dump()
    parts: list[str] = []
    for field in fields:
        value = payload.get(field)
        if value in (None, ""):
            continue
        raw = str(value)
        parts.append(raw)
        tokens = _SEPARATORS.sub(" ", raw).strip()
        if tokens and tokens != raw:
            parts.append(tokens)
    return normalize_search_text(" ".join(parts))


__all__ = ["normalize_search_text", "document_text"]

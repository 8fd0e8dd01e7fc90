"""Search indexing helpers for smartdir."""

from .index import (
    DEFAULT_SEARCHABLE_FIELDS,
    IndexBackend,
    IndexTask,
    SearchHit,
    SearchIndex,
    SearchIndexError,
    load_embedding_function,
)
from .text import document_text, normalize_search_text

__all__ = [
    "DEFAULT_SEARCHABLE_FIELDS",
    "IndexBackend",
    "IndexTask",
    "SearchHit",
    "SearchIndex",
    "SearchIndexError",
    "load_embedding_function",
    "document_text",
    "normalize_search_text",
]

"""Chromadb-backed search index for file documents."""

from __future__ import annotations

import importlib
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Protocol, Sequence

import chromadb
from pydantic import BaseModel

from smartdir.errors import SinkError

from .text import document_text, normalize_search_text

if TYPE_CHECKING:
    from smartdir.state.models import IndexDocument

LOGGER = logging.getLogger(__name__)

DEFAULT_SEARCHABLE_FIELDS = ("path", "category", "tags")
_POLL_INTERVAL_SECONDS = 0.05

EmbeddingCallable = Callable[[List[str]], List[List[float]]]


class SearchIndexError(SinkError):
    """Raised when the search index rejects or loses a document update."""


@dataclass(slots=True)
class IndexTask:
    """Handle for a submitted index update.

    Attributes:
        uid: Monotonic task identifier.
        operation: Either ``"upsert"`` or ``"delete"``.
        document_ids: Ids of the documents touched by the task.
        status: ``"enqueued"``, ``"succeeded"``, or ``"failed"``.
        error: Failure detail when ``status`` is ``"failed"``.
    """

    uid: int
    operation: str
    document_ids: tuple[int, ...]
    status: str = "enqueued"
    error: Optional[str] = None


class SearchHit(BaseModel):
    """Single search result."""

    id: int
    path: str
    category: str
    hash: str
    tags: str = ""
    score: Optional[float] = None


class IndexBackend(Protocol):
    """Operations the metadata sink needs from a search index."""

    def exists(self) -> bool: ...

    def create(self) -> None: ...

    def configure_fields(self, fields: Sequence[str]) -> None: ...

    def upsert(self, documents: Sequence[IndexDocument]) -> IndexTask: ...

    def delete(self, ids: Sequence[int]) -> IndexTask: ...

    def wait(self, task: IndexTask, timeout: float) -> IndexTask: ...

    def search(self, query: str, limit: int = 20) -> List[SearchHit]: ...


def load_embedding_function(dotted_path: str | None) -> EmbeddingCallable | None:
    """Import the embedding callable named by ``module.attribute``.

    Raises:
        SearchIndexError: If the path cannot be imported or is not callable.
    """
    if not dotted_path:
        return None
    module_name, _, attribute = dotted_path.rpartition(".")
    if not module_name:
        raise SearchIndexError(f"Embedding function '{dotted_path}' must be a dotted path.")
    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise SearchIndexError(f"Unable to import embedding function '{dotted_path}': {exc}") from exc
    if not callable(target):
        raise SearchIndexError(f"Embedding function '{dotted_path}' is not callable.")
    return target


class SearchIndex:
    """Store file documents in a Chromadb collection.

    Chromadb applies writes synchronously, so tasks are completed on return from
    :meth:`upsert`/:meth:`delete`; :meth:`wait` confirms the collection reflects
    the change before acknowledging it.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        collection: str = "files",
        embedding_function: EmbeddingCallable | None = None,
        client: Any | None = None,
    ) -> None:
        """Open the persistent index.

        Args:
            path: Directory holding the Chromadb store.
            collection: Name of the collection holding file documents.
            embedding_function: Optional callable mapping texts to vectors; when
                omitted Chromadb's default embedding is used.
            client: Pre-built Chromadb client, mainly for tests.
        """
        if client is None:
            directory = Path(path).expanduser()
            directory.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=str(directory))
        self._client = client
        self._name = collection
        self._embed = embedding_function
        self._fields: tuple[str, ...] = DEFAULT_SEARCHABLE_FIELDS
        self._collection = None
        self._lock = threading.Lock()
        self._uids = itertools.count(1)

    @property
    def searchable_fields(self) -> tuple[str, ...]:
        return self._fields

    def exists(self) -> bool:
        names = {getattr(entry, "name", entry) for entry in self._client.list_collections()}
        return self._name in names

    def create(self) -> None:
        """Create the collection if it does not exist yet."""
        try:
            self._get_collection()
        except Exception as exc:  # chromadb raises assorted error types
            raise SearchIndexError(f"Failed to create search index '{self._name}': {exc}") from exc

    def configure_fields(self, fields: Sequence[str]) -> None:
        """Record which document fields feed the searchable text."""
        if not fields:
            raise SearchIndexError("At least one searchable field is required.")
        collection = self._get_collection()
        try:
            collection.modify(metadata={"searchable_fields": ",".join(fields)})
        except Exception as exc:
            raise SearchIndexError(f"Failed to configure searchable fields: {exc}") from exc
        self._fields = tuple(fields)

    def upsert(self, documents: Sequence[IndexDocument]) -> IndexTask:
        task = IndexTask(
            uid=next(self._uids),
            operation="upsert",
            document_ids=tuple(document.id for document in documents),
        )
        if not documents:
            task.status = "succeeded"
            return task

        texts = [document_text(document, self._fields) for document in documents]
        payload: dict[str, Any] = {
            "ids": [str(document.id) for document in documents],
            "documents": texts,
            "metadatas": [document.model_dump() for document in documents],
        }
        if self._embed is not None:
            payload["embeddings"] = self._embed(texts)
        try:
            with self._lock:
                self._get_collection().upsert(**payload)
        except Exception as exc:
            raise SearchIndexError(f"Failed to index documents {task.document_ids}: {exc}") from exc
        task.status = "succeeded"
        return task

    def delete(self, ids: Sequence[int]) -> IndexTask:
        task = IndexTask(uid=next(self._uids), operation="delete", document_ids=tuple(ids))
        if ids:
            try:
                with self._lock:
                    self._get_collection().delete(ids=[str(value) for value in ids])
            except Exception as exc:
                raise SearchIndexError(f"Failed to delete documents {task.document_ids}: {exc}") from exc
        task.status = "succeeded"
        return task

    def wait(self, task: IndexTask, timeout: float) -> IndexTask:
        """Block until ``task`` is visible in the collection or ``timeout`` elapses.

        Raises:
            SearchIndexError: If the task failed or did not settle in time.
        """
        if task.status == "failed":
            raise SearchIndexError(f"Index task {task.uid} failed: {task.error}")
        wanted = {str(value) for value in task.document_ids}
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            present = set(self._get_collection().get(ids=list(wanted))["ids"]) if wanted else set()
            settled = present == wanted if task.operation == "upsert" else not present
            if settled:
                return task
            if time.monotonic() >= deadline:
                task.status = "failed"
                task.error = "timed out"
                raise SearchIndexError(f"Index task {task.uid} did not complete within {timeout}s.")
            time.sleep(_POLL_INTERVAL_SECONDS)

    def search(self, query: str, limit: int = 20) -> List[SearchHit]:
        """Return keyword matches, falling back to nearest neighbours when none match."""
        collection = self._get_collection()
        if limit <= 0 or collection.count() == 0:
            return []

        needle = normalize_search_text(query)
        if needle:
            matches = collection.get(where_document={"$contains": needle}, limit=limit)
            if matches["ids"]:
                return [self._hit(metadata, None) for metadata in matches["metadatas"]]

        request: dict[str, Any] = {"n_results": min(limit, collection.count())}
        if self._embed is not None:
            request["query_embeddings"] = self._embed([needle or query])
        else:
            request["query_texts"] = [needle or query]
        results = collection.query(**request)
        metadatas = results["metadatas"][0]
        distances = (results.get("distances") or [[None] * len(metadatas)])[0]
        return [self._hit(metadata, distance) for metadata, distance in zip(metadatas, distances)]

    def drop(self) -> None:
        """Delete the collection and everything in it."""
        if self.exists():
            self._client.delete_collection(self._name)
        self._collection = None

    def _get_collection(self):
        if self._collection is None:
            self._collection = self._client.get_or_create_collection(
                name=self._name,
                metadata={"searchable_fields": ",".join(self._fields)},
            )
            configured = (self._collection.metadata or {}).get("searchable_fields")
            if configured:
                self._fields = tuple(field for field in configured.split(",") if field)
        return self._collection

    @staticmethod
    def _hit(metadata: dict[str, Any], distance: Optional[float]) -> SearchHit:
        score = None if distance is None else float(distance)
        return SearchHit(
            id=int(metadata["id"]),
            path=str(metadata["path"]),
            category=str(metadata.get("category", "")),
            hash=str(metadata.get("hash", "")),
            tags=str(metadata.get("tags", "")),
            score=score,
        )


__all__ = [
    "DEFAULT_SEARCHABLE_FIELDS",
    "IndexBackend",
    "IndexTask",
    "SearchHit",
    "SearchIndex",
    "SearchIndexError",
    "load_embedding_function",
]

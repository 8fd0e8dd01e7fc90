"""Metadata sink pairing the SQL store with the search index.

The sink owns the consistency rule of the pipeline: a file record and its
index document are created, updated, or removed together. Writes happen inside
:meth:`MetadataSink.transaction`; on any failure the store transaction is
rolled back and every index document touched by it is restored to its prior
state.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smartdir.errors import SinkError, SmartdirError
from smartdir.search.index import DEFAULT_SEARCHABLE_FIELDS, IndexBackend, IndexTask, SearchHit

from .database import MetadataStore
from .models import FileRecord

LOGGER = logging.getLogger(__name__)


class SinkTransaction:
    """Unit of work spanning one store session and the index updates it triggers."""

    def __init__(self, sink: "MetadataSink", session: Session) -> None:
        self._sink = sink
        self._session = session
        self._previous: dict[int, Optional[FileRecord]] = {}
        self._indexed: list[int] = []

    def upsert_file(self, record: FileRecord) -> FileRecord:
        """Write ``record`` in this transaction and return it with its id.

        A record without tags keeps the tags already stored for its path;
        only tagging replaces them.
        """
        previous = self._sink.store.get_by_path(record.path, session=self._session)
        if not record.tags and previous is not None and previous.tags:
            record = record.model_copy(update={"tags": previous.tags})
        stored = self._sink.store.upsert_file(record, session=self._session)
        self._previous.setdefault(stored.id, previous)
        return stored

    def delete_file(self, path: str) -> Optional[FileRecord]:
        """Delete the record for ``path`` in this transaction."""
        removed = self._sink.store.delete_file(path, session=self._session)
        if removed is not None:
            self._previous.setdefault(removed.id, removed)
        return removed

    def index_document(self, record: FileRecord) -> IndexTask:
        """Submit the index document for ``record``."""
        self._mark(record.id)
        return self._sink.index_document(record)

    def remove_document(self, record: FileRecord) -> IndexTask:
        """Submit removal of the index document for ``record``."""
        self._mark(record.id)
        return self._sink.remove_document(record)

    def await_task(self, task: IndexTask, timeout: float | None = None) -> IndexTask:
        return self._sink.await_task(task, timeout)

    def _mark(self, record_id: int | None) -> None:
        if record_id is not None and record_id not in self._indexed:
            self._indexed.append(record_id)

    def compensate(self) -> None:
        """Return every touched index document to its state before the transaction."""
        index = self._sink.index
        for record_id in self._indexed:
            previous = self._previous.get(record_id)
            try:
                if previous is not None:
                    task = index.upsert([previous.to_document()])
                else:
                    task = index.delete([record_id])
                index.wait(task, self._sink.task_timeout)
            except Exception as exc:
                LOGGER.error("Failed to restore index document %s after rollback: %s", record_id, exc)


class MetadataSink:
    """Persist records and index documents; shared by workers and the monitor."""

    def __init__(
        self,
        store: MetadataStore,
        index: IndexBackend,
        *,
        task_timeout: float = 30.0,
        searchable_fields: Sequence[str] = DEFAULT_SEARCHABLE_FIELDS,
    ) -> None:
        self.store = store
        self.index = index
        self.task_timeout = task_timeout
        self.searchable_fields = tuple(searchable_fields)

    @contextmanager
    def transaction(self) -> Iterator[SinkTransaction]:
        """Yield a :class:`SinkTransaction` that commits on clean exit.

        Any exception, including a failing commit, compensates the index and
        rolls the store back exactly once before propagating as ``SinkError``
        (other smartdir errors propagate unchanged).
        """
        session = self.store.new_session()
        tx = SinkTransaction(self, session)
        try:
            yield tx
            session.commit()
        except BaseException as exc:
            # Compensate while the store write lock is still held so no other
            # writer can observe or reuse the rolled-back ids.
            tx.compensate()
            session.rollback()
            if isinstance(exc, SmartdirError) or not isinstance(exc, Exception):
                raise
            if isinstance(exc, SQLAlchemyError):
                raise SinkError(f"Metadata store failure: {exc}") from exc
            raise SinkError(str(exc)) from exc
        finally:
            session.close()

    def ensure_index(self) -> bool:
        """Create the index when absent and configure its searchable fields.

        Returns:
            bool: True when the index was created by this call.

        Raises:
            SinkError: If the index is missing and cannot be created.
        """
        try:
            if self.index.exists():
                return False
            self.index.create()
        except SinkError:
            raise
        except Exception as exc:
            raise SinkError(f"Failed to create search index: {exc}") from exc
        try:
            self.index.configure_fields(self.searchable_fields)
        except Exception as exc:
            LOGGER.warning("Failed to update searchable attributes: %s", exc)
        return True

    def upsert_file(self, record: FileRecord) -> FileRecord:
        """Store ``record`` and its index document together."""
        with self.transaction() as tx:
            stored = tx.upsert_file(record)
            tx.await_task(tx.index_document(stored))
            return stored

    def delete_file(self, path: str) -> Optional[FileRecord]:
        """Remove the record and its index document together."""
        with self.transaction() as tx:
            removed = tx.delete_file(path)
            if removed is not None:
                tx.await_task(tx.remove_document(removed))
            return removed

    def query_by_path_prefix(self, prefix: str) -> List[FileRecord]:
        return self.store.query_by_path_prefix(prefix)

    def index_document(self, record: FileRecord) -> IndexTask:
        return self.index.upsert([record.to_document()])

    def remove_document(self, record: FileRecord) -> IndexTask:
        return self.index.delete([record.id])

    def await_task(self, task: IndexTask, timeout: float | None = None) -> IndexTask:
        return self.index.wait(task, self.task_timeout if timeout is None else timeout)

    def reindex(self, *, timeout: float | None = None) -> int:
        """Push every stored record to the index and return the document count."""
        try:
            self.index.configure_fields(self.searchable_fields)
        except Exception as exc:
            LOGGER.warning("Failed to update searchable attributes: %s", exc)
        records = self.store.all_files()
        if not records:
            return 0
        task = self.index.upsert([record.to_document() for record in records])
        self.await_task(task, timeout)
        return len(records)

    def search(self, query: str, *, limit: int = 20) -> List[SearchHit]:
        """Query the index and record an access for every hit."""
        hits = self.index.search(query, limit=limit)
        for hit in hits:
            try:
                self.store.record_access(hit.path)
            except SinkError as exc:
                LOGGER.warning("Failed to record access for %s: %s", hit.path, exc)
        return hits

    def close(self) -> None:
        self.store.close()


__all__ = ["MetadataSink", "SinkTransaction"]

"""Shared fixtures and in-memory fakes for the smartdir test suite."""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from smartdir.classification import Category, category_for_extension, fallback_tags
from smartdir.search import IndexTask, SearchHit, SearchIndexError
from smartdir.state import IndexDocument, MetadataSink, MetadataStore


class InMemoryIndex:
    """Dictionary-backed search index with switchable failures."""

    def __init__(self) -> None:
        self.documents: Dict[int, IndexDocument] = {}
        self.created = False
        self.fields: tuple[str, ...] = ()
        self.fail_upsert = False
        self.fail_wait = False
        self.upserts: List[tuple[int, ...]] = []
        self._uids = itertools.count(1)

    def exists(self) -> bool:
        return self.created

    def create(self) -> None:
        self.created = True

    def configure_fields(self, fields: Sequence[str]) -> None:
        self.fields = tuple(fields)

    def upsert(self, documents: Sequence[IndexDocument]) -> IndexTask:
        ids = tuple(document.id for document in documents)
        if self.fail_upsert:
            raise SearchIndexError(f"upsert rejected for {ids}")
        self.upserts.append(ids)
        for document in documents:
            self.documents[document.id] = document
        return IndexTask(uid=next(self._uids), operation="upsert", document_ids=ids, status="succeeded")

    def delete(self, ids: Sequence[int]) -> IndexTask:
        for value in ids:
            self.documents.pop(value, None)
        return IndexTask(uid=next(self._uids), operation="delete", document_ids=tuple(ids), status="succeeded")

    def wait(self, task: IndexTask, timeout: float) -> IndexTask:
        if self.fail_wait:
            raise SearchIndexError(f"task {task.uid} failed")
        return task

    def search(self, query: str, limit: int = 20) -> List[SearchHit]:
        needle = query.lower()
        hits = [
            SearchHit(**document.model_dump())
            for document in self.documents.values()
            if needle in f"{document.path} {document.category} {document.tags}".lower()
        ]
        return hits[:limit]

    def by_path(self, path: Path | str) -> Optional[IndexDocument]:
        return next((doc for doc in self.documents.values() if doc.path == str(path)), None)


class RuleClassifier:
    """Classifier that applies the extension rules and records every call."""

    def __init__(self, tags: Optional[List[str]] = None) -> None:
        self.classified: List[Path] = []
        self.tag_requests: List[Path] = []
        self._tags = tags

    def classify(self, path: Path) -> Category:
        self.classified.append(Path(path))
        return category_for_extension(path)

    def generate_tags(self, path: Path, category: Category) -> List[str]:
        self.tag_requests.append(Path(path))
        return list(self._tags) if self._tags is not None else fallback_tags(path)


@pytest.fixture
def index() -> InMemoryIndex:
    return InMemoryIndex()


@pytest.fixture
def store(tmp_path_factory: pytest.TempPathFactory) -> MetadataStore:
    # Kept outside tmp_path so walks over tmp_path never see the database.
    store = MetadataStore.open(tmp_path_factory.mktemp("state") / "smartdir.db", busy_timeout=5)
    yield store
    store.close()


@pytest.fixture
def sink(store: MetadataStore, index: InMemoryIndex) -> MetadataSink:
    sink = MetadataSink(store, index, task_timeout=1.0)
    sink.ensure_index()
    return sink


@pytest.fixture
def classifier() -> RuleClassifier:
    return RuleClassifier()

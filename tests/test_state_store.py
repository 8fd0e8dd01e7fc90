"""Metadata store and sink tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from smartdir.classification import Category
from smartdir.errors import SinkError
from smartdir.state import FileRecord, MetadataSink, MetadataStore


def _record(path: str, file_hash: str = "h1", **extra) -> FileRecord:
    return FileRecord(path=path, hash=file_hash, **extra)


def test_upsert_assigns_stable_identity(store: MetadataStore) -> None:
    first = store.upsert_file(_record("/data/a.txt", size=3))
    second = store.upsert_file(_record("/data/a.txt", "h2", size=5, tags=["x"]))

    assert first.id is not None
    assert second.id == first.id
    assert second.hash == "h2"
    assert second.tags == ["x"]
    assert second.created_at == first.created_at
    assert len(store.all_files()) == 1


def test_in_memory_store_round_trips_records() -> None:
    store = MetadataStore.open(":memory:")
    try:
        stored = store.upsert_file(_record("/m/one.png", category=Category.IMAGES, tags=["image", "photo"]))
        fetched = store.get_by_path("/m/one.png")
    finally:
        store.close()

    assert fetched is not None
    assert fetched.id == stored.id
    assert fetched.category is Category.IMAGES
    assert fetched.tags == ["image", "photo"]


def test_query_by_path_prefix_is_literal(store: MetadataStore) -> None:
    store.upsert_file(_record("/data/100%/a.txt"))
    store.upsert_file(_record("/data/100x/b.txt"))
    store.upsert_file(_record("/other/c.txt"))

    assert [record.path for record in store.query_by_path_prefix("/data/100%")] == ["/data/100%/a.txt"]
    assert len(store.query_by_path_prefix("/data/")) == 2
    assert store.query_by_path_prefix("/nowhere") == []


def test_delete_file_returns_removed_record(store: MetadataStore) -> None:
    stored = store.upsert_file(_record("/data/a.txt"))

    removed = store.delete_file("/data/a.txt")

    assert removed is not None and removed.id == stored.id
    assert store.get_by_path("/data/a.txt") is None
    assert store.delete_file("/data/a.txt") is None


def test_category_counts(store: MetadataStore) -> None:
    store.upsert_file(_record("/a.png", category=Category.IMAGES))
    store.upsert_file(_record("/b.jpg", category=Category.IMAGES))
    store.upsert_file(_record("/c.pdf", category=Category.DOCUMENTS))

    assert store.category_counts() == {"documents": 1, "images": 2}


def test_access_history_and_similar_files(store: MetadataStore) -> None:
    store.upsert_file(_record("/p/beach-trip.jpg", category=Category.IMAGES, tags=["beach", "image"]))
    store.upsert_file(_record("/p/beach-day.png", category=Category.IMAGES, tags=["beach"]))
    store.upsert_file(_record("/p/taxes.pdf", category=Category.DOCUMENTS, tags=["taxes"]))

    store.record_access("/p/beach-trip.jpg")
    store.record_access("/p/beach-trip.jpg")
    store.record_access("/p/unknown.bin")

    since = datetime.now(timezone.utc) - timedelta(days=1)
    frequent = store.frequent_accesses(since=since, limit=10)

    assert [(access.path, access.access_count) for access in frequent] == [
        ("/p/beach-trip.jpg", 2),
        ("/p/unknown.bin", 1),
    ]
    assert frequent[0].category == "images"
    assert frequent[1].category is None
    assert store.frequent_accesses(since=datetime.now(timezone.utc) + timedelta(days=1)) == []
    assert [record.path for record in store.similar_files()] == ["/p/beach-day.png"]


def test_sink_delete_removes_record_and_document(sink: MetadataSink, index) -> None:
    with sink.transaction() as tx:
        stored = tx.upsert_file(_record("/d/a.txt"))
        tx.await_task(tx.index_document(stored))

    removed = sink.delete_file("/d/a.txt")

    assert removed is not None
    assert sink.store.get_by_path("/d/a.txt") is None
    assert stored.id not in index.documents
    assert sink.delete_file("/d/a.txt") is None


def test_sink_transaction_compensates_on_error(sink: MetadataSink, index) -> None:
    with pytest.raises(SinkError):
        with sink.transaction() as tx:
            stored = tx.upsert_file(_record("/d/new.txt"))
            tx.index_document(stored)
            raise RuntimeError("boom")

    assert sink.store.get_by_path("/d/new.txt") is None
    assert index.documents == {}


def _fail_commits(sink: MetadataSink, monkeypatch: pytest.MonkeyPatch) -> None:
    open_session = sink.store.new_session

    def failing_session():
        session = open_session()

        def commit() -> None:
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        session.commit = commit
        return session

    monkeypatch.setattr(sink.store, "new_session", failing_session)


def test_failed_commit_removes_new_document(sink: MetadataSink, index, monkeypatch: pytest.MonkeyPatch) -> None:
    _fail_commits(sink, monkeypatch)

    with pytest.raises(SinkError, match="Metadata store failure"):
        with sink.transaction() as tx:
            stored = tx.upsert_file(_record("/c/new.txt"))
            tx.await_task(tx.index_document(stored))

    assert stored.id not in index.documents
    assert index.documents == {}
    assert sink.store.get_by_path("/c/new.txt") is None


def test_failed_commit_restores_previous_document(
    sink: MetadataSink, index, monkeypatch: pytest.MonkeyPatch
) -> None:
    original = sink.upsert_file(_record("/c/report.txt", "h1", tags=["report"]))
    _fail_commits(sink, monkeypatch)

    with pytest.raises(SinkError):
        with sink.transaction() as tx:
            tx.await_task(tx.index_document(tx.upsert_file(_record("/c/report.txt", "h2"))))

    assert sink.store.get_by_path("/c/report.txt").hash == "h1"
    assert index.documents[original.id].hash == "h1"
    assert index.documents[original.id].tags == "report"


def test_sink_upsert_file_indexes_record(sink: MetadataSink, index) -> None:
    stored = sink.upsert_file(_record("/u/a.txt"))

    assert sink.store.get_by_path("/u/a.txt").id == stored.id
    assert index.documents[stored.id].path == "/u/a.txt"


def test_untagged_upsert_keeps_stored_tags(sink: MetadataSink, index) -> None:
    sink.upsert_file(_record("/u/b.txt", tags=["keep"]))

    updated = sink.upsert_file(_record("/u/b.txt", "h2"))

    assert updated.tags == ["keep"]
    assert index.documents[updated.id].tags == "keep"

def test_sink_transaction_propagates_sink_errors_unchanged(sink: MetadataSink, index) -> None:
    index.fail_upsert = True

    with pytest.raises(SinkError, match="upsert rejected"):
        with sink.transaction() as tx:
            tx.index_document(tx.upsert_file(_record("/d/x.txt")))

    assert sink.store.all_files() == []


def test_ensure_index_is_idempotent(store: MetadataStore, index) -> None:
    sink = MetadataSink(store, index, searchable_fields=["path", "tags"])

    assert sink.ensure_index() is True
    assert sink.ensure_index() is False
    assert index.fields == ("path", "tags")


def test_reindex_pushes_all_records(sink: MetadataSink, index) -> None:
    sink.store.upsert_file(_record("/r/a.txt"))
    sink.store.upsert_file(_record("/r/b.txt", "h2"))
    assert index.documents == {}

    assert sink.reindex() == 2
    assert sorted(doc.path for doc in index.documents.values()) == ["/r/a.txt", "/r/b.txt"]


def test_search_records_access_for_hits(sink: MetadataSink) -> None:
    with sink.transaction() as tx:
        stored = tx.upsert_file(_record("/s/holiday.jpg", category=Category.IMAGES))
        tx.await_task(tx.index_document(stored))

    hits = sink.search("holiday")

    assert [hit.path for hit in hits] == ["/s/holiday.jpg"]
    since = datetime.now(timezone.utc) - timedelta(minutes=5)
    assert sink.store.frequent_accesses(since=since)[0].access_count == 1

"""Tests for the Chromadb-backed search index."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import List

import pytest

from smartdir.search import SearchIndex, SearchIndexError, document_text, load_embedding_function
from smartdir.state import IndexDocument


def fake_embedding(texts: List[str]) -> List[List[float]]:
    """Deterministic embedding so tests never download a model."""
    vectors = []
    for text in texts:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        vectors.append([byte / 255.0 for byte in digest[:8]])
    return vectors


def _doc(doc_id: int, path: str, category: str = "documents", tags: str = "") -> IndexDocument:
    return IndexDocument(id=doc_id, path=path, category=category, hash=f"h{doc_id}", tags=tags)


@pytest.fixture
def search_index(tmp_path: Path) -> SearchIndex:
    index = SearchIndex(tmp_path / "search", collection="files", embedding_function=fake_embedding)
    index.create()
    return index


def test_document_text_tokenizes_paths_and_tags() -> None:
    text = document_text(_doc(1, "/home/me/Q3-Report.pdf", tags="tax,finance"), ["path", "tags"])

    assert "q3-report.pdf" in text
    assert " report " in f" {text} "
    assert "finance" in text


def test_create_and_configure_fields(search_index: SearchIndex) -> None:
    assert search_index.exists()

    search_index.configure_fields(["path", "tags"])

    assert search_index.searchable_fields == ("path", "tags")
    with pytest.raises(SearchIndexError):
        search_index.configure_fields([])


def test_upsert_wait_and_keyword_search(search_index: SearchIndex) -> None:
    task = search_index.upsert(
        [_doc(1, "/data/tax-return.pdf", tags="tax"), _doc(2, "/data/beach.jpg", "images", "photo")]
    )

    assert search_index.wait(task, timeout=2.0).status == "succeeded"

    hits = search_index.search("beach")
    assert [hit.path for hit in hits] == ["/data/beach.jpg"]
    assert hits[0].category == "images"
    assert hits[0].id == 2


def test_delete_removes_documents(search_index: SearchIndex) -> None:
    search_index.wait(search_index.upsert([_doc(7, "/data/old.txt")]), timeout=2.0)

    task = search_index.delete([7])
    search_index.wait(task, timeout=2.0)

    assert search_index.search("old") == []


def test_vector_search_returns_nearest_when_no_keyword_matches(search_index: SearchIndex) -> None:
    search_index.wait(search_index.upsert([_doc(3, "/data/a.txt"), _doc(4, "/data/b.txt")]), timeout=2.0)

    hits = search_index.search("zzz-not-present", limit=1)

    assert len(hits) == 1
    assert hits[0].score is not None


def test_search_on_empty_index(search_index: SearchIndex) -> None:
    assert search_index.search("anything") == []


def test_load_embedding_function() -> None:
    assert load_embedding_function(None) is None
    assert load_embedding_function("hashlib.sha256") is hashlib.sha256
    with pytest.raises(SearchIndexError):
        load_embedding_function("no_dots")
    with pytest.raises(SearchIndexError):
        load_embedding_function("hashlib.not_a_function")

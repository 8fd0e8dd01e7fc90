"""Tests for duplicate detection and removal."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from smartdir.dedup import DuplicateGroup, find_duplicates, remove_duplicates
from smartdir.ingestion import FileProcessor
from smartdir.state import FileRecord


def _write(path: Path, content: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def stored_tree(tmp_path: Path, sink, classifier):
    processor = FileProcessor(classifier, sink)
    a = _write(tmp_path / "a.txt", b"same bytes")
    b = _write(tmp_path / "b.txt", b"same bytes")
    c = _write(tmp_path / "c.txt", b"different")
    for path in (a, b, c):
        processor.process(path)
    return a, b, c


def test_find_duplicates_groups_by_hash(tmp_path: Path, sink, stored_tree) -> None:
    a, b, _ = stored_tree

    report = find_duplicates(sink, str(tmp_path))

    assert len(report.groups) == 1
    group = report.groups[0]
    assert group.paths == [str(a), str(b)]
    assert group.keep == str(a)
    assert group.reclaimable_bytes == a.stat().st_size
    assert report.reclaimable_bytes == len(b"same bytes")
    assert report.duplicate_files == 1


def test_find_duplicates_respects_prefix(tmp_path: Path, sink, classifier) -> None:
    processor = FileProcessor(classifier, sink)
    processor.process(_write(tmp_path / "left" / "x.bin", b"dup"))
    processor.process(_write(tmp_path / "right" / "y.bin", b"dup"))

    assert find_duplicates(sink, str(tmp_path / "left")).groups == []
    assert len(find_duplicates(sink, str(tmp_path)).groups) == 1


def test_remove_duplicates_keeps_first_member(tmp_path: Path, sink, index, stored_tree) -> None:
    a, b, c = stored_tree
    report = find_duplicates(sink, str(tmp_path))

    removed = remove_duplicates(sink, report.groups)

    assert removed == 1
    assert a.exists() and c.exists()
    assert not b.exists()
    assert sink.store.get_by_path(str(b)) is None
    assert index.by_path(b) is None
    assert find_duplicates(sink, str(tmp_path)).groups == []


def test_second_pass_finds_nothing(tmp_path: Path, sink, stored_tree) -> None:
    remove_duplicates(sink, find_duplicates(sink, str(tmp_path)).groups)

    again = find_duplicates(sink, str(tmp_path))

    assert again.groups == []
    assert remove_duplicates(sink, again.groups) == 0


def test_unremovable_member_is_skipped(tmp_path: Path, sink, stored_tree, monkeypatch) -> None:
    a, b, _ = stored_tree
    real_remove = os.remove

    def guarded_remove(path):
        if Path(path) == b:
            raise PermissionError("read-only")
        real_remove(path)

    monkeypatch.setattr(os, "remove", guarded_remove)

    removed = remove_duplicates(sink, find_duplicates(sink, str(tmp_path)).groups)

    assert removed == 0
    assert b.exists()
    assert sink.store.get_by_path(str(b)) is not None


def test_already_missing_member_drops_metadata_without_counting(tmp_path: Path, sink) -> None:
    group = DuplicateGroup(hash="h", paths=[str(tmp_path / "keep.txt"), str(tmp_path / "ghost.txt")], size=4)
    sink.upsert_file(FileRecord(path=str(tmp_path / "ghost.txt"), hash="h", size=4))

    assert remove_duplicates(sink, [group]) == 0
    assert sink.store.get_by_path(str(tmp_path / "ghost.txt")) is None

"""Tests covering per-file processing and the worker pool."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterator, List

import pytest

from smartdir.classification import Category
from smartdir.classification.tagging import tag_files
from smartdir.errors import FileAccessError, ProcessingError, SinkError, WalkError
from smartdir.ingestion import ClassificationPipeline, FileProcessor
from smartdir.state import MetadataSink

from conftest import RuleClassifier


def _populate(root: Path, count: int) -> List[Path]:
    paths = []
    for index in range(count):
        folder = root / f"dir{index % 3}"
        folder.mkdir(exist_ok=True)
        path = folder / f"file-{index}.txt"
        path.write_text(f"content {index}", encoding="utf-8")
        paths.append(path)
    return paths


def test_process_stores_record_and_index_document(tmp_path: Path, sink, index, classifier) -> None:
    report = tmp_path / "report.pdf"
    report.write_bytes(b"%PDF-1.4")

    record = FileProcessor(classifier, sink).process(report)

    assert record.id is not None
    assert record.category is Category.DOCUMENTS
    assert record.size == 8
    assert record.mime_type == "application/pdf"
    stored = sink.store.get_by_path(str(report))
    assert stored is not None and stored.hash == record.hash
    assert index.documents[record.id].path == str(report)


def test_process_updates_existing_record_in_place(tmp_path: Path, sink, index, classifier) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("v1", encoding="utf-8")
    processor = FileProcessor(classifier, sink)

    first = processor.process(path)
    path.write_text("version two", encoding="utf-8")
    second = processor.process(path)

    assert second.id == first.id
    assert second.hash != first.hash
    assert len(sink.store.all_files()) == 1
    assert index.documents[first.id].hash == second.hash


def test_process_missing_file_raises_access_error(tmp_path: Path, sink, classifier) -> None:
    missing = tmp_path / "missing.txt"

    with pytest.raises(FileAccessError) as excinfo:
        FileProcessor(classifier, sink).process(missing)

    assert excinfo.value.path == missing
    assert sink.store.all_files() == []


def test_index_rejection_rolls_back_record(tmp_path: Path, sink, index, classifier) -> None:
    path = tmp_path / "photo.png"
    path.write_bytes(b"png")
    index.fail_upsert = True

    with pytest.raises(SinkError) as excinfo:
        FileProcessor(classifier, sink).process(path)

    assert excinfo.value.path == path
    assert sink.store.get_by_path(str(path)) is None
    assert index.documents == {}


def test_failed_acknowledgement_rolls_back_both_sides(tmp_path: Path, sink, index, classifier) -> None:
    path = tmp_path / "song.mp3"
    path.write_bytes(b"id3")
    index.fail_wait = True

    with pytest.raises(SinkError):
        FileProcessor(classifier, sink).process(path)

    assert sink.store.get_by_path(str(path)) is None
    assert index.by_path(path) is None


def test_failed_update_restores_previous_document(tmp_path: Path, sink, index, classifier) -> None:
    path = tmp_path / "draft.txt"
    path.write_text("original", encoding="utf-8")
    processor = FileProcessor(classifier, sink)
    original = processor.process(path)

    path.write_text("edited", encoding="utf-8")
    index.fail_wait = True
    with pytest.raises(SinkError):
        processor.process(path)
    index.fail_wait = False

    assert sink.store.get_by_path(str(path)).hash == original.hash
    assert index.documents[original.id].hash == original.hash


def test_reprocessing_keeps_existing_tags(tmp_path: Path, sink, index) -> None:
    path = tmp_path / "q3-report.pdf"
    path.write_bytes(b"%PDF draft")
    classifier = RuleClassifier(tags=["finance"])
    processor = FileProcessor(classifier, sink)
    first = processor.process(path)
    tags = tag_files(sink, classifier, str(tmp_path)).tagged[str(path)]

    path.write_bytes(b"%PDF final")
    second = processor.process(path)

    assert second.id == first.id
    assert second.hash != first.hash
    assert second.tags == tags
    assert sink.store.get_by_path(str(path)).tags == tags
    assert index.documents[first.id].tags == ",".join(tags)
    assert index.documents[first.id].hash == second.hash


def test_process_stores_absolute_path_for_relative_input(
    tmp_path: Path, sink, classifier, monkeypatch: pytest.MonkeyPatch
) -> None:
    (tmp_path / "notes.txt").write_text("hello", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    record = FileProcessor(classifier, sink).process("notes.txt")

    assert record.path == str(tmp_path / "notes.txt")


def test_pipeline_resolves_relative_root(tmp_path: Path, sink, classifier, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "d"
    root.mkdir()
    (root / "a.txt").write_text("a", encoding="utf-8")
    (root / "b.txt").write_text("b", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    result = ClassificationPipeline(FileProcessor(classifier, sink), workers=2).run("d")

    assert result.ok
    assert result.root == root
    assert sorted(record.path for record in sink.store.all_files()) == [
        str(root / "a.txt"),
        str(root / "b.txt"),
    ]

def test_pipeline_processes_every_file(tmp_path: Path, sink, index, classifier) -> None:
    paths = _populate(tmp_path, 25)

    pipeline = ClassificationPipeline(FileProcessor(classifier, sink), workers=4, queue_size=2)
    result = pipeline.run(tmp_path)

    assert result.ok
    assert result.error is None
    assert result.processed == 25
    assert sorted(record.path for record in sink.store.all_files()) == sorted(str(p) for p in paths)
    assert len(index.documents) == 25
    assert sorted(classifier.classified) == sorted(paths)


def test_pipeline_creates_missing_index(tmp_path: Path, store, index, classifier) -> None:
    _populate(tmp_path, 1)
    sink = MetadataSink(store, index)

    ClassificationPipeline(FileProcessor(classifier, sink), workers=1).run(tmp_path)

    assert index.created is True
    assert index.fields == ("path", "category", "tags")


def test_pipeline_on_empty_directory(tmp_path: Path, sink, classifier) -> None:
    result = ClassificationPipeline(FileProcessor(classifier, sink), workers=2).run(tmp_path)

    assert result.ok
    assert result.processed == 0
    assert result.errors == []


class _FailingProcessor:
    def __init__(self, sink) -> None:
        self.sink = sink
        self.calls = 0
        self._lock = threading.Lock()

    def process(self, path: Path):
        with self._lock:
            self.calls += 1
        raise ProcessingError(f"cannot process {path}", path=path)


def test_pipeline_caps_retained_errors(tmp_path: Path, sink) -> None:
    paths = [tmp_path / f"f{index}.bin" for index in range(12)]
    processor = _FailingProcessor(sink)

    result = ClassificationPipeline(
        processor, workers=3, error_buffer=4, walker=lambda root: iter(paths)
    ).run(tmp_path)

    assert processor.calls == 12
    assert result.failed == 12
    assert len(result.errors) == 4
    assert not result.ok
    assert isinstance(result.error, ProcessingError)


def test_pipeline_reports_walk_error_after_draining(tmp_path: Path, sink, classifier) -> None:
    paths = _populate(tmp_path, 3)

    def walker(root: Path) -> Iterator[Path]:
        yield from paths
        raise WalkError("permission denied on subdir")

    result = ClassificationPipeline(FileProcessor(classifier, sink), workers=2, walker=walker).run(tmp_path)

    assert result.processed == 3
    assert isinstance(result.error, WalkError)
    assert len(sink.store.all_files()) == 3


def test_pipeline_continues_past_individual_failures(tmp_path: Path, sink, index, classifier) -> None:
    good = _populate(tmp_path, 4)
    missing = tmp_path / "vanished.txt"

    result = ClassificationPipeline(
        FileProcessor(classifier, sink), workers=2, walker=lambda root: iter([*good, missing])
    ).run(tmp_path)

    assert result.processed == 4
    assert result.failed == 1
    assert isinstance(result.error, FileAccessError)
    assert len(index.documents) == 4

"""Classification pipeline: per-file processing and the bounded worker pool."""

from __future__ import annotations

import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from smartdir.classification.models import ClassificationPort
from smartdir.errors import FileAccessError, ProcessingError, SinkError, SmartdirError, WalkError
from smartdir.state.models import FileRecord
from smartdir.state.sink import MetadataSink

from .detectors import HashComputer, TypeDetector
from .discovery import iter_files

LOGGER = logging.getLogger(__name__)

_CLOSED = None


class FileProcessor:
    """Fingerprint, classify, and persist a single file.

    Shared by the worker pool and the change monitor.
    """

    def __init__(
        self,
        classifier: ClassificationPort,
        sink: MetadataSink,
        *,
        hasher: HashComputer | None = None,
        detector: TypeDetector | None = None,
    ) -> None:
        self.classifier = classifier
        self.sink = sink
        self.hasher = hasher or HashComputer()
        self.detector = detector or TypeDetector()

    def process(self, path: Path | str) -> FileRecord:
        """Process ``path`` and return the stored record.

        Raises:
            FileAccessError: If the file cannot be stat'ed.
            HashError: If the file cannot be read while fingerprinting.
            SinkError: If the record or its index document cannot be written;
                neither is left behind.
        """
        path = Path(path).expanduser().absolute()
        try:
            info = path.stat()
        except OSError as exc:
            raise FileAccessError(f"failed to stat file {path}: {exc}", path=path) from exc

        file_hash = self.hasher.compute(path)
        category = self.classifier.classify(path)
        record = FileRecord(
            path=str(path),
            hash=file_hash,
            size=info.st_size,
            mime_type=self.detector.detect(path),
            category=category,
        )

        try:
            with self.sink.transaction() as tx:
                stored = tx.upsert_file(record)
                task = tx.index_document(stored)
                tx.await_task(task)
        except SinkError as exc:
            if exc.path is None:
                exc.path = path
            raise
        LOGGER.debug("Processed %s as %s", path, stored.category.value)
        return stored


@dataclass
class PipelineResult:
    """Outcome of a pipeline run.

    Attributes:
        root: Root that was walked.
        processed: Number of files stored successfully.
        failed: Number of files whose processing raised.
        errors: First errors observed, capped at the error buffer size.
        walk_error: Fatal traversal error, if enumeration was aborted.
    """

    root: Path
    processed: int = 0
    failed: int = 0
    errors: List[SmartdirError] = field(default_factory=list)
    walk_error: Optional[WalkError] = None

    @property
    def ok(self) -> bool:
        return self.walk_error is None and self.failed == 0

    @property
    def error(self) -> Optional[SmartdirError]:
        """Return the error to report: the walk error, else the first file error."""
        if self.walk_error is not None:
            return self.walk_error
        return self.errors[0] if self.errors else None


class ClassificationPipeline:
    """Walk a tree and process every file with a fixed pool of worker threads."""

    def __init__(
        self,
        processor: FileProcessor,
        *,
        workers: int = 0,
        queue_size: int = 100,
        error_buffer: int = 10,
        walker: Callable[[Path], Iterable[Path]] = iter_files,
    ) -> None:
        """Configure the pool.

        Args:
            processor: Per-file routine run by each worker.
            workers: Worker thread count; ``0`` uses one per available CPU.
            queue_size: Capacity of the path queue; the walker blocks when full.
            error_buffer: Number of errors retained; later errors are dropped.
            walker: Callable producing file paths for a root.
        """
        self.processor = processor
        self.workers = workers if workers > 0 else (os.cpu_count() or 1)
        self.queue_size = max(1, queue_size)
        self.error_buffer = max(1, error_buffer)
        self._walker = walker

    def run(self, root: Path | str) -> PipelineResult:
        """Process every file under ``root`` and wait for all workers.

        Raises:
            SinkError: If the search index is missing and cannot be created.
        """
        root = Path(root).expanduser().resolve()
        result = PipelineResult(root=root)
        self.processor.sink.ensure_index()

        paths: queue.Queue[Optional[Path]] = queue.Queue(maxsize=self.queue_size)
        errors: queue.Queue[SmartdirError] = queue.Queue(maxsize=self.error_buffer)
        counts_lock = threading.Lock()

        def report(error: SmartdirError) -> None:
            try:
                errors.put_nowait(error)
            except queue.Full:
                pass

        def work() -> None:
            while True:
                path = paths.get()
                try:
                    if path is _CLOSED:
                        return
                    try:
                        self.processor.process(path)
                    except ProcessingError as exc:
                        LOGGER.error("%s", exc)
                        with counts_lock:
                            result.failed += 1
                        report(exc)
                    except Exception as exc:
                        LOGGER.exception("Unexpected failure processing %s", path)
                        with counts_lock:
                            result.failed += 1
                        report(ProcessingError(f"{path}: {exc}", path=path))
                    else:
                        with counts_lock:
                            result.processed += 1
                finally:
                    paths.task_done()

        threads = [
            threading.Thread(target=work, name=f"smartdir-worker-{index}", daemon=True)
            for index in range(self.workers)
        ]
        for thread in threads:
            thread.start()

        try:
            for path in self._iter_paths(root):
                paths.put(path)
        except WalkError as exc:
            LOGGER.error("%s", exc)
            result.walk_error = exc
            report(exc)
        finally:
            for _ in threads:
                paths.put(_CLOSED)
            for thread in threads:
                thread.join()

        while True:
            try:
                result.errors.append(errors.get_nowait())
            except queue.Empty:
                break
        return result

    def _iter_paths(self, root: Path) -> Iterator[Path]:
        try:
            yield from self._walker(root)
        except WalkError:
            raise
        except OSError as exc:
            raise WalkError(f"failed to walk {root}: {exc}") from exc


__all__ = ["FileProcessor", "ClassificationPipeline", "PipelineResult"]

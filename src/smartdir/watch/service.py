"""Filesystem change monitor that re-runs per-file processing after writes settle."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from smartdir.errors import SmartdirError
from smartdir.ingestion.discovery import iter_directories, iter_files
from smartdir.ingestion.pipeline import FileProcessor
from smartdir.state.models import FileRecord

LOGGER = logging.getLogger(__name__)

_CLOSED = object()


class EventKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(slots=True, frozen=True)
class WatchEvent:
    """Filesystem notification passed from the observer to the control loop.

    Attributes:
        path: Path the event refers to (the source path for renames).
        kind: Kind of change.
        is_directory: Whether ``path`` is a directory.
        dest_path: Destination for renames.
        error: Error reported by the notification source instead of a change.
    """

    path: Path
    kind: EventKind
    is_directory: bool = False
    dest_path: Optional[Path] = None
    error: Optional[BaseException] = None


class DebounceBuffer:
    """Track the last mutation time per path until the path settles."""

    def __init__(self, settle_seconds: float) -> None:
        self.settle_seconds = settle_seconds
        self._pending: Dict[Path, float] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, path: object) -> bool:
        return path in self._pending

    def mark(self, path: Path, now: float) -> None:
        """Record a mutation of ``path`` at ``now``, re-arming its settle window."""
        self._pending[path] = now

    def discard(self, path: Path) -> None:
        self._pending.pop(path, None)

    def discard_prefix(self, prefix: str) -> None:
        """Forget every pending path whose string form starts with ``prefix``."""
        for path in [item for item in self._pending if str(item).startswith(prefix)]:
            del self._pending[path]

    def last_seen(self, path: Path) -> Optional[float]:
        return self._pending.get(path)

    def pop_settled(self, now: float) -> List[Path]:
        """Remove and return paths untouched for at least the settle window, oldest first."""
        settled = [
            path
            for path, seen in sorted(self._pending.items(), key=lambda item: item[1])
            if now - seen >= self.settle_seconds
        ]
        for path in settled:
            del self._pending[path]
        return settled


@dataclass
class MonitorBatch:
    """Paths dispatched by one tick.

    Attributes:
        processed: Records stored for paths that processed cleanly.
        failed: Error messages keyed by path.
    """

    processed: List[FileRecord] = field(default_factory=list)
    failed: Dict[Path, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.processed) + len(self.failed)


class ChangeMonitor:
    """Watch a tree and reprocess files once their changes settle.

    Only the control loop started by :meth:`run` touches the debounce buffer;
    watchdog callbacks hand events over through a queue.
    """

    def __init__(
        self,
        processor: FileProcessor,
        root: Path | str,
        *,
        tick_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        observer_factory: Callable[[], Any] = Observer,
        on_batch: Optional[Callable[[MonitorBatch], None]] = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            processor: Per-file routine shared with the worker pool.
            root: Directory to monitor.
            tick_seconds: Interval between scans of the debounce buffer; also the
                settle window a path must stay quiet for.
            clock: Monotonic time source.
            observer_factory: Factory for the watchdog observer.
            on_batch: Optional callback invoked with each dispatched batch.
        """
        self.processor = processor
        self.root = Path(root).expanduser().resolve()
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._observer_factory = observer_factory
        self._on_batch = on_batch
        self._buffer = DebounceBuffer(tick_seconds)
        self._events: queue.Queue[Any] = queue.Queue()
        self._handler = _MonitorEventHandler(self.submit)
        self._observer: Any = None
        self._watches: Dict[Path, Any] = {}
        self._lock = threading.Lock()

    @property
    def pending(self) -> DebounceBuffer:
        return self._buffer

    @property
    def watched_directories(self) -> List[Path]:
        return sorted(self._watches)

    def submit(self, event: WatchEvent) -> None:
        """Hand an event to the control loop."""
        self._events.put(event)

    def run(self) -> None:
        """Watch until :meth:`stop` closes the event channel.

        Raises:
            RuntimeError: If the monitor is already running.
            WalkError: If the initial directory scan fails.
        """
        with self._lock:
            if self._observer is not None:
                raise RuntimeError("ChangeMonitor is already running.")
            self._observer = self._observer_factory()

        try:
            for directory in iter_directories(self.root):
                self.watch_directory(directory)
            self._observer.start()
            LOGGER.info("Monitoring %s for changes.", self.root)

            next_tick = self._clock() + self.tick_seconds
            while True:
                timeout = max(0.0, next_tick - self._clock())
                try:
                    event = self._events.get(timeout=timeout)
                except queue.Empty:
                    pass
                else:
                    if event is _CLOSED:
                        break
                    self.handle_event(event)

                now = self._clock()
                if now >= next_tick:
                    self.tick(now)
                    next_tick = now + self.tick_seconds
        finally:
            self._shutdown_observer()

    def stop(self) -> None:
        """Close the event channel so :meth:`run` returns."""
        self._events.put(_CLOSED)

    def watch_directory(self, directory: Path) -> None:
        """Add ``directory`` to the watch set; failures are logged."""
        directory = Path(directory)
        if directory in self._watches or self._observer is None:
            return
        try:
            self._watches[directory] = self._observer.schedule(
                self._handler, str(directory), recursive=False
            )
        except (OSError, RuntimeError, ValueError) as exc:
            LOGGER.error("Watcher error: failed to watch %s: %s", directory, exc)

    def handle_event(self, event: WatchEvent, now: Optional[float] = None) -> None:
        """Apply one notification to the watch set and the debounce buffer."""
        now = self._clock() if now is None else now
        try:
            if event.error is not None:
                LOGGER.error("Watcher error: %s", event.error)
                return
            if event.kind in (EventKind.CREATED, EventKind.MODIFIED):
                self._handle_write(event.path, event.kind, now)
            elif event.kind is EventKind.REMOVED:
                self._handle_removed(event.path, event.is_directory)
            elif event.kind is EventKind.RENAMED:
                self._handle_removed(event.path, event.is_directory)
                if event.dest_path is not None and self._is_inside(event.dest_path):
                    self._handle_write(event.dest_path, EventKind.CREATED, now)
        except Exception as exc:
            LOGGER.error("Failed to handle %s event for %s: %s", event.kind.value, event.path, exc)

    def tick(self, now: Optional[float] = None) -> Optional[MonitorBatch]:
        """Dispatch every settled path to the processor, one after another."""
        now = self._clock() if now is None else now
        due = self._buffer.pop_settled(now)
        if not due:
            return None

        LOGGER.info("Processing %d changed files...", len(due))
        batch = MonitorBatch()
        for path in due:
            try:
                batch.processed.append(self.processor.process(path))
            except Exception as exc:
                LOGGER.error("Error processing %s: %s", path, exc)
                batch.failed[path] = str(exc)
        LOGGER.info("Finished processing changed files")

        if self._on_batch is not None:
            try:
                self._on_batch(batch)
            except Exception as exc:
                LOGGER.error("Batch callback failed: %s", exc)
        return batch

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _handle_write(self, path: Path, kind: EventKind, now: float) -> None:
        try:
            is_file = path.is_file() and not path.is_symlink()
            is_dir = not is_file and path.is_dir() and not path.is_symlink()
        except OSError:
            return
        if is_file:
            self._buffer.mark(path, now)
        elif is_dir and kind is EventKind.CREATED:
            self._adopt_directory(path, now)

    def _adopt_directory(self, directory: Path, now: float) -> None:
        # Files may land before the new watch is registered.
        try:
            for subdirectory in iter_directories(directory):
                self.watch_directory(subdirectory)
            for path in iter_files(directory):
                self._buffer.mark(path, now)
        except SmartdirError as exc:
            LOGGER.error("Watcher error: %s", exc)

    def _handle_removed(self, path: Path, is_directory: bool) -> None:
        sink = self.processor.sink
        if is_directory:
            watch = self._watches.pop(path, None)
            if watch is not None and self._observer is not None:
                try:
                    self._observer.unschedule(watch)
                except (KeyError, OSError, RuntimeError):
                    LOGGER.debug("Watch for %s already released", path)
            prefix = f"{path}{os.sep}"
            self._buffer.discard_prefix(prefix)
            for record in sink.query_by_path_prefix(prefix):
                self._delete_record(record.path)
            return
        self._buffer.discard(path)
        self._delete_record(str(path))

    def _delete_record(self, path: str) -> None:
        try:
            if self.processor.sink.delete_file(path) is not None:
                LOGGER.info("Removed metadata for %s", path)
        except SmartdirError as exc:
            LOGGER.error("Error removing %s: %s", path, exc)

    def _is_inside(self, path: Path) -> bool:
        try:
            Path(path).relative_to(self.root)
        except ValueError:
            return False
        return True

    def _shutdown_observer(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        self._watches.clear()
        if observer is None:
            return
        try:
            observer.stop()
            observer.join(timeout=5)
        except RuntimeError:
            # join() before start() when the initial scan failed.
            pass


class _MonitorEventHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into :class:`WatchEvent` messages."""

    def __init__(self, submit: Callable[[WatchEvent], None]) -> None:
        super().__init__()
        self._submit = submit

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.REMOVED)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.RENAMED)

    def _forward(self, event: FileSystemEvent, kind: EventKind) -> None:
        dest = getattr(event, "dest_path", None) if kind is EventKind.RENAMED else None
        self._submit(
            WatchEvent(
                path=Path(os.fsdecode(event.src_path)),
                kind=kind,
                is_directory=event.is_directory,
                dest_path=Path(os.fsdecode(dest)) if dest else None,
            )
        )


__all__ = [
    "ChangeMonitor",
    "DebounceBuffer",
    "EventKind",
    "MonitorBatch",
    "WatchEvent",
]

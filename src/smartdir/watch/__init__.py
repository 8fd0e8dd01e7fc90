"""Change monitoring for smartdir."""

from .service import ChangeMonitor, DebounceBuffer, EventKind, MonitorBatch, WatchEvent

__all__ = ["ChangeMonitor", "DebounceBuffer", "EventKind", "MonitorBatch", "WatchEvent"]

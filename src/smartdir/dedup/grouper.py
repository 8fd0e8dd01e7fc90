"""Content-addressable duplicate detection over stored fingerprints."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from smartdir.errors import SmartdirError
from smartdir.state.sink import MetadataSink

LOGGER = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """Paths sharing one content hash, in store order.

    Attributes:
        hash: Shared content fingerprint.
        paths: Member paths; the first is the one kept on removal.
        size: Size of the first member, used as the size of every copy.
    """

    hash: str
    paths: List[str]
    size: int = 0

    @property
    def keep(self) -> str:
        return self.paths[0]

    @property
    def extras(self) -> List[str]:
        return self.paths[1:]

    @property
    def reclaimable_bytes(self) -> int:
        return self.size * (len(self.paths) - 1)


@dataclass
class DuplicateReport:
    """Duplicate groups found under a prefix."""

    groups: List[DuplicateGroup] = field(default_factory=list)

    @property
    def reclaimable_bytes(self) -> int:
        return sum(group.reclaimable_bytes for group in self.groups)

    @property
    def duplicate_files(self) -> int:
        return sum(len(group.extras) for group in self.groups)


def find_duplicates(sink: MetadataSink, root_prefix: str) -> DuplicateReport:
    """Group stored records under ``root_prefix`` by content hash.

    Singleton groups are dropped. Each path lands in at most one group since a
    record has exactly one hash.

    Raises:
        SinkError: If the store query fails.
    """
    by_hash: Dict[str, DuplicateGroup] = {}
    for record in sink.query_by_path_prefix(root_prefix):
        group = by_hash.get(record.hash)
        if group is None:
            by_hash[record.hash] = DuplicateGroup(hash=record.hash, paths=[record.path], size=record.size)
        else:
            group.paths.append(record.path)
    return DuplicateReport(groups=[group for group in by_hash.values() if len(group.paths) > 1])


def remove_duplicates(sink: MetadataSink, groups: Sequence[DuplicateGroup]) -> int:
    """Delete every member but the first of each group, file and record alike.

    A member that cannot be deleted is logged and skipped; it is not counted
    and not retried.

    Returns:
        int: Number of members removed.
    """
    removed = 0
    for group in groups:
        for path in group.extras:
            deleted = True
            try:
                os.remove(path)
            except FileNotFoundError:
                # Stale record: drop the metadata but do not count it.
                LOGGER.info("Duplicate %s already gone; dropping its metadata", path)
                deleted = False
            except OSError as exc:
                LOGGER.warning("Failed to remove duplicate %s: %s", path, exc)
                continue
            try:
                sink.delete_file(path)
            except SmartdirError as exc:
                LOGGER.warning("Failed to delete metadata for %s: %s", path, exc)
                continue
            if deleted:
                removed += 1
    return removed


__all__ = ["DuplicateGroup", "DuplicateReport", "find_duplicates", "remove_duplicates"]

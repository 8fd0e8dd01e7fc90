"""Tag stored records that do not have tags yet."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from smartdir.errors import SinkError
from smartdir.state.sink import MetadataSink

from .models import Category, ClassificationPort
from .rules import filename_tokens, unique_tags

LOGGER = logging.getLogger(__name__)

# Categories worth a model call for richer tags.
_MODEL_TAGGED = {Category.IMAGES, Category.DOCUMENTS}


@dataclass
class TagResult:
    """Outcome of a tagging run.

    Attributes:
        tagged: New tags keyed by path.
        skipped: Records that already had tags.
        failed: Error messages keyed by path.
    """

    tagged: Dict[str, List[str]] = field(default_factory=dict)
    skipped: int = 0
    failed: Dict[str, str] = field(default_factory=dict)


def build_tags(path: Path, category: Category, classifier: ClassificationPort) -> List[str]:
    """Combine filename tokens, the category, and model tags for images and documents."""
    tags = filename_tokens(path)
    if category is not Category.OTHER:
        tags.append(category.value)
    if category in _MODEL_TAGGED:
        tags.extend(classifier.generate_tags(path, category))
    return unique_tags(tags)


def tag_files(sink: MetadataSink, classifier: ClassificationPort, prefix: str) -> TagResult:
    """Tag every untagged record under ``prefix``.

    Each record update and its index refresh commit together; a failure rolls
    both back for that record and the run continues.
    """
    result = TagResult()
    for record in sink.query_by_path_prefix(prefix):
        if record.tags:
            result.skipped += 1
            continue
        tags = build_tags(Path(record.path), record.category, classifier)
        if not tags:
            continue
        try:
            with sink.transaction() as tx:
                stored = tx.upsert_file(record.model_copy(update={"tags": tags}))
                tx.await_task(tx.index_document(stored))
        except SinkError as exc:
            LOGGER.error("Failed to tag %s: %s", record.path, exc)
            result.failed[record.path] = str(exc)
            continue
        result.tagged[record.path] = tags
    return result


__all__ = ["TagResult", "build_tags", "tag_files"]

"""Extension rules used when the language model is unavailable."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List

from .models import Category

_EXTENSION_CATEGORIES = {
    Category.IMAGES: {".jpg", ".jpeg", ".png", ".gif", ".webp"},
    Category.DOCUMENTS: {".doc", ".docx", ".pdf", ".txt", ".rtf"},
    Category.VIDEOS: {".mp4", ".mov", ".avi", ".mkv", ".webm"},
    Category.AUDIO: {".mp3", ".wav", ".flac", ".aac"},
    Category.CODE: {".go", ".py", ".js", ".java", ".cpp"},
    Category.ARCHIVES: {".zip", ".tar", ".gz", ".7z", ".rar"},
}
_CATEGORY_BY_EXTENSION = {
    extension: category
    for category, extensions in _EXTENSION_CATEGORIES.items()
    for extension in extensions
}

_PRESET_TAGS = {
    (".jpg", ".jpeg", ".png", ".gif"): ["image", "photo"],
    (".doc", ".docx", ".pdf"): ["document"],
    (".mp4", ".mov", ".avi"): ["video"],
    (".mp3", ".wav"): ["audio"],
    (".go", ".py", ".js"): ["code", "programming"],
}

_NAME_SEPARATORS = re.compile(r"[-_ .]+")


def category_for_extension(path: Path | str) -> Category:
    """Return the category implied by the file extension, ``OTHER`` when unknown."""
    return _CATEGORY_BY_EXTENSION.get(Path(path).suffix.lower(), Category.OTHER)


def filename_tokens(path: Path | str) -> List[str]:
    """Split the file stem on separators, keeping lower-cased tokens over two characters."""
    stem = Path(path).stem
    return [part.lower() for part in _NAME_SEPARATORS.split(stem) if len(part) > 2]


def fallback_tags(path: Path | str) -> List[str]:
    """Return preset tags for well-known extensions, otherwise filename tokens."""
    suffix = Path(path).suffix.lower()
    for extensions, tags in _PRESET_TAGS.items():
        if suffix in extensions:
            return list(tags)
    return filename_tokens(path)


def unique_tags(tags: Iterable[str]) -> List[str]:
    """Lower-case, strip, and de-duplicate ``tags`` preserving first occurrence."""
    seen: set[str] = set()
    result: List[str] = []
    for tag in tags:
        # Commas are the storage separator.
        normalized = tag.replace(",", " ").strip().lower()
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result


__all__ = ["category_for_extension", "filename_tokens", "fallback_tags", "unique_tags"]

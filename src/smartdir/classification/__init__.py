"""Classification package: categories, the DSPy engine, and fallback rules."""

from .engine import ClassificationEngine
from .models import Category, ClassificationPort
from .rules import category_for_extension, fallback_tags, filename_tokens, unique_tags

__all__ = [
    "Category",
    "ClassificationEngine",
    "ClassificationPort",
    "category_for_extension",
    "fallback_tags",
    "filename_tokens",
    "unique_tags",
]

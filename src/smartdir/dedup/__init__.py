"""Duplicate detection and removal."""

from .grouper import DuplicateGroup, DuplicateReport, find_duplicates, remove_duplicates

__all__ = ["DuplicateGroup", "DuplicateReport", "find_duplicates", "remove_duplicates"]

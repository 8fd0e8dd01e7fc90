"""Directory walking, fingerprinting, and the classification worker pool."""

from .detectors import HashComputer, TypeDetector
from .discovery import iter_directories, iter_files
from .pipeline import ClassificationPipeline, FileProcessor, PipelineResult

__all__ = [
    "HashComputer",
    "TypeDetector",
    "iter_files",
    "iter_directories",
    "ClassificationPipeline",
    "FileProcessor",
    "PipelineResult",
]

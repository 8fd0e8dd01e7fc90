"""Logging setup for the smartdir CLI."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from smartdir.config.models import LoggingSettings

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s - %(message)s"
_MARKER = "_smartdir_handler"


def setup_logging(settings: LoggingSettings, log_path: Path | None = None) -> None:
    """Route smartdir logs to stderr via rich and, optionally, a rotating file.

    Calling it again replaces the handlers installed by a previous call.

    Args:
        settings: Level and rotation settings.
        log_path: Log file location; ``None`` disables file logging.
    """
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.WARNING

    logger = logging.getLogger("smartdir")
    logger.setLevel(min(level, logging.INFO) if log_path is not None else level)
    for handler in [h for h in logger.handlers if getattr(h, _MARKER, False)]:
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_path=False,
        rich_tracebacks=True,
    )
    setattr(console_handler, _MARKER, True)
    logger.addHandler(console_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
        file_handler.setLevel(min(level, logging.INFO))
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        setattr(file_handler, _MARKER, True)
        logger.addHandler(file_handler)

    # Chromadb and LiteLLM are chatty at INFO.
    for noisy in ("chromadb", "LiteLLM", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


__all__ = ["setup_logging"]

"""Configuration models describing smartdir settings."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SmartdirBaseModel(BaseModel):
    """Shared configuration for smartdir Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class LLMSettings(SmartdirBaseModel):
    """LLM configuration options used by the classification engine.

    Attributes:
        provider: Identifier for the language-model provider.
        model: Model name to target when issuing requests.
        temperature: Sampling temperature for generative calls.
        max_tokens: Maximum number of tokens in responses.
        api_key: Optional credential for hosted providers.
        api_base_url: Optional base URL for OpenAI-compatible endpoints.
    """

    provider: str = "local"
    model: str = "llama3"
    temperature: float = 0.1
    max_tokens: int = 256
    api_key: Optional[str] = None
    api_base_url: Optional[str] = None


class DatabaseSettings(SmartdirBaseModel):
    """Metadata store location.

    Attributes:
        path: SQLite database file.
        busy_timeout_seconds: How long a writer waits on a locked database.
    """

    path: str = "~/.smartdir/smartdir.db"
    busy_timeout_seconds: float = 30.0


class SearchSettings(SmartdirBaseModel):
    """Search index settings.

    Attributes:
        path: Directory holding the Chromadb persistent store.
        collection: Collection name used for file documents.
        searchable_fields: Document fields that contribute to the indexed text.
        task_timeout_seconds: Timeout applied when awaiting an index task.
        embedding_function: Optional dotted path to an embedding callable.
    """

    path: str = "~/.smartdir/search"
    collection: str = "files"
    searchable_fields: List[str] = Field(default_factory=lambda: ["path", "category", "tags"])
    task_timeout_seconds: float = 30.0
    embedding_function: Optional[str] = None


class ProcessingOptions(SmartdirBaseModel):
    """Worker pool options for the classification pipeline.

    Attributes:
        workers: Number of worker threads; ``0`` uses one per available CPU.
        queue_size: Capacity of the bounded path queue between walker and workers.
        error_buffer: Number of per-file errors retained for reporting.
        hash_chunk_size: Bytes read per chunk while fingerprinting.
    """

    workers: int = Field(default=0, ge=0)
    queue_size: int = Field(default=100, ge=1)
    error_buffer: int = Field(default=10, ge=1)
    hash_chunk_size: int = Field(default=1024 * 1024, ge=1)


class MonitorSettings(SmartdirBaseModel):
    """Change monitor options.

    Attributes:
        tick_seconds: Interval between debounce scans; also the settle window.
    """

    tick_seconds: float = Field(default=5.0, gt=0)


class LoggingSettings(SmartdirBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    max_size_mb: int = 100
    backup_count: int = 5


class CLIOptions(SmartdirBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        preview_groups: Duplicate groups shown by ``deduplicate`` previews.
    """

    quiet_default: bool = False
    preview_groups: int = 3


class SmartdirConfig(SmartdirBaseModel):
    """Top-level configuration struct for smartdir.

    Attributes:
        llm: Language model settings.
        database: Metadata store settings.
        search: Search index settings.
        processing: Worker pool settings.
        monitor: Change monitor settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    processing: ProcessingOptions = Field(default_factory=ProcessingOptions)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "SmartdirBaseModel",
    "LLMSettings",
    "DatabaseSettings",
    "SearchSettings",
    "ProcessingOptions",
    "MonitorSettings",
    "LoggingSettings",
    "CLIOptions",
    "SmartdirConfig",
]

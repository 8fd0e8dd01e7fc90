"""Command line interface for smartdir."""

from __future__ import annotations

import difflib
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

import click
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from smartdir.classification import ClassificationEngine
from smartdir.classification.tagging import tag_files
from smartdir.config import ConfigError, ConfigManager, SmartdirConfig, resolve_home, resolve_with_precedence
from smartdir.config.resolver import assign_nested
from smartdir.dedup import find_duplicates, remove_duplicates
from smartdir.errors import SmartdirError
from smartdir.ingestion import ClassificationPipeline, FileProcessor, HashComputer
from smartdir.logging_config import setup_logging
from smartdir.search import SearchIndex, load_embedding_function
from smartdir.state import MetadataSink, MetadataStore
from smartdir.watch import ChangeMonitor, MonitorBatch

console = Console()

_LOG_FILENAME = "smartdir.log"


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool = False,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """
    if json_output:
        console.print_json(data={"error": {"code": code, "message": message}})
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, quiet: bool, error: bool = False) -> None:
    """Print ``message`` unless quiet mode suppresses it."""
    if quiet and not error:
        return
    console.print(message)


def _format_summary_line(command: str, root: Path | str, metrics: dict[str, Any]) -> str:
    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {root}: {parts}.[/green]"


def _format_size(num_bytes: int) -> str:
    return f"{num_bytes / (1024 * 1024):.2f} MB"


# ---------------------------------------------------------------------- #
# Runtime wiring                                                         #
# ---------------------------------------------------------------------- #


def load_config() -> SmartdirConfig:
    """Load the effective configuration and configure logging.

    Raises:
        click.ClickException: If the configuration cannot be loaded.
    """
    manager = ConfigManager()
    try:
        config = manager.load()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    setup_logging(config.logging, resolve_home(config) / _LOG_FILENAME)
    return config


def build_sink(config: SmartdirConfig) -> MetadataSink:
    """Open the metadata store and search index described by ``config``."""
    store = MetadataStore.open(
        config.database.path,
        busy_timeout=config.database.busy_timeout_seconds,
    )
    index = SearchIndex(
        config.search.path,
        collection=config.search.collection,
        embedding_function=load_embedding_function(config.search.embedding_function),
    )
    return MetadataSink(
        store,
        index,
        task_timeout=config.search.task_timeout_seconds,
        searchable_fields=config.search.searchable_fields,
    )


def build_engine(config: SmartdirConfig) -> ClassificationEngine:
    return ClassificationEngine(config.llm)


def build_processor(config: SmartdirConfig, sink: MetadataSink) -> FileProcessor:
    return FileProcessor(
        build_engine(config),
        sink,
        hasher=HashComputer(config.processing.hash_chunk_size),
    )


class _Runtime:
    """Configuration plus a lazily opened sink, closed when the command ends."""

    def __init__(self, config: SmartdirConfig) -> None:
        self.config = config
        self._sink: MetadataSink | None = None

    @property
    def sink(self) -> MetadataSink:
        if self._sink is None:
            try:
                self._sink = build_sink(self.config)
            except (SmartdirError, SQLAlchemyError, OSError) as exc:
                raise click.ClickException(f"Database initialization failed: {exc}") from exc
        return self._sink

    def close(self) -> None:
        if self._sink is not None:
            self._sink.close()
            self._sink = None


@contextmanager
def _open_runtime() -> Iterator[_Runtime]:
    runtime = _Runtime(load_config())
    try:
        yield runtime
    finally:
        runtime.close()


# ---------------------------------------------------------------------- #
# Commands                                                               #
# ---------------------------------------------------------------------- #


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="smartdir")
def cli() -> None:
    """Smartdir classifies, indexes, and deduplicates the files in your directories."""


@cli.command()
def init() -> None:
    """Create the configuration file, metadata database, and search index."""
    manager = ConfigManager()
    try:
        manager.ensure_exists()
    except OSError as exc:
        raise click.ClickException(f"Error creating config directory: {exc}") from exc

    with _open_runtime() as runtime:
        try:
            created = runtime.sink.ensure_index()
        except SmartdirError as exc:
            _handle_cli_error(f"Error initializing search index: {exc}", code="sink_error", original=exc)
            return
        console.print(f"Configuration: {manager.config_path}")
        if created:
            console.print("Created search index.")
        console.print("[green]Smartdir initialized successfully[/green]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--workers", type=click.IntRange(min=0), help="Override the worker thread count.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def categorize(path: Path, workers: int | None, quiet: bool) -> None:
    """Fingerprint, classify, and index every file under PATH."""
    root = path.expanduser().resolve()
    with _open_runtime() as runtime:
        config = runtime.config
        quiet = quiet or config.cli.quiet_default
        pipeline = ClassificationPipeline(
            build_processor(config, runtime.sink),
            workers=config.processing.workers if workers is None else workers,
            queue_size=config.processing.queue_size,
            error_buffer=config.processing.error_buffer,
        )
        try:
            result = pipeline.run(root)
        except SmartdirError as exc:
            _handle_cli_error(f"Categorization error: {exc}", code="sink_error", original=exc)
            return

        for error in result.errors:
            _emit_message(f"[red]- {error}[/red]", quiet=quiet, error=True)
        _emit_message(
            _format_summary_line(
                "Categorize", root, {"processed": result.processed, "failed": result.failed}
            ),
            quiet=quiet,
        )
        if result.error is not None:
            _handle_cli_error(f"Categorization error: {result.error}", code="categorize_error")
            return
        _emit_message("[green]Files categorized successfully[/green]", quiet=quiet)


def _emit_monitor_batch(batch: MonitorBatch, *, quiet: bool) -> None:
    for path, message in batch.failed.items():
        _emit_message(f"[red]Error processing {path}: {message}[/red]", quiet=quiet, error=True)
    _emit_message(
        f"Processed {len(batch.processed)} changed files ({len(batch.failed)} failed).",
        quiet=quiet,
    )


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--tick", type=click.FloatRange(min=0, min_open=True), help="Override the settle interval in seconds.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def monitor(path: Path, tick: float | None, quiet: bool) -> None:
    """Watch PATH and reprocess files after their changes settle."""
    root = path.expanduser().resolve()
    with _open_runtime() as runtime:
        config = runtime.config
        quiet = quiet or config.cli.quiet_default
        try:
            runtime.sink.ensure_index()
        except SmartdirError as exc:
            _handle_cli_error(f"Monitoring error: {exc}", code="sink_error", original=exc)
            return

        service = ChangeMonitor(
            build_processor(config, runtime.sink),
            root,
            tick_seconds=config.monitor.tick_seconds if tick is None else tick,
            on_batch=lambda batch: _emit_monitor_batch(batch, quiet=quiet),
        )
        _emit_message(f"Monitoring {root} for changes. Press Ctrl+C to stop.", quiet=quiet)
        try:
            service.run()
        except KeyboardInterrupt:
            service.stop()
            _emit_message("[yellow]Monitoring stopped by user request.[/yellow]", quiet=quiet)
        except (RuntimeError, SmartdirError) as exc:
            _handle_cli_error(f"Monitoring error: {exc}", code="monitor_error", original=exc)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def tag(path: Path, quiet: bool) -> None:
    """Generate tags for stored files under PATH that have none yet."""
    root = path.expanduser().resolve()
    with _open_runtime() as runtime:
        quiet = quiet or runtime.config.cli.quiet_default
        try:
            result = tag_files(runtime.sink, build_engine(runtime.config), str(root))
        except SmartdirError as exc:
            _handle_cli_error(f"Error fetching files: {exc}", code="sink_error", original=exc)
            return

        if not result.tagged and not result.failed and not result.skipped:
            _emit_message("No files found. Run 'categorize' first.", quiet=quiet)
            return
        for file_path, tags in result.tagged.items():
            _emit_message(f"- {Path(file_path).name} → {', '.join(tags)}", quiet=quiet)
        for file_path, message in result.failed.items():
            _emit_message(f"[red]- {file_path}: {message}[/red]", quiet=quiet, error=True)
        _emit_message(
            _format_summary_line(
                "Tag",
                root,
                {"tagged": len(result.tagged), "skipped": result.skipped, "failed": len(result.failed)},
            ),
            quiet=quiet,
        )


@cli.command()
@click.argument("query")
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True, help="Maximum results.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON results.")
def search(query: str, limit: int, json_output: bool) -> None:
    """Search indexed files by path, category, or tags."""
    with _open_runtime() as runtime:
        try:
            hits = runtime.sink.search(query, limit=limit)
        except SmartdirError as exc:
            _handle_cli_error(f"Search failed: {exc}", code="search_error", json_output=json_output, original=exc)
            return

        if json_output:
            console.print_json(data={"query": query, "results": [hit.model_dump() for hit in hits]})
            return
        if not hits:
            console.print("No results found")
            return
        table = Table(title=f"Search results for {query!r}")
        table.add_column("Path", overflow="fold")
        table.add_column("Category")
        table.add_column("Tags")
        table.add_column("ID", justify="right")
        for hit in hits:
            table.add_row(hit.path, hit.category, hit.tags, str(hit.id))
        console.print(table)


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit JSON statistics.")
def stats(json_output: bool) -> None:
    """Show the number of stored files per category."""
    with _open_runtime() as runtime:
        try:
            counts = runtime.sink.store.category_counts()
        except SmartdirError as exc:
            _handle_cli_error(
                f"Error fetching statistics: {exc}", code="sink_error", json_output=json_output, original=exc
            )
            return

        total = sum(counts.values())
        if json_output:
            console.print_json(data={"categories": counts, "total": total})
            return
        table = Table(title="File Statistics")
        table.add_column("Category")
        table.add_column("Files", justify="right")
        for category, count in counts.items():
            table.add_row(category, str(count))
        console.print(table)
        console.print(f"Total files: {total}")


@cli.command()
def reindex() -> None:
    """Rebuild the search index from the metadata store."""
    with _open_runtime() as runtime:
        try:
            runtime.sink.ensure_index()
            count = runtime.sink.reindex()
        except SmartdirError as exc:
            _handle_cli_error(f"Failed to update index: {exc}", code="sink_error", original=exc)
            return
        if count == 0:
            console.print("No files found in database")
            return
        console.print(f"[green]Search index rebuilt successfully ({count} files).[/green]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--dry-run", is_flag=True, help="Only show what would be removed.")
@click.option("--confirm", is_flag=True, help="Actually remove duplicate files.")
def deduplicate(path: Path, dry_run: bool, confirm: bool) -> None:
    """Find files under PATH with identical content and optionally remove extras."""
    root = path.expanduser().resolve()
    with _open_runtime() as runtime:
        sink = runtime.sink
        try:
            report = find_duplicates(sink, str(root))
        except SmartdirError as exc:
            _handle_cli_error(f"Error finding duplicates: {exc}", code="sink_error", original=exc)
            return

        console.print(
            f"Found {report.duplicate_files} duplicate files "
            f"({_format_size(report.reclaimable_bytes)})"
        )
        if not report.groups:
            return

        if dry_run or not confirm:
            preview = runtime.config.cli.preview_groups
            for group in report.groups[:preview]:
                console.print(f"\nDuplicate set with hash {group.hash[:8]}:")
                console.print(f"  Keep: {group.keep}")
                for extra in group.extras:
                    console.print(f"  Remove: {extra}")
            if len(report.groups) > preview:
                console.print(f"\n... and {len(report.groups) - preview} more duplicate sets")
            console.print("Run with --confirm to remove duplicates")
            return

        removed = remove_duplicates(sink, report.groups)
        console.print(f"[green]Removed {removed} duplicate files[/green]")


@cli.command()
@click.option("--limit", type=click.IntRange(min=1), default=10, show_default=True, help="Maximum recommendations.")
@click.option("--days", type=click.IntRange(min=1), default=30, show_default=True, help="Consider accesses in the last N days.")
def recommend(limit: int, days: int) -> None:
    """Suggest frequently searched files and files related to them."""
    since = datetime.now(timezone.utc) - timedelta(days=days)
    with _open_runtime() as runtime:
        store = runtime.sink.store
        try:
            frequent = store.frequent_accesses(since=since, limit=limit)
            related = store.similar_files(limit=min(limit, 5)) if frequent else []
        except SmartdirError as exc:
            _handle_cli_error(f"Error fetching recommendations: {exc}", code="sink_error", original=exc)
            return

        if not frequent:
            console.print("No file access history available yet.")
            console.print("Try using the 'search' command more to build up access statistics.")
            return

        console.print("Frequently accessed files:")
        for position, access in enumerate(frequent, start=1):
            category = access.category or "unknown"
            console.print(
                f"{position}. {Path(access.path).name} ({category}, accessed {access.access_count} times)"
            )
        if related:
            console.print("\nRelated files you might be interested in:")
            for position, record in enumerate(related, start=1):
                console.print(f"{position}. {Path(record.path).name} ({record.category.value})")


@cli.group()
def config() -> None:
    """Manage smartdir configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        config = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(config.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        key: Dotted path such as ``monitor.tick_seconds``.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'monitor.tick_seconds'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=SmartdirConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    # The timestamp line always changes; only report real edits.
    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    ]
    changed = [
        line
        for line in diff
        if line[:1] in "+-" and not line.startswith(("+++", "---")) and "Last updated" not in line
    ]
    if not changed:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Entrypoint used by the console script."""
    cli()


__all__ = ["cli", "main"]

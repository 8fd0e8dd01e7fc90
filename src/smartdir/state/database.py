"""SQLAlchemy-backed metadata store for file records and access history."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from smartdir.errors import SinkError

from .models import FileAccess, FileRecord, join_tags

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return _utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    """Declarative base for smartdir tables."""


class FileRow(Base):
    __tablename__ = "files"
    # Index documents are keyed by id, so ids must never be reused.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)
    tags: Mapped[str] = mapped_column(String, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def to_record(self) -> FileRecord:
        return FileRecord(
            id=self.id,
            path=self.path,
            hash=self.hash,
            size=self.size,
            mime_type=self.mime_type,
            category=self.category,
            tags=self.tags,
            created_at=_aware(self.created_at),
            updated_at=_aware(self.updated_at),
        )


class FileAccessRow(Base):
    __tablename__ = "file_accesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


def _enable_wal(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


class MetadataStore:
    """Persist file records; safe to share across worker threads.

    Every public method either runs in its own unit of work or joins the
    ``session`` supplied by the caller, which then owns commit and rollback.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def open(cls, path: str | Path, *, busy_timeout: float = 30.0) -> "MetadataStore":
        """Open (and create if needed) the SQLite database at ``path``.

        Args:
            path: Database file, or ``":memory:"``.
            busy_timeout: Seconds a writer waits for a competing transaction.

        Returns:
            MetadataStore: Store with its schema created.
        """
        options: dict = {}
        if str(path) == ":memory:":
            url = "sqlite://"
            options["poolclass"] = StaticPool
        else:
            db_path = Path(path).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite:///{db_path}"
        engine = create_engine(
            url,
            connect_args={"timeout": busy_timeout, "check_same_thread": False},
            **options,
        )
        if url != "sqlite://":
            event.listen(engine, "connect", _enable_wal)
        store = cls(engine)
        store.initialize()
        return store

    @property
    def engine(self) -> Engine:
        return self._engine

    def initialize(self) -> None:
        """Create tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        self._engine.dispose()

    def new_session(self) -> Session:
        """Return a fresh session; the caller owns its lifecycle."""
        return self._sessions()

    @contextmanager
    def unit_of_work(self, session: Session | None = None) -> Iterator[Session]:
        """Yield a session, committing on success and rolling back on failure.

        When ``session`` is supplied it is yielded untouched so the caller's
        transaction stays in charge.
        """
        if session is not None:
            yield session
            return
        own = self._sessions()
        try:
            yield own
            own.commit()
        except SQLAlchemyError as exc:
            own.rollback()
            raise SinkError(f"Metadata store failure: {exc}") from exc
        except BaseException:
            own.rollback()
            raise
        finally:
            own.close()

    # ------------------------------------------------------------------ #
    # File records                                                       #
    # ------------------------------------------------------------------ #

    def upsert_file(self, record: FileRecord, *, session: Session | None = None) -> FileRecord:
        """Insert or update the record keyed by ``record.path``.

        Returns:
            FileRecord: Stored record including its numeric id.
        """
        with self.unit_of_work(session) as active:
            row = active.scalars(select(FileRow).where(FileRow.path == record.path)).first()
            now = _utcnow()
            if row is None:
                row = FileRow(path=record.path, created_at=now)
                active.add(row)
            row.hash = record.hash
            row.size = record.size
            row.mime_type = record.mime_type
            row.category = record.category.value
            row.tags = join_tags(record.tags)
            row.updated_at = now
            active.flush()
            return row.to_record()

    def get_by_path(self, path: str, *, session: Session | None = None) -> Optional[FileRecord]:
        with self.unit_of_work(session) as active:
            row = active.scalars(select(FileRow).where(FileRow.path == path)).first()
            return row.to_record() if row is not None else None

    def delete_file(self, path: str, *, session: Session | None = None) -> Optional[FileRecord]:
        """Delete the record for ``path`` and return it, or ``None`` if absent."""
        with self.unit_of_work(session) as active:
            row = active.scalars(select(FileRow).where(FileRow.path == path)).first()
            if row is None:
                return None
            record = row.to_record()
            active.delete(row)
            active.flush()
            return record

    def query_by_path_prefix(self, prefix: str) -> List[FileRecord]:
        """Return records whose path starts with ``prefix`` in id order."""
        with self.unit_of_work() as active:
            rows = active.scalars(
                select(FileRow)
                .where(FileRow.path.startswith(prefix, autoescape=True))
                .order_by(FileRow.id)
            )
            return [row.to_record() for row in rows]

    def all_files(self) -> List[FileRecord]:
        return self.query_by_path_prefix("")

    def category_counts(self) -> Dict[str, int]:
        with self.unit_of_work() as active:
            rows = active.execute(
                select(FileRow.category, func.count(FileRow.id))
                .group_by(FileRow.category)
                .order_by(FileRow.category)
            )
            return {category: count for category, count in rows}

    # ------------------------------------------------------------------ #
    # Access history                                                     #
    # ------------------------------------------------------------------ #

    def record_access(self, path: str) -> None:
        """Increment the access counter for ``path``."""
        with self.unit_of_work() as active:
            row = active.scalars(select(FileAccessRow).where(FileAccessRow.path == path)).first()
            if row is None:
                row = FileAccessRow(path=path, access_count=0)
                active.add(row)
            row.access_count += 1
            row.updated_at = _utcnow()

    def frequent_accesses(self, *, since: datetime, limit: int = 10) -> List[FileAccess]:
        """Return paths accessed after ``since`` ordered by access count."""
        with self.unit_of_work() as active:
            rows = active.execute(
                select(FileAccessRow, FileRow.category)
                .join(FileRow, FileRow.path == FileAccessRow.path, isouter=True)
                .where(FileAccessRow.updated_at > since)
                .order_by(FileAccessRow.access_count.desc())
                .limit(limit)
            )
            return [
                FileAccess(
                    path=access.path,
                    access_count=access.access_count,
                    category=category,
                    updated_at=_aware(access.updated_at),
                )
                for access, category in rows
            ]

    def similar_files(self, *, recent: int = 5, limit: int = 5) -> List[FileRecord]:
        """Return files sharing tags (or, without tags, categories) with recent accesses."""
        with self.unit_of_work() as active:
            recent_rows = active.scalars(
                select(FileRow)
                .join(FileAccessRow, FileRow.path == FileAccessRow.path)
                .order_by(FileAccessRow.updated_at.desc())
                .limit(recent)
            ).all()
            if not recent_rows:
                return []

            seen_paths = {row.path for row in recent_rows}
            tags = {tag for row in recent_rows for tag in row.to_record().tags}
            if tags:
                condition = or_(*(FileRow.tags.contains(tag, autoescape=True) for tag in sorted(tags)))
            else:
                condition = FileRow.category.in_({row.category for row in recent_rows})

            rows = active.scalars(
                select(FileRow)
                .where(condition, FileRow.path.not_in(seen_paths))
                .order_by(FileRow.id)
                .limit(limit)
            )
            return [row.to_record() for row in rows]


__all__ = ["Base", "FileRow", "FileAccessRow", "MetadataStore"]

"""Database engine and bulk writer.

This module provides:
- Database: Connection manager with WAL mode for concurrent access
- BulkWriter: Bulk inserts and upserts through Core SQL
- Session utilities for ORM and serializable transactions
- Retry logic for SQLite busy timeout handling

The hybrid pattern:
- Use ORM sessions for low-volume operations (single observations, summaries)
- Use BulkWriter for high-volume operations (embedding upserts, imports)
- Use fetch_all for read-only search queries
"""

from __future__ import annotations

import time
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event, text
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from memplane.config.models import DatabaseConfig

logger = structlog.get_logger(__name__)

# Retry configuration for SQLite busy handling
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.1  # 100ms base
DEFAULT_RETRY_MAX_DELAY = 2.0  # 2s max
DEFAULT_BUSY_TIMEOUT_MS = 30000


def _is_database_locked_error(error: Exception) -> bool:
    """Check if error is a SQLite database locked error."""
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


class Database:
    """SQLite connection manager with WAL mode for concurrent access.

    Includes retry logic with exponential backoff for handling
    SQLite busy timeouts during concurrent writes.
    """

    def __init__(
        self,
        db_path: Path,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._busy_timeout_ms = busy_timeout_ms
        self.engine = self._create_engine()

    @classmethod
    def from_config(cls, db_path: Path, config: DatabaseConfig) -> Database:
        return cls(
            db_path,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay_sec,
            busy_timeout_ms=config.busy_timeout_ms,
        )

    def _create_engine(self) -> Engine:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        busy_timeout_ms = self._busy_timeout_ms

        def _on_connect(dbapi_conn: Any, connection_record: Any) -> None:
            _configure_pragmas(dbapi_conn, connection_record, busy_timeout_ms=busy_timeout_ms)

        event.listen(engine, "connect", _on_connect)
        return engine

    def create_all(self) -> None:
        """Create all tables from SQLModel metadata."""
        SQLModel.metadata.create_all(self.engine)

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session for low-volume operations."""
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def immediate_transaction(
        self,
        max_retries: int | None = None,
    ) -> Generator[Session, None, None]:
        """
        Session with BEGIN IMMEDIATE for serializable writes.

        Only acquiring the RESERVED lock is retried (exponential backoff on
        SQLite busy); errors raised by the body roll back and propagate.

        Args:
            max_retries: Override default max retries (default: 3)
        """
        session = self._begin_immediate(
            max_retries if max_retries is not None else self._max_retries
        )
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _begin_immediate(self, retries: int) -> Session:
        attempt = 0
        while True:
            session = Session(self.engine)
            try:
                session.execute(text("BEGIN IMMEDIATE"))
                return session
            except OperationalError as e:
                session.close()
                if not _is_database_locked_error(e) or attempt >= retries:
                    raise
            delay = min(self._retry_base_delay * (2**attempt), self._retry_max_delay)
            attempt += 1
            logger.warning(
                "sqlite_busy_retry",
                attempt=attempt,
                max_retries=retries,
                delay_sec=delay,
            )
            time.sleep(delay)

    @contextmanager
    def bulk_writer(self) -> Generator[BulkWriter, None, None]:
        """
        Bulk writer for high-volume inserts.

        Auto-commits on successful exit, rolls back on exception.
        """
        writer = BulkWriter(self.engine)
        try:
            yield writer
            writer.commit()
        except Exception:
            writer.rollback()
            raise
        finally:
            writer.close()

    def fetch_all(self, sql: str, params: dict[str, Any] | None = None) -> Sequence[RowMapping]:
        """Run a read-only query and return its rows as mappings."""
        with self.engine.connect() as conn:
            return conn.execute(text(sql), params or {}).mappings().all()

    def execute_raw(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Execute a raw write statement, returning rows affected."""
        with self.engine.begin() as conn:
            result = conn.execute(text(sql), params or {})
            return int(result.rowcount)


def _configure_pragmas(
    dbapi_conn: Any,
    _connection_record: Any,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> None:
    """Configure SQLite for concurrent access and performance."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA cache_size=-64000")  # 64MB cache
    cursor.close()


class BulkWriter:
    """High-performance bulk insert using Core SQL, bypassing ORM overhead."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.conn = engine.connect()
        self.transaction = self.conn.begin()

    def insert_many(self, model_class: type[SQLModel], records: list[dict[str, Any]]) -> int:
        """Bulk insert records into table, returning count inserted."""
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]
        self.conn.execute(table.insert(), records)
        return len(records)

    def upsert_many(
        self,
        model_class: type[SQLModel],
        records: list[dict[str, Any]],
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> int:
        """Bulk upsert (insert or update on conflict), returning count processed."""
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]

        conflict_cols = ", ".join(conflict_columns)
        update_sets = ", ".join(f"{col} = excluded.{col}" for col in update_columns)

        columns = list(records[0].keys())
        col_names = ", ".join(columns)
        placeholders = ", ".join(f":{col}" for col in columns)

        sql = f"""
            INSERT INTO {table.name} ({col_names})
            VALUES ({placeholders})
            ON CONFLICT ({conflict_cols})
            DO UPDATE SET {update_sets}
        """

        self.conn.execute(text(sql), records)
        return len(records)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.transaction.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.transaction.rollback()

    def close(self) -> None:
        """Close the connection."""
        self.conn.close()

"""Observation and summary accessors.

Thin persistence layer the retrieval engine reads from. Writes here are
limited to what the engine needs to exist around it: inserting entries,
access tracking, and staleness flags.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from memplane.config.constants import RECENT_ACCESS_WINDOW_HOURS, STALE_SCAN_MAX
from memplane.core.errors import StorageError
from memplane.store.models import Observation, Summary

if TYPE_CHECKING:
    from memplane.search.models import RetrievalFilters
    from memplane.store.database import Database

log = structlog.get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class DecayStats:
    """Per-project memory health counters."""

    total: int
    stale: int
    never_accessed: int
    recently_accessed: int
    access_freshness: float = 0.0  # mean access-recency score, 0..1


class ObservationStore:
    """Read/write accessors for observations and summaries."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_observation(self, observation: Observation) -> int:
        """Insert one observation, returning its id."""
        try:
            with self._db.immediate_transaction() as session:
                session.add(observation)
                session.flush()
                assert observation.id is not None
                return observation.id
        except SQLAlchemyError as e:
            raise StorageError.write_failed("add_observation", str(e)) from e

    def add_observations(self, records: list[dict[str, Any]]) -> int:
        """Bulk insert observation dicts. Returns count inserted."""
        try:
            with self._db.bulk_writer() as writer:
                return writer.insert_many(Observation, records)
        except SQLAlchemyError as e:
            raise StorageError.write_failed("add_observations", str(e)) from e

    def add_summary(self, summary: Summary) -> int:
        """Insert one session summary, returning its id."""
        try:
            with self._db.immediate_transaction() as session:
                session.add(summary)
                session.flush()
                assert summary.id is not None
                return summary.id
        except SQLAlchemyError as e:
            raise StorageError.write_failed("add_summary", str(e)) from e

    def mark_stale(self, ids: Iterable[int], stale: bool = True) -> int:
        """Set or clear the staleness flag. Returns rows updated."""
        id_list = [i for i in ids if isinstance(i, int) and i > 0]
        if not id_list:
            return 0
        stmt = update(Observation).where(col(Observation.id).in_(id_list)).values(is_stale=stale)
        try:
            with self._db.immediate_transaction() as session:
                result = session.execute(stmt)
                return int(result.rowcount)  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise StorageError.write_failed("mark_stale", str(e)) from e

    def touch_accessed(self, ids: Iterable[int], at_ms: int | None = None) -> int:
        """Record an access for the given observations."""
        id_list = list(ids)
        if not id_list:
            return 0
        stmt = (
            update(Observation)
            .where(col(Observation.id).in_(id_list))
            .values(last_accessed_epoch=at_ms if at_ms is not None else now_ms())
        )
        try:
            with self._db.immediate_transaction() as session:
                result = session.execute(stmt)
                return int(result.rowcount)  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise StorageError.write_failed("touch_accessed", str(e)) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_observation(self, observation_id: int) -> Observation:
        with self._db.session() as session:
            obs = session.get(Observation, observation_id)
        if obs is None:
            raise StorageError.not_found("observation", observation_id)
        return obs

    def get_observations(self, ids: Iterable[int]) -> dict[int, Observation]:
        id_list = list(ids)
        if not id_list:
            return {}
        with self._db.session() as session:
            rows = session.exec(select(Observation).where(col(Observation.id).in_(id_list))).all()
        return {o.id: o for o in rows if o.id is not None}

    def recent_observations(
        self,
        project: str | None,
        limit: int,
        filters: RetrievalFilters | None = None,
    ) -> Sequence[Observation]:
        """Newest observations first, optionally scoped and filtered."""
        stmt = select(Observation)
        if project:
            stmt = stmt.where(Observation.project == project)
        if filters is not None:
            if filters.type:
                stmt = stmt.where(Observation.type == filters.type)
            if filters.date_start is not None:
                stmt = stmt.where(Observation.created_at_epoch >= filters.date_start)
            if filters.date_end is not None:
                stmt = stmt.where(Observation.created_at_epoch <= filters.date_end)
        stmt = stmt.order_by(
            col(Observation.created_at_epoch).desc(), col(Observation.id).desc()
        ).limit(limit)
        with self._db.session() as session:
            return session.exec(stmt).all()

    def recent_summaries(self, project: str, limit: int = 5) -> Sequence[Summary]:
        stmt = (
            select(Summary)
            .where(Summary.project == project)
            .order_by(col(Summary.created_at_epoch).desc(), col(Summary.id).desc())
            .limit(limit)
        )
        with self._db.session() as session:
            return session.exec(stmt).all()

    def count(self, project: str | None = None) -> int:
        stmt = select(func.count()).select_from(Observation)
        if project:
            stmt = stmt.where(Observation.project == project)
        with self._db.session() as session:
            return int(session.exec(stmt).one())

    # ------------------------------------------------------------------
    # Staleness and decay
    # ------------------------------------------------------------------

    def detect_stale(self, project: str) -> list[int]:
        """Ids of observations whose modified files changed after creation.

        Scans the newest observations with a ``files_modified`` list. Files
        that no longer exist or cannot be stat'ed are skipped.
        """
        stmt = (
            select(Observation)
            .where(Observation.project == project)
            .where(col(Observation.files_modified).is_not(None))
            .where(Observation.files_modified != "")
            .order_by(col(Observation.created_at_epoch).desc())
            .limit(STALE_SCAN_MAX)
        )
        with self._db.session() as session:
            rows = session.exec(stmt).all()

        stale: list[int] = []
        for obs in rows:
            files = [f.strip() for f in (obs.files_modified or "").split(",") if f.strip()]
            for file_path in files:
                try:
                    mtime_ms = Path(file_path).stat().st_mtime * 1000
                except OSError:
                    continue
                if mtime_ms > obs.created_at_epoch:
                    assert obs.id is not None
                    stale.append(obs.id)
                    break

        log.debug("store.detect_stale", project=project, scanned=len(rows), stale=len(stale))
        return stale

    def decay_stats(
        self,
        project: str,
        at_ms: int | None = None,
        window_hours: float = RECENT_ACCESS_WINDOW_HOURS,
    ) -> DecayStats:
        """Health counters; "recently accessed" means within ``window_hours``."""
        now = at_ms if at_ms is not None else now_ms()
        window_start = now - int(window_hours * 3600 * 1000)
        rows = self._db.fetch_all(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN is_stale THEN 1 ELSE 0 END), 0) AS stale,
                COALESCE(SUM(CASE WHEN last_accessed_epoch IS NULL THEN 1 ELSE 0 END), 0)
                    AS never_accessed,
                COALESCE(SUM(CASE WHEN last_accessed_epoch >= :window_start THEN 1 ELSE 0 END), 0)
                    AS recently_accessed
            FROM observations
            WHERE project = :project
            """,
            {"project": project, "window_start": window_start},
        )
        row = rows[0]
        return DecayStats(
            total=int(row["total"]),
            stale=int(row["stale"]),
            never_accessed=int(row["never_accessed"]),
            recently_accessed=int(row["recently_accessed"]),
        )

    def access_epochs(self, project: str) -> list[int | None]:
        """Last-access epoch of every observation in ``project`` (None if never read)."""
        stmt = select(Observation.last_accessed_epoch).where(Observation.project == project)
        with self._db.session() as session:
            return list(session.exec(stmt).all())

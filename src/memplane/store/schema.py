"""Full-text table, sync triggers and composite indexes.

These complement the tables defined in models.py. The FTS5 table is an
external-content table over ``observations``; triggers keep it in sync on
insert, update and delete so callers never write to it directly.

Call create_schema() once per database; every statement is idempotent.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from memplane.store.database import Database

FTS_TABLE = "observations_fts"
FTS_COLUMNS = ("title", "text", "narrative", "concepts")

_FTS_COLUMN_LIST = ", ".join(FTS_COLUMNS)
_NEW_VALUES = ", ".join(f"new.{c}" for c in FTS_COLUMNS)
_OLD_VALUES = ", ".join(f"old.{c}" for c in FTS_COLUMNS)

FTS_STATEMENTS = [
    f"""CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
        {_FTS_COLUMN_LIST},
        content='observations',
        content_rowid='id'
    )""",
    f"""CREATE TRIGGER IF NOT EXISTS observations_ai AFTER INSERT ON observations BEGIN
        INSERT INTO {FTS_TABLE}(rowid, {_FTS_COLUMN_LIST})
        VALUES (new.id, {_NEW_VALUES});
    END""",
    f"""CREATE TRIGGER IF NOT EXISTS observations_ad AFTER DELETE ON observations BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, {_FTS_COLUMN_LIST})
        VALUES ('delete', old.id, {_OLD_VALUES});
    END""",
    f"""CREATE TRIGGER IF NOT EXISTS observations_au AFTER UPDATE ON observations BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, {_FTS_COLUMN_LIST})
        VALUES ('delete', old.id, {_OLD_VALUES});
        INSERT INTO {FTS_TABLE}(rowid, {_FTS_COLUMN_LIST})
        VALUES (new.id, {_NEW_VALUES});
    END""",
]

ADDITIONAL_INDEXES = [
    # Candidate pre-filter: project scope ordered by recency
    "CREATE INDEX IF NOT EXISTS idx_observations_project_epoch "
    "ON observations(project, created_at_epoch DESC)",
    "CREATE INDEX IF NOT EXISTS idx_observations_project_type "
    "ON observations(project, type)",
    "CREATE INDEX IF NOT EXISTS idx_summaries_project_epoch "
    "ON summaries(project, created_at_epoch DESC)",
]


def create_schema(db: Database) -> None:
    """
    Create tables, the full-text table with its triggers, and extra indexes.

    Safe to call on an existing database.
    """
    db.create_all()
    with db.engine.begin() as conn:
        for sql in (*FTS_STATEMENTS, *ADDITIONAL_INDEXES):
            conn.execute(text(sql))


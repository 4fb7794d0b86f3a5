"""SQLModel definitions for the memory store.

Single source of truth for table schemas:
- observations: what an agent did or learned, scoped by project
- summaries: per-session summaries, injected ahead of ranked observations
- observation_embeddings: at most one vector per observation

The full-text table and its triggers cannot be expressed in SQLModel; see
schema.py.
"""

from sqlalchemy import Column, ForeignKey, Integer, LargeBinary
from sqlmodel import Field, SQLModel


class Observation(SQLModel, table=True):
    """A timestamped memory entry."""

    __tablename__ = "observations"

    id: int | None = Field(default=None, primary_key=True)
    memory_session_id: str | None = Field(default=None, index=True)
    project: str = Field(index=True)
    type: str = Field(index=True)
    title: str
    subtitle: str | None = None
    text: str | None = None
    narrative: str | None = None
    facts: str | None = None
    concepts: str | None = None
    files_read: str | None = None
    files_modified: str | None = None  # comma-separated paths
    prompt_number: int | None = None
    created_at: str
    created_at_epoch: int = Field(index=True)  # epoch millis, sort key
    last_accessed_epoch: int | None = None
    is_stale: bool = Field(default=False)


class Summary(SQLModel, table=True):
    """Session summary."""

    __tablename__ = "summaries"

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    project: str = Field(index=True)
    request: str | None = None
    investigated: str | None = None
    learned: str | None = None
    completed: str | None = None
    next_steps: str | None = None
    notes: str | None = None
    created_at: str
    created_at_epoch: int = Field(index=True)


class ObservationEmbedding(SQLModel, table=True):
    """Dense vector for one observation. Upserted, never versioned."""

    __tablename__ = "observation_embeddings"

    observation_id: int | None = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("observations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    embedding: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    model: str
    dimensions: int
    created_at: str

"""Persistence layer: SQLite database, tables, full-text schema, accessors."""

from memplane.store.database import BulkWriter, Database
from memplane.store.models import Observation, ObservationEmbedding, Summary
from memplane.store.observations import DecayStats, ObservationStore
from memplane.store.schema import create_schema

__all__ = [
    "BulkWriter",
    "Database",
    "DecayStats",
    "Observation",
    "ObservationEmbedding",
    "ObservationStore",
    "Summary",
    "create_schema",
]

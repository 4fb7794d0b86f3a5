"""SQL fragments shared by the candidate sources.

Every source selects the same observation columns (aliased ``o``) and
applies the same project/type/date narrowing, so rows from different
sources merge into identical ``ObservationRow`` values.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from memplane.search.models import ObservationRow, RetrievalFilters

if TYPE_CHECKING:
    from memplane.store.models import Observation

OBSERVATION_COLUMNS = (
    "o.id, o.project, o.type, o.title, o.text, o.narrative, "
    "o.created_at, o.created_at_epoch, o.is_stale"
)


def filter_clauses(
    project: str | None,
    filters: RetrievalFilters | None,
    params: dict[str, Any],
) -> list[str]:
    """WHERE conditions for project scope and filters; binds into ``params``."""
    clauses: list[str] = []
    if project:
        clauses.append("o.project = :project")
        params["project"] = project
    if filters is not None:
        if filters.type:
            clauses.append("o.type = :type")
            params["type"] = filters.type
        if filters.date_start is not None:
            clauses.append("o.created_at_epoch >= :date_start")
            params["date_start"] = filters.date_start
        if filters.date_end is not None:
            clauses.append("o.created_at_epoch <= :date_end")
            params["date_end"] = filters.date_end
    return clauses


def row_to_observation(row: Mapping[str, Any]) -> ObservationRow:
    return ObservationRow(
        id=int(row["id"]),
        project=row["project"],
        type=row["type"],
        title=row["title"],
        text=row["text"],
        narrative=row["narrative"],
        created_at=row["created_at"],
        created_at_epoch=int(row["created_at_epoch"]),
        is_stale=bool(row["is_stale"]),
    )


def observation_to_row(obs: Observation) -> ObservationRow:
    assert obs.id is not None
    return ObservationRow(
        id=obs.id,
        project=obs.project,
        type=obs.type,
        title=obs.title,
        text=obs.text,
        narrative=obs.narrative,
        created_at=obs.created_at,
        created_at_epoch=obs.created_at_epoch,
        is_stale=bool(obs.is_stale),
    )

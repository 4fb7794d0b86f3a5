"""Search domain models: signals, weights, candidates, results.

No I/O, no database access, no async.  Pure data.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memplane.config.models import WeightsConfig


@dataclass(frozen=True, slots=True)
class Signals:
    """The four base ranking signals of one candidate."""

    semantic: float = 0.0  # [0, 1]
    lexical: float = 0.0  # [0, 1]
    recency: float = 0.0  # [0, 1]
    project_match: float = 0.0  # {0, 1}


@dataclass(frozen=True, slots=True)
class WeightVector:
    """Named, immutable signal weighting. Weights are non-negative and sum to 1.0."""

    name: str
    semantic: float
    lexical: float
    recency: float
    project_match: float

    def __post_init__(self) -> None:
        weights = (self.semantic, self.lexical, self.recency, self.project_match)
        if any(w < 0 for w in weights):
            raise ValueError(f"Weight vector '{self.name}' has a negative weight")
        if not math.isclose(sum(weights), 1.0, abs_tol=1e-6):
            raise ValueError(f"Weight vector '{self.name}' sums to {sum(weights)}, expected 1.0")

    @property
    def total(self) -> float:
        return self.semantic + self.lexical + self.recency + self.project_match

    @classmethod
    def from_config(cls, name: str, config: WeightsConfig) -> WeightVector:
        return cls(
            name=name,
            semantic=config.semantic,
            lexical=config.lexical,
            recency=config.recency,
            project_match=config.project_match,
        )


SEARCH_WEIGHTS = WeightVector("search", semantic=0.4, lexical=0.3, recency=0.2, project_match=0.1)
"""Query present: semantic and lexical dominate."""

CONTEXT_WEIGHTS = WeightVector("context", semantic=0.0, lexical=0.0, recency=0.7, project_match=0.3)
"""No query: recency and project match dominate."""


@dataclass(frozen=True, slots=True)
class RetrievalFilters:
    """Optional narrowing applied to every candidate source."""

    type: str | None = None
    date_start: int | None = None  # epoch millis, inclusive
    date_end: int | None = None  # epoch millis, inclusive


@dataclass(frozen=True, slots=True)
class ObservationRow:
    """Observation fields the ranking pipeline needs, read from storage."""

    id: int
    project: str
    type: str
    title: str
    text: str | None
    narrative: str | None
    created_at: str
    created_at_epoch: int
    is_stale: bool = False

    @property
    def content(self) -> str:
        return self.text or self.narrative or ""


@dataclass(frozen=True, slots=True)
class LexicalHit:
    """One keyword match. ``rank`` is None for substring-scan matches."""

    row: ObservationRow
    rank: float | None


@dataclass
class LexicalResults:
    """Keyword search output."""

    hits: list[LexicalHit] = field(default_factory=list)
    fallback_reason: str | None = None  # Set when the substring scan was used


@dataclass(frozen=True, slots=True)
class VectorHit:
    """One semantic match above threshold."""

    row: ObservationRow
    similarity: float


@dataclass(frozen=True, slots=True)
class ScoredItem:
    """A ranked candidate. Created per retrieval call, never persisted."""

    id: int
    title: str
    content: str
    type: str
    project: str
    created_at: str
    created_at_epoch: int
    signals: Signals
    score: float
    is_stale: bool = False

    def sort_key(self) -> tuple[float, int, int]:
        """Ascending sort on this key yields score desc, epoch desc, id desc."""
        return (-self.score, -self.created_at_epoch, -self.id)


@dataclass(frozen=True, slots=True)
class ContextResult:
    """Assembled context block plus usage stats."""

    text: str
    items_included: int
    tokens_used: int
    tokens_budget: int

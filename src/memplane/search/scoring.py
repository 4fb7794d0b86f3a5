"""Scoring: signal functions, composite score, and the candidate scorer.

Single Responsibility: Turning raw candidate facts into a ranking score.
No I/O, no database access, no async.  Pure functions on candidates.
"""

from __future__ import annotations

import math
import time
from collections.abc import Sequence
from dataclasses import dataclass

from memplane.config.constants import CHARS_PER_TOKEN, KNOWLEDGE_TYPE_BOOSTS, STALE_PENALTY
from memplane.search.models import (
    CONTEXT_WEIGHTS,
    SEARCH_WEIGHTS,
    ObservationRow,
    ScoredItem,
    Signals,
    WeightVector,
)

_MS_PER_HOUR = 3_600_000

DEFAULT_RECENCY_HALF_LIFE_HOURS = 168.0
DEFAULT_ACCESS_HALF_LIFE_HOURS = 48.0


def _now_ms() -> int:
    return int(time.time() * 1000)


# ===================================================================
# Signals
# ===================================================================


def recency_score(
    created_epoch: float | None,
    half_life_hours: float = DEFAULT_RECENCY_HALF_LIFE_HOURS,
    now_ms: int | None = None,
) -> float:
    """Exponential decay on age: 1.0 now or in the future, 0.5 at one half-life.

    Non-positive or invalid timestamps score 0.
    """
    if half_life_hours <= 0:
        raise ValueError(f"half_life_hours must be positive, got {half_life_hours}")
    if created_epoch is None or isinstance(created_epoch, bool):
        return 0.0
    if not isinstance(created_epoch, (int, float)) or math.isnan(created_epoch):
        return 0.0
    if created_epoch <= 0:
        return 0.0

    now = _now_ms() if now_ms is None else now_ms
    age_ms = now - created_epoch
    if age_ms <= 0:
        return 1.0
    age_hours = age_ms / _MS_PER_HOUR
    return math.exp(-age_hours * math.log(2) / half_life_hours)


def access_recency_score(
    last_accessed_epoch: float | None,
    half_life_hours: float = DEFAULT_ACCESS_HALF_LIFE_HOURS,
    now_ms: int | None = None,
) -> float:
    """Recency of the last access; never-accessed entries score 0."""
    if last_accessed_epoch is None:
        return 0.0
    return recency_score(last_accessed_epoch, half_life_hours, now_ms)


def normalize_rank(rank: float, all_ranks: Sequence[float]) -> float:
    """Min-max normalize a BM25-style rank into [0, 1].

    More negative ranks are more relevant and map towards 1. A batch with
    one element, or where every rank is equal, carries no information and
    maps to 1.  An empty batch maps to 0.
    """
    if not all_ranks:
        return 0.0
    if len(all_ranks) == 1:
        return 1.0
    lo = min(all_ranks)
    hi = max(all_ranks)
    if hi == lo:
        return 1.0
    return (hi - rank) / (hi - lo)


def project_match_score(item_project: str | None, target_project: str | None) -> float:
    """1.0 iff both projects are non-empty and equal ignoring case."""
    if not item_project or not target_project:
        return 0.0
    return 1.0 if item_project.lower() == target_project.lower() else 0.0


def knowledge_type_boost(obs_type: str | None) -> float:
    """Multiplier for structured knowledge types; 1.0 for everything else."""
    if obs_type is None:
        return 1.0
    return KNOWLEDGE_TYPE_BOOSTS.get(obs_type, 1.0)


def staleness_penalty(is_stale: bool) -> float:
    """Stale entries are demoted, not hidden."""
    return STALE_PENALTY if is_stale else 1.0


def composite_score(signals: Signals, weights: WeightVector) -> float:
    """Weighted dot product of the four base signals."""
    return (
        signals.semantic * weights.semantic
        + signals.lexical * weights.lexical
        + signals.recency * weights.recency
        + signals.project_match * weights.project_match
    )


def final_score(
    signals: Signals,
    weights: WeightVector,
    obs_type: str | None,
    is_stale: bool,
) -> float:
    """Composite score with staleness penalty and knowledge boost applied after."""
    score = composite_score(signals, weights)
    score *= staleness_penalty(is_stale)
    score *= knowledge_type_boost(obs_type)
    return score


def estimate_tokens(text: str | None) -> int:
    """Character-based token estimate (4 chars per token, rounded up)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def sort_scored(items: Sequence[ScoredItem]) -> list[ScoredItem]:
    """Deterministic total order: score desc, creation epoch desc, id desc."""
    return sorted(items, key=ScoredItem.sort_key)


# ===================================================================
# Scorer
# ===================================================================


@dataclass(frozen=True, slots=True)
class ScoringEngine:
    """Scores candidates with injected weight vectors and half-life.

    Holds no mutable state; tests substitute weight vectors by building
    a new engine rather than patching globals.
    """

    search_weights: WeightVector = SEARCH_WEIGHTS
    context_weights: WeightVector = CONTEXT_WEIGHTS
    recency_half_life_hours: float = DEFAULT_RECENCY_HALF_LIFE_HOURS
    access_half_life_hours: float = DEFAULT_ACCESS_HALF_LIFE_HOURS

    def weights_for(self, query: str | None) -> WeightVector:
        """Search weights when a query is supplied, context weights otherwise."""
        return self.search_weights if query and query.strip() else self.context_weights

    def score(
        self,
        row: ObservationRow,
        *,
        semantic: float,
        lexical: float,
        target_project: str | None,
        weights: WeightVector,
        now_ms: int,
    ) -> ScoredItem:
        signals = Signals(
            semantic=semantic,
            lexical=lexical,
            recency=recency_score(row.created_at_epoch, self.recency_half_life_hours, now_ms),
            project_match=project_match_score(row.project, target_project),
        )
        return ScoredItem(
            id=row.id,
            title=row.title,
            content=row.content,
            type=row.type,
            project=row.project,
            created_at=row.created_at,
            created_at_epoch=row.created_at_epoch,
            signals=signals,
            score=final_score(signals, weights, row.type, row.is_stale),
            is_stale=row.is_stale,
        )

    def access_freshness(
        self, last_accessed_epochs: Sequence[float | None], now_ms: int | None = None
    ) -> float:
        """Mean access-recency over a set of observations; 0 for an empty set."""
        if not last_accessed_epochs:
            return 0.0
        total = sum(
            access_recency_score(epoch, self.access_half_life_hours, now_ms)
            for epoch in last_accessed_epochs
        )
        return total / len(last_accessed_epochs)

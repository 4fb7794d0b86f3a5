"""Hybrid retrieval: concurrent lexical + vector harvest, pure merge, scoring.

Pipeline per call:
1. Harvest.  With a query, the lexical and vector sources run concurrently
   (``asyncio.gather``), each a read-only query.  Without a query, the
   project's most recent observations are the candidates.
2. Merge.  ``merge_candidates`` unions the sources by observation id;
   a signal missing from one source defaults to 0.
3. Score.  Lexical ranks are min-max normalized across the batch, then
   every candidate is scored with the weight vector for the mode.
4. Order.  Score desc, creation epoch desc, id desc; truncate to limit.

A source that fails or is unavailable contributes no candidates; the
other source still does.  Retrieval never writes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import SQLAlchemyError

from memplane.search.models import (
    LexicalHit,
    ObservationRow,
    RetrievalFilters,
    ScoredItem,
    VectorHit,
)
from memplane.search.scoring import ScoringEngine, normalize_rank, sort_scored
from memplane.search.sql import observation_to_row
from memplane.store.observations import now_ms

if TYPE_CHECKING:
    from memplane.search.embedding import EmbeddingProvider
    from memplane.search.lexical import LexicalIndex
    from memplane.search.vector import VectorIndex
    from memplane.store.observations import ObservationStore

log = structlog.get_logger(__name__)

DEFAULT_CONTEXT_CANDIDATES = 30


@dataclass(frozen=True, slots=True)
class Candidate:
    """One observation with whatever evidence each source produced."""

    row: ObservationRow
    similarity: float | None = None  # None: no vector evidence
    rank: float | None = None  # None: unranked or no lexical evidence
    from_lexical: bool = False


# ===================================================================
# Merge (pure)
# ===================================================================


def merge_candidates(
    lexical_hits: Iterable[LexicalHit],
    vector_hits: Iterable[VectorHit],
) -> dict[int, Candidate]:
    """Union both sources keyed by observation id."""
    merged: dict[int, Candidate] = {}
    for hit in lexical_hits:
        merged[hit.row.id] = Candidate(row=hit.row, rank=hit.rank, from_lexical=True)
    for vhit in vector_hits:
        existing = merged.get(vhit.row.id)
        if existing is None:
            merged[vhit.row.id] = Candidate(row=vhit.row, similarity=vhit.similarity)
        else:
            merged[vhit.row.id] = replace(existing, similarity=vhit.similarity)
    return merged


def lexical_signals(candidates: Iterable[Candidate]) -> dict[int, float]:
    """Normalized lexical signal per candidate id; 0 when absent.

    Unranked lexical matches (substring fallback) form an all-equal batch
    and therefore score 1.
    """
    cands = list(candidates)
    ranks = [c.rank for c in cands if c.rank is not None]
    signals: dict[int, float] = {}
    for c in cands:
        if c.rank is not None:
            signals[c.row.id] = normalize_rank(c.rank, ranks)
        elif c.from_lexical:
            signals[c.row.id] = 1.0
        else:
            signals[c.row.id] = 0.0
    return signals


# ===================================================================
# HybridRetriever
# ===================================================================


class HybridRetriever:
    """Ranks observations for a project and optional query."""

    def __init__(
        self,
        lexical: LexicalIndex,
        vector: VectorIndex,
        store: ObservationStore,
        provider: EmbeddingProvider | None = None,
        scoring: ScoringEngine | None = None,
        *,
        context_candidates: int = DEFAULT_CONTEXT_CANDIDATES,
    ) -> None:
        self._lexical = lexical
        self._vector = vector
        self._store = store
        self._provider = provider
        self._scoring = scoring or ScoringEngine()
        self._context_candidates = context_candidates

    async def retrieve(
        self,
        project: str | None = None,
        query: str | None = None,
        filters: RetrievalFilters | None = None,
        limit: int = 10,
    ) -> list[ScoredItem]:
        """Ranked candidates, best first, at most ``limit``."""
        if limit <= 0:
            return []

        search_mode = bool(query and query.strip())
        if search_mode:
            assert query is not None
            lexical_hits, vector_hits = await asyncio.gather(
                self._harvest_lexical(query, project, filters, limit * 2),
                self._harvest_vector(query, project, filters, limit * 2),
            )
            candidates = merge_candidates(lexical_hits, vector_hits)
        else:
            lexical_hits, vector_hits = [], []
            candidates = {
                row.id: Candidate(row=row)
                for row in await self._harvest_recent(project, filters)
            }

        weights = self._scoring.weights_for(query)
        lexical = lexical_signals(candidates.values())
        now = now_ms()
        scored = [
            self._scoring.score(
                cand.row,
                semantic=_clamp01(cand.similarity),
                lexical=lexical[cand_id],
                target_project=project,
                weights=weights,
                now_ms=now,
            )
            for cand_id, cand in candidates.items()
        ]
        ranked = sort_scored(scored)[:limit]

        log.info(
            "hybrid.retrieve",
            mode=weights.name,
            project=project,
            lexical=len(lexical_hits),
            vector=len(vector_hits),
            merged=len(candidates),
            returned=len(ranked),
        )
        return ranked

    # ------------------------------------------------------------------
    # Harvesters
    # ------------------------------------------------------------------

    async def _harvest_lexical(
        self,
        query: str,
        project: str | None,
        filters: RetrievalFilters | None,
        limit: int,
    ) -> list[LexicalHit]:
        results = await asyncio.to_thread(
            self._lexical.search, query, project, filters=filters, limit=limit
        )
        if results.fallback_reason:
            log.debug("hybrid.lexical_fallback", reason=results.fallback_reason)
        return results.hits

    async def _harvest_vector(
        self,
        query: str,
        project: str | None,
        filters: RetrievalFilters | None,
        limit: int,
    ) -> list[VectorHit]:
        # Retrieval never triggers a model load; see MemoryEngine.initialize_embeddings
        if self._provider is None or not self._provider.is_available():
            return []
        query_vector = await self._provider.embed(query)
        if query_vector is None:
            return []
        return await asyncio.to_thread(
            self._vector.search, query_vector, project, limit=limit, filters=filters
        )

    async def _harvest_recent(
        self,
        project: str | None,
        filters: RetrievalFilters | None,
    ) -> list[ObservationRow]:
        try:
            observations = await asyncio.to_thread(
                self._store.recent_observations, project, self._context_candidates, filters
            )
        except SQLAlchemyError:
            log.error("hybrid.recent_failed", project=project, exc_info=True)
            return []
        return [observation_to_row(o) for o in observations]


def _clamp01(value: float | None) -> float:
    if value is None:
        return 0.0
    return max(0.0, min(1.0, value))

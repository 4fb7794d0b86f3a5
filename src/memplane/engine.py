"""MemoryEngine: one object wiring storage, indexes, retrieval and assembly.

Usage::

    engine = MemoryEngine.open(load_config(root), root=root)
    await engine.initialize_embeddings()       # optional; semantic signal is 0 until loaded
    result = await engine.get_smart_context("demo", query="auth token refresh")
    print(result.text)
    engine.close()
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

import structlog
from sqlalchemy.exc import SQLAlchemyError

from memplane.config.loader import resolve_db_path
from memplane.config.models import MemplaneConfig
from memplane.core.logging import configure_logging, request_scope
from memplane.search.context import ContextAssembler
from memplane.search.embedding import EmbeddingProvider
from memplane.search.hybrid import HybridRetriever
from memplane.search.lexical import LexicalIndex
from memplane.search.models import ContextResult, RetrievalFilters, ScoredItem, WeightVector
from memplane.search.scoring import ScoringEngine
from memplane.search.vector import VectorIndex
from memplane.store.database import Database
from memplane.store.models import Summary
from memplane.store.observations import DecayStats, ObservationStore, now_ms
from memplane.store.schema import create_schema

log = structlog.get_logger(__name__)


class MemoryEngine:
    """Facade over the retrieval and context-assembly pipeline."""

    def __init__(
        self,
        config: MemplaneConfig,
        db: Database,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        self.config = config
        self.db = db
        self.store = ObservationStore(db)
        self.provider = provider

        self.vector = VectorIndex(
            db,
            provider,
            max_candidates=config.vector.max_candidates,
            threshold=config.vector.threshold,
            limit=config.vector.limit,
            backfill_batch_size=config.vector.backfill_batch_size,
        )
        self.lexical = LexicalIndex.from_config(db, config.lexical)
        self.scoring = ScoringEngine(
            search_weights=WeightVector.from_config("search", config.scoring.search_weights),
            context_weights=WeightVector.from_config("context", config.scoring.context_weights),
            recency_half_life_hours=config.scoring.recency_half_life_hours,
            access_half_life_hours=config.scoring.access_half_life_hours,
        )
        self.retriever = HybridRetriever(
            self.lexical,
            self.vector,
            self.store,
            provider,
            self.scoring,
            context_candidates=config.context.context_candidates,
        )
        self.assembler = ContextAssembler(
            max_summaries=config.context.max_summaries,
            item_content_cap=config.context.item_content_cap,
        )

    @classmethod
    def open(
        cls,
        config: MemplaneConfig,
        root: Path | None = None,
        *,
        setup_logging: bool = True,
    ) -> MemoryEngine:
        """Open (creating if needed) the project database and build every component.

        Applies ``config.logging`` unless ``setup_logging`` is False (for hosts
        that own logging themselves).
        """
        if setup_logging:
            configure_logging(config.logging)
        db_path = resolve_db_path(config, root)
        db = Database.from_config(db_path, config.database)
        create_schema(db)
        provider = EmbeddingProvider.from_config(config.embedding)
        log.info(
            "engine.opened",
            db_path=str(db_path),
            model=provider.get_model_name(),
            dimensions=provider.get_dimensions(),
        )
        return cls(config, db, provider)

    def close(self) -> None:
        self.db.dispose()

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def initialize_embeddings(self) -> bool:
        """Load the embedding backend. False when none is usable."""
        if self.provider is None:
            return False
        return await self.provider.initialize()

    async def backfill_embeddings(self, batch_size: int | None = None) -> int:
        return await self.vector.backfill_embeddings(batch_size)

    def embedding_stats(self, project: str | None = None) -> dict[str, int]:
        return self.vector.get_stats(project)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        project: str | None = None,
        query: str | None = None,
        filters: RetrievalFilters | None = None,
        limit: int = 10,
    ) -> list[ScoredItem]:
        return await self.retriever.retrieve(project, query, filters, limit)

    async def get_smart_context(
        self,
        project: str,
        query: str | None = None,
        token_budget: int | None = None,
    ) -> ContextResult:
        """Summaries plus the best-ranked observations, packed into a token budget."""
        budget = token_budget if token_budget is not None else self.config.context.token_budget
        with request_scope(project=project):
            summaries = await self._recent_summaries(project)
            items = await self.retriever.retrieve(
                project, query, limit=self.config.context.search_limit
            )
            result = self.assembler.build_context(items, summaries, project, budget)
            log.debug(
                "engine.context",
                items=result.items_included,
                tokens=result.tokens_used,
                budget=budget,
            )
        return result

    async def _recent_summaries(self, project: str) -> Sequence[Summary]:
        try:
            return await asyncio.to_thread(
                self.store.recent_summaries, project, self.config.context.summaries_fetch
            )
        except SQLAlchemyError:
            log.error("engine.summaries_failed", project=project, exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def detect_stale_observations(self, project: str) -> list[int]:
        """Flag observations whose modified files changed since they were recorded."""
        stale_ids = self.store.detect_stale(project)
        if stale_ids:
            self.store.mark_stale(stale_ids)
        log.info("engine.stale_detected", project=project, count=len(stale_ids))
        return stale_ids

    def decay_stats(self, project: str) -> DecayStats:
        """Memory health for a project, judged on the configured access half-life.

        ``recently_accessed`` counts entries read within one half-life (access
        recency at least 0.5); ``access_freshness`` is the mean access recency.
        """
        now = now_ms()
        half_life = self.config.scoring.access_half_life_hours
        stats = self.store.decay_stats(project, at_ms=now, window_hours=half_life)
        freshness = self.scoring.access_freshness(self.store.access_epochs(project), now)
        return replace(stats, access_freshness=freshness)

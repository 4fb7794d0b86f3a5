"""Lexical index for keyword search via SQLite FTS5.

Queries are sanitized into a list of exact-match terms before reaching
FTS5, so reserved operators (AND, OR, NOT, NEAR, ``*``, ``^``, ``:``) in
user text are searched literally.  Ranking uses ``bm25()`` with per-column
weights: lower (more negative) is more relevant.

When sanitization leaves nothing to search, or FTS5 rejects the query,
the index falls back to a LIKE substring scan over the same columns.
The fallback is unranked and ordered by recency; the reason is reported
on the result instead of raising.
"""

from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from memplane.search.models import LexicalHit, LexicalResults, RetrievalFilters
from memplane.search.sql import OBSERVATION_COLUMNS, filter_clauses, row_to_observation
from memplane.store.schema import FTS_COLUMNS, FTS_TABLE

if TYPE_CHECKING:
    from memplane.config.models import LexicalConfig
    from memplane.store.database import Database

log = structlog.get_logger(__name__)

DEFAULT_MAX_QUERY_CHARS = 10_000
DEFAULT_MAX_QUERY_TOKENS = 100
DEFAULT_LIMIT = 50

# title, text, narrative, concepts
DEFAULT_BM25_WEIGHTS: tuple[float, float, float, float] = (10.0, 1.0, 3.0, 5.0)

# ASCII double quote plus typographic double quotes
_QUOTE_CHARS = re.compile('["“”]')
_LIKE_SPECIAL = re.compile(r"([%_\\])")


def sanitize_query(
    query: str,
    max_chars: int = DEFAULT_MAX_QUERY_CHARS,
    max_tokens: int = DEFAULT_MAX_QUERY_TOKENS,
) -> str:
    """Turn free text into a safe FTS5 query of quoted terms.

    Example: ``foo AND bar*`` -> ``"foo" "AND" "bar*"``
    """
    trimmed = query[:max_chars]
    tokens = _QUOTE_CHARS.sub("", trimmed).split()[:max_tokens]
    return " ".join(f'"{t}"' for t in tokens)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``%``, ``_`` and ``\\`` match literally."""
    return _LIKE_SPECIAL.sub(r"\\\1", value)


class LexicalIndex:
    """
    Keyword search over observation title, text, narrative and concepts.

    Usage::

        index = LexicalIndex(db)
        results = index.search("auth token refresh", project="demo", limit=20)
        for hit in results.hits:
            print(hit.row.title, hit.rank)
    """

    def __init__(
        self,
        db: Database,
        *,
        max_query_chars: int = DEFAULT_MAX_QUERY_CHARS,
        max_query_tokens: int = DEFAULT_MAX_QUERY_TOKENS,
        bm25_weights: tuple[float, float, float, float] = DEFAULT_BM25_WEIGHTS,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        if len(bm25_weights) != len(FTS_COLUMNS):
            raise ValueError(f"Expected {len(FTS_COLUMNS)} BM25 weights, got {len(bm25_weights)}")
        self._db = db
        self.max_query_chars = max_query_chars
        self.max_query_tokens = max_query_tokens
        self.bm25_weights = tuple(float(w) for w in bm25_weights)
        self.default_limit = default_limit

    @classmethod
    def from_config(cls, db: Database, config: LexicalConfig) -> LexicalIndex:
        weights = config.bm25
        return cls(
            db,
            max_query_chars=config.max_query_chars,
            max_query_tokens=config.max_query_tokens,
            bm25_weights=(weights.title, weights.text, weights.narrative, weights.concepts),
            default_limit=config.default_limit,
        )

    def search(
        self,
        query: str,
        project: str | None = None,
        *,
        filters: RetrievalFilters | None = None,
        limit: int | None = None,
    ) -> LexicalResults:
        """
        Ranked keyword search with substring fallback.

        Args:
            query: Free text. Reserved FTS5 syntax is neutralized.
            project: Restrict to one project.
            filters: Optional type and date narrowing.
            limit: Maximum hits (default ``default_limit``).

        Returns:
            LexicalResults ordered by relevance (ranked path) or recency
            (fallback path, ``rank`` is None and fallback_reason is set).
        """
        limit = limit if limit is not None else self.default_limit
        if not query or not query.strip():
            return LexicalResults()

        start = time.monotonic()
        safe_query = sanitize_query(query, self.max_query_chars, self.max_query_tokens)
        if not safe_query:
            return self._fallback(query, project, filters, limit, "no searchable terms")

        try:
            hits = self._search_fts(safe_query, project, filters, limit)
        except SQLAlchemyError as e:
            return self._fallback(
                query, project, filters, limit, f"full-text query failed: {str(e)[:80]}"
            )

        log.debug(
            "lexical.search",
            project=project,
            hits=len(hits),
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        return LexicalResults(hits=hits)

    def _search_fts(
        self,
        safe_query: str,
        project: str | None,
        filters: RetrievalFilters | None,
        limit: int,
    ) -> list[LexicalHit]:
        params: dict[str, Any] = {"query": safe_query, "limit": limit}
        clauses = [f"{FTS_TABLE} MATCH :query", *filter_clauses(project, filters, params)]
        weights = ", ".join(f"{w:.4f}" for w in self.bm25_weights)
        sql = f"""
            SELECT {OBSERVATION_COLUMNS},
                   bm25({FTS_TABLE}, {weights}) AS relevance_rank
            FROM {FTS_TABLE}
            JOIN observations o ON o.id = {FTS_TABLE}.rowid
            WHERE {' AND '.join(clauses)}
            ORDER BY relevance_rank, o.created_at_epoch DESC, o.id DESC
            LIMIT :limit
        """
        rows = self._db.fetch_all(sql, params)
        return [
            LexicalHit(row=row_to_observation(r), rank=float(r["relevance_rank"])) for r in rows
        ]

    def search_substring(
        self,
        query: str,
        project: str | None = None,
        *,
        filters: RetrievalFilters | None = None,
        limit: int | None = None,
    ) -> list[LexicalHit]:
        """Unranked LIKE scan across the searchable columns, newest first."""
        limit = limit if limit is not None else self.default_limit
        pattern = f"%{escape_like(query[: self.max_query_chars])}%"
        params: dict[str, Any] = {"pattern": pattern, "limit": limit}
        like_any = " OR ".join(f"o.{c} LIKE :pattern ESCAPE '\\'" for c in FTS_COLUMNS)
        clauses = [f"({like_any})", *filter_clauses(project, filters, params)]
        sql = f"""
            SELECT {OBSERVATION_COLUMNS}
            FROM observations o
            WHERE {' AND '.join(clauses)}
            ORDER BY o.created_at_epoch DESC, o.id DESC
            LIMIT :limit
        """
        rows = self._db.fetch_all(sql, params)
        return [LexicalHit(row=row_to_observation(r), rank=None) for r in rows]

    def _fallback(
        self,
        query: str,
        project: str | None,
        filters: RetrievalFilters | None,
        limit: int,
        reason: str,
    ) -> LexicalResults:
        log.info("lexical.fallback", project=project, reason=reason)
        try:
            hits = self.search_substring(query, project, filters=filters, limit=limit)
        except SQLAlchemyError:
            log.error("lexical.substring_failed", project=project, exc_info=True)
            hits = []
        return LexicalResults(hits=hits, fallback_reason=reason)

"""Vector index over SQLite-stored embeddings with bounded candidate scans.

Search is two-phase:
1. SQL pre-filter: join embeddings to observations, scope by project and
   filters, order by recency and cap at ``max_candidates``.  This bounds
   CPU and memory per search regardless of corpus size.
2. numpy cosine similarity over the capped candidate matrix, threshold,
   sort, truncate.

Vectors are stored as little-endian float32 blobs; the element count is
taken from the row's ``dimensions`` column, never inferred.  Rows whose
dimension differs from the query vector score 0 and are never returned.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog
from sqlalchemy.exc import SQLAlchemyError

from memplane.search.models import RetrievalFilters, VectorHit
from memplane.search.sql import OBSERVATION_COLUMNS, filter_clauses, row_to_observation
from memplane.store.models import ObservationEmbedding

if TYPE_CHECKING:
    from memplane.search.embedding import EmbeddingProvider, Vector
    from memplane.store.database import Database

log = structlog.get_logger(__name__)

_BLOB_DTYPE = np.dtype("<f4")

DEFAULT_MAX_CANDIDATES = 2000
DEFAULT_THRESHOLD = 0.3
DEFAULT_LIMIT = 10
DEFAULT_BACKFILL_BATCH = 50


# ===================================================================
# Marshalling and math
# ===================================================================


def encode_vector(vector: Any) -> bytes:
    """Serialize a 1-D vector as little-endian float32."""
    return np.asarray(vector, dtype=_BLOB_DTYPE).reshape(-1).tobytes()


def decode_vector(blob: bytes | None, dimensions: int) -> Vector | None:
    """Deserialize exactly ``dimensions`` floats; None if the blob size disagrees."""
    if not blob or dimensions <= 0 or len(blob) != dimensions * _BLOB_DTYPE.itemsize:
        return None
    return np.frombuffer(blob, dtype=_BLOB_DTYPE, count=dimensions).astype(np.float32)


def cosine_similarity(a: Any, b: Any) -> float:
    """Cosine similarity in [-1, 1]; 0 for length mismatch or a zero-norm input."""
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0.0 or not np.isfinite(denom):
        return 0.0
    sim = float(np.dot(va, vb)) / denom
    return max(-1.0, min(1.0, sim))


def build_embedding_text(row: Mapping[str, Any], max_chars: int) -> str:
    """Embedding input: title, text, narrative and concepts joined by spaces."""
    parts = (row.get("title"), row.get("text"), row.get("narrative"), row.get("concepts"))
    return " ".join(p for p in parts if p)[:max_chars]


# ===================================================================
# VectorIndex
# ===================================================================


class VectorIndex:
    """Embedding storage and bounded similarity search."""

    def __init__(
        self,
        db: Database,
        provider: EmbeddingProvider | None = None,
        *,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
        threshold: float = DEFAULT_THRESHOLD,
        limit: int = DEFAULT_LIMIT,
        backfill_batch_size: int = DEFAULT_BACKFILL_BATCH,
    ) -> None:
        self._db = db
        self._provider = provider
        self.max_candidates = max_candidates
        self.threshold = threshold
        self.limit = limit
        self.backfill_batch_size = backfill_batch_size
        self.last_scan_count = 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, observation_id: int, vector: Any, model: str) -> bool:
        """Upsert the embedding for one observation. Last write wins.

        Returns False (after logging) when the vector has the wrong size
        for the attached provider or the write fails.
        """
        vec = np.asarray(vector, dtype=np.float32).reshape(-1)
        if self._provider is not None and vec.shape[0] != self._provider.get_dimensions():
            log.warning(
                "vector.store_dimension_mismatch",
                observation_id=observation_id,
                expected=self._provider.get_dimensions(),
                actual=int(vec.shape[0]),
            )
            return False

        record = {
            "observation_id": observation_id,
            "embedding": encode_vector(vec),
            "model": model,
            "dimensions": int(vec.shape[0]),
            "created_at": datetime.now(UTC).isoformat(),
        }
        try:
            with self._db.bulk_writer() as writer:
                writer.upsert_many(
                    ObservationEmbedding,
                    [record],
                    conflict_columns=["observation_id"],
                    update_columns=["embedding", "model", "dimensions", "created_at"],
                )
        except SQLAlchemyError:
            log.error("vector.store_failed", observation_id=observation_id, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_embedding(self, observation_id: int) -> Vector | None:
        rows = self._db.fetch_all(
            "SELECT embedding, dimensions FROM observation_embeddings "
            "WHERE observation_id = :observation_id",
            {"observation_id": observation_id},
        )
        if not rows:
            return None
        return decode_vector(rows[0]["embedding"], int(rows[0]["dimensions"]))

    def list_candidates(
        self,
        project: str | None = None,
        max_candidates: int | None = None,
        filters: RetrievalFilters | None = None,
    ) -> Sequence[Mapping[str, Any]]:
        """Most recent embedded observations, capped in SQL before any vector math."""
        params: dict[str, Any] = {
            "max_candidates": max_candidates if max_candidates is not None else self.max_candidates
        }
        clauses = filter_clauses(project, filters, params)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT e.embedding, e.dimensions, {OBSERVATION_COLUMNS}
            FROM observation_embeddings e
            JOIN observations o ON o.id = e.observation_id
            {where}
            ORDER BY o.created_at_epoch DESC, o.id DESC
            LIMIT :max_candidates
        """
        return self._db.fetch_all(sql, params)

    def search(
        self,
        query_vector: Any,
        project: str | None = None,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        max_candidates: int | None = None,
        filters: RetrievalFilters | None = None,
    ) -> list[VectorHit]:
        """Top matches by cosine similarity among the capped candidate set.

        Storage errors are logged and produce no hits.
        """
        limit = limit if limit is not None else self.limit
        threshold = threshold if threshold is not None else self.threshold

        try:
            rows = self.list_candidates(project, max_candidates, filters)
        except SQLAlchemyError:
            log.error("vector.candidates_failed", project=project, exc_info=True)
            self.last_scan_count = 0
            return []
        self.last_scan_count = len(rows)

        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        query_norm = float(np.linalg.norm(query))
        dims = query.shape[0]

        usable: list[Mapping[str, Any]] = []
        vectors: list[Vector] = []
        for row in rows:
            if int(row["dimensions"]) != dims:
                continue
            vec = decode_vector(row["embedding"], dims)
            if vec is None:
                continue
            usable.append(row)
            vectors.append(vec)

        hits: list[VectorHit] = []
        if vectors and query_norm > 0.0:
            matrix = np.vstack(vectors)
            norms = np.linalg.norm(matrix, axis=1) * query_norm
            dots = matrix @ query
            sims = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
            for row, sim in zip(usable, sims, strict=True):
                similarity = float(np.clip(sim, -1.0, 1.0))
                if similarity >= threshold:
                    hits.append(VectorHit(row=row_to_observation(row), similarity=similarity))

        hits.sort(key=lambda h: (-h.similarity, -h.row.created_at_epoch, -h.row.id))
        log.debug(
            "vector.search",
            project=project,
            scanned=self.last_scan_count,
            matched=len(hits),
            limit=limit,
        )
        return hits[:limit]

    def get_stats(self, project: str | None = None) -> dict[str, int]:
        """Embedding coverage: total observations, embedded count, percentage."""
        where = "WHERE o.project = :project" if project else ""
        rows = self._db.fetch_all(
            f"""
            SELECT COUNT(*) AS total, COUNT(e.observation_id) AS embedded
            FROM observations o
            LEFT JOIN observation_embeddings e ON e.observation_id = o.id
            {where}
            """,
            {"project": project} if project else None,
        )
        total = int(rows[0]["total"])
        embedded = int(rows[0]["embedded"])
        percentage = round(embedded / total * 100) if total else 0
        return {"total": total, "embedded": embedded, "percentage": percentage}

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    async def backfill_embeddings(self, batch_size: int | None = None) -> int:
        """Embed observations that have no embedding yet, newest first.

        Returns the number stored. Returns 0 immediately when no provider
        is available. Items whose embedding fails are skipped.
        """
        if self._provider is None or not await self._provider.initialize():
            return 0

        batch = batch_size if batch_size is not None else self.backfill_batch_size
        try:
            rows = await asyncio.to_thread(
                self._db.fetch_all,
                """
                SELECT o.id, o.title, o.text, o.narrative, o.concepts
                FROM observations o
                LEFT JOIN observation_embeddings e ON e.observation_id = o.id
                WHERE e.observation_id IS NULL
                ORDER BY o.created_at_epoch DESC, o.id DESC
                LIMIT :batch_size
                """,
                {"batch_size": batch},
            )
        except SQLAlchemyError:
            log.error("vector.backfill_query_failed", exc_info=True)
            return 0
        if not rows:
            return 0

        max_chars = self._provider.max_input_chars
        texts = [build_embedding_text(row, max_chars) for row in rows]
        vectors = await self._provider.embed_batch(texts)

        model = self._provider.get_model_name()
        stored = 0
        for row, vec in zip(rows, vectors, strict=True):
            if vec is None:
                continue
            if await asyncio.to_thread(self.store, int(row["id"]), vec, model):
                stored += 1

        log.info("vector.backfill", candidates=len(rows), stored=stored, model=model)
        return stored

"""Embedding provider with an ordered backend fallback chain.

Backends are tried in order (fastembed, then sentence-transformers); the
first one whose model loads becomes active for the lifetime of the
provider.  If none loads, the provider stays unavailable and semantic
scoring degrades to zero without raising.

Initialization is lazy and shared: the first caller of ``initialize()``
starts a single task that every concurrent caller awaits.  Model loading
and encoding run in worker threads so the event loop stays responsive.

Model table (short name -> hub id, dimension):
  all-MiniLM-L6-v2  sentence-transformers/all-MiniLM-L6-v2   384  (default)
  bge-small-en      BAAI/bge-small-en-v1.5                    384
  jina-code-v2      jinaai/jina-embeddings-v2-base-code       768
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
import structlog

from memplane.config.constants import (
    DEFAULT_EMBEDDING_DIM,
    DEFAULT_EMBEDDING_MODEL,
    EMBEDDING_MODELS,
    MODEL_NAMESPACE_SEPARATOR,
)
from memplane.core.errors import EmbeddingError

if TYPE_CHECKING:
    from memplane.config.models import EmbeddingConfig

log = structlog.get_logger(__name__)

Vector = np.ndarray[Any, np.dtype[np.float32]]

DEFAULT_MAX_INPUT_CHARS = 2000


class EmbeddingBackend(Protocol):
    """A loaded model that turns texts into vectors."""

    def embed(self, texts: list[str]) -> Sequence[Any]: ...


BackendLoader = Callable[[str], EmbeddingBackend]
"""Loads the model for a hub id; raises if the backend cannot be used."""


# ===================================================================
# Model resolution
# ===================================================================


def resolve_model(model: str | None, dimensions: Any = None) -> tuple[str, int]:
    """Resolve a configured model name to ``(hub_id, dimension)``.

    Short names come from the model table; unknown short names fall back
    to the default model.  Names containing ``/`` are taken verbatim with
    ``dimensions`` as their size, or 384 when it is missing or invalid.
    """
    name = (model or "").strip()
    if MODEL_NAMESPACE_SEPARATOR in name:
        return name, _valid_dimension(dimensions) or DEFAULT_EMBEDDING_DIM
    if name in EMBEDDING_MODELS:
        return EMBEDDING_MODELS[name]
    if name:
        log.warning("embedding.unknown_model", model=name, fallback=DEFAULT_EMBEDDING_MODEL)
    return EMBEDDING_MODELS[DEFAULT_EMBEDDING_MODEL]


def _valid_dimension(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        dims = int(value)
    except (TypeError, ValueError):
        return None
    return dims if dims > 0 else None


# ===================================================================
# Backends
# ===================================================================


def _detect_providers() -> list[str]:
    """Detect available ONNX Runtime execution providers."""
    try:
        import onnxruntime as ort  # type: ignore[import-not-found]
    except ImportError:
        return []

    available = set(ort.get_available_providers())
    providers: list[str] = []
    if "CUDAExecutionProvider" in available:
        providers.append("CUDAExecutionProvider")
    providers.append("CPUExecutionProvider")
    return providers


class _FastembedBackend:
    def __init__(self, model: Any) -> None:
        self._model = model

    def embed(self, texts: list[str]) -> list[Any]:
        return list(self._model.embed(texts))


class _SentenceTransformerBackend:
    def __init__(self, model: Any) -> None:
        self._model = model

    def embed(self, texts: list[str]) -> list[Any]:
        matrix = self._model.encode(texts, convert_to_numpy=True, show_progress_bar=False)
        return list(matrix)


def load_fastembed(model_id: str) -> EmbeddingBackend:
    """ONNX-based fastembed TextEmbedding with GPU auto-detect."""
    from fastembed import TextEmbedding  # type: ignore[import-not-found]

    providers = _detect_providers()
    kwargs: dict[str, Any] = {
        "model_name": model_id,
        "threads": max(1, (os.cpu_count() or 4) // 2),
    }
    if providers:
        kwargs["providers"] = providers
    return _FastembedBackend(TextEmbedding(**kwargs))


def load_sentence_transformers(model_id: str) -> EmbeddingBackend:
    """PyTorch sentence-transformers model (optional extra)."""
    from sentence_transformers import SentenceTransformer  # type: ignore[import-not-found]

    return _SentenceTransformerBackend(SentenceTransformer(model_id))


BACKEND_LOADERS: dict[str, BackendLoader] = {
    "fastembed": load_fastembed,
    "sentence-transformers": load_sentence_transformers,
}

DEFAULT_BACKENDS: tuple[str, ...] = ("fastembed", "sentence-transformers")


# ===================================================================
# EmbeddingProvider
# ===================================================================


class EmbeddingProvider:
    """Lazy, swappable text embedder with first-success-wins backend chain.

    ``embed()`` and ``embed_batch()`` never raise: an unavailable provider
    or a failing backend yields ``None`` for the affected inputs.
    """

    def __init__(
        self,
        model: str | None = DEFAULT_EMBEDDING_MODEL,
        *,
        dimensions: int | None = None,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        backends: Sequence[tuple[str, BackendLoader]] | None = None,
    ) -> None:
        self._model_id, self._dimensions = resolve_model(model, dimensions)
        self._max_input_chars = max_input_chars
        self._backends = list(
            backends
            if backends is not None
            else [(name, BACKEND_LOADERS[name]) for name in DEFAULT_BACKENDS]
        )
        self._init_task: asyncio.Task[bool] | None = None
        self._backend: EmbeddingBackend | None = None
        self._backend_name: str | None = None
        self._last_error: EmbeddingError | None = None

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> EmbeddingProvider:
        return cls(
            config.model,
            dimensions=config.dimensions,
            max_input_chars=config.max_input_chars,
            backends=[(name, BACKEND_LOADERS[name]) for name in config.backends],
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_dimensions(self) -> int:
        return self._dimensions

    def get_model_name(self) -> str:
        return self._model_id

    @property
    def max_input_chars(self) -> int:
        return self._max_input_chars

    @property
    def backend_name(self) -> str | None:
        return self._backend_name

    @property
    def last_error(self) -> EmbeddingError | None:
        return self._last_error

    def is_available(self) -> bool:
        """True only after initialize() loaded a backend."""
        return self._backend is not None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Load the first working backend. Idempotent and concurrency-safe.

        All callers share one in-flight task; after it finishes the
        outcome is fixed for the lifetime of this provider.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load_first_backend())
        return await asyncio.shield(self._init_task)

    async def _load_first_backend(self) -> bool:
        tried: list[str] = []
        for name, loader in self._backends:
            tried.append(name)
            start = time.monotonic()
            try:
                backend = await asyncio.to_thread(loader, self._model_id)
            except Exception as e:
                log.info(
                    "embedding.backend_unavailable",
                    backend=name,
                    model=self._model_id,
                    reason=f"{type(e).__name__}: {e}",
                )
                continue
            self._backend = backend
            self._backend_name = name
            log.info(
                "embedding.backend_loaded",
                backend=name,
                model=self._model_id,
                dimensions=self._dimensions,
                elapsed_s=round(time.monotonic() - start, 2),
            )
            return True

        self._last_error = EmbeddingError.unavailable(tried)
        log.warning("embedding.disabled", **self._last_error.to_dict())
        return False

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> Vector | None:
        """Embed one text, truncated to ``max_input_chars``. None on any failure."""
        if not await self.initialize():
            return None
        assert self._backend is not None
        try:
            raw = await asyncio.to_thread(self._backend.embed, [self._truncate(text)])
            return self._to_vector(raw[0])
        except Exception:
            log.warning("embedding.embed_failed", backend=self._backend_name, exc_info=True)
            return None

    async def embed_batch(self, texts: Sequence[str]) -> list[Vector | None]:
        """Embed many texts; per-item failures become None without aborting the batch."""
        if not texts:
            return []
        if not await self.initialize():
            return [None] * len(texts)
        assert self._backend is not None

        truncated = [self._truncate(t) for t in texts]
        try:
            raw = await asyncio.to_thread(self._backend.embed, truncated)
            if len(raw) != len(truncated):
                raise ValueError(f"backend returned {len(raw)} vectors for {len(truncated)} texts")
            return [self._to_vector(v) for v in raw]
        except Exception:
            log.info("embedding.batch_fallback_serial", count=len(texts), exc_info=True)

        return [await self.embed(t) for t in texts]

    def _truncate(self, text: str) -> str:
        return (text or "")[: self._max_input_chars]

    def _to_vector(self, raw: Any) -> Vector:
        vec = np.asarray(raw, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self._dimensions:
            raise EmbeddingError.dimension_mismatch(self._dimensions, int(vec.shape[0]))
        return vec

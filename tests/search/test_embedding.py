"""Tests for EmbeddingProvider: model resolution, backend chain, lazy shared init."""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import numpy as np
import pytest

from memplane.config.models import EmbeddingConfig
from memplane.core.errors import ErrorCode
from memplane.search.embedding import (
    BACKEND_LOADERS,
    EmbeddingProvider,
    _detect_providers,
    resolve_model,
)


class TestResolveModel:
    """Short names, hub ids and fallbacks."""

    @pytest.mark.parametrize(
        ("model", "expected"),
        [
            ("all-MiniLM-L6-v2", ("sentence-transformers/all-MiniLM-L6-v2", 384)),
            ("bge-small-en", ("BAAI/bge-small-en-v1.5", 384)),
            ("jina-code-v2", ("jinaai/jina-embeddings-v2-base-code", 768)),
        ],
    )
    def test_short_names(self, model: str, expected: tuple[str, int]) -> None:
        assert resolve_model(model) == expected

    def test_unknown_short_name_falls_back_to_default(self) -> None:
        assert resolve_model("not-a-model") == ("sentence-transformers/all-MiniLM-L6-v2", 384)

    def test_empty_name_uses_default(self) -> None:
        assert resolve_model(None) == ("sentence-transformers/all-MiniLM-L6-v2", 384)

    def test_hub_id_with_dimensions(self) -> None:
        assert resolve_model("org/custom-model", 1024) == ("org/custom-model", 1024)

    @pytest.mark.parametrize("dims", [None, "abc", 0, -1, True])
    def test_hub_id_with_invalid_dimensions_uses_384(self, dims: Any) -> None:
        assert resolve_model("org/custom-model", dims) == ("org/custom-model", 384)

    def test_dimensions_ignored_for_short_names(self) -> None:
        assert resolve_model("jina-code-v2", 100) == ("jinaai/jina-embeddings-v2-base-code", 768)


class TestIntrospection:
    def test_reports_model_and_dimensions_before_init(self) -> None:
        provider = EmbeddingProvider("bge-small-en", backends=[])
        assert provider.get_model_name() == "BAAI/bge-small-en-v1.5"
        assert provider.get_dimensions() == 384
        assert not provider.is_available()
        assert provider.backend_name is None

    def test_from_config_maps_backend_names(self) -> None:
        config = EmbeddingConfig(model="org/m", dimensions=16, backends=["sentence-transformers"])
        provider = EmbeddingProvider.from_config(config)
        assert provider.get_model_name() == "org/m"
        assert provider.get_dimensions() == 16
        assert provider._backends == [
            ("sentence-transformers", BACKEND_LOADERS["sentence-transformers"])
        ]

    def test_detect_providers_without_onnxruntime(self) -> None:
        with patch.dict("sys.modules", {"onnxruntime": None}):
            assert _detect_providers() == []


class TestInitialize:
    """Backend chain and shared initialization."""

    @pytest.mark.asyncio
    async def test_first_working_backend_wins(
        self, make_backend: type, loader_for: Callable[..., Any], broken_loader: Any
    ) -> None:
        backend = make_backend()
        provider = EmbeddingProvider(
            backends=[("fastembed", broken_loader), ("sentence-transformers", loader_for(backend))]
        )

        assert await provider.initialize()
        assert provider.is_available()
        assert provider.backend_name == "sentence-transformers"

    @pytest.mark.asyncio
    async def test_all_backends_fail_leaves_unavailable(self, broken_loader: Any) -> None:
        provider = EmbeddingProvider(
            backends=[("fastembed", broken_loader), ("sentence-transformers", broken_loader)]
        )

        assert not await provider.initialize()
        assert not provider.is_available()
        assert provider.last_error is not None
        assert provider.last_error.code == ErrorCode.EMBEDDING_UNAVAILABLE
        assert provider.last_error.details["tried"] == ["fastembed", "sentence-transformers"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self, make_backend: type) -> None:
        backend = make_backend()
        loads = 0
        lock = threading.Lock()

        def slow_loader(_model_id: str) -> Any:
            nonlocal loads
            with lock:
                loads += 1
            time.sleep(0.05)
            return backend

        provider = EmbeddingProvider(backends=[("fastembed", slow_loader)])
        results = await asyncio.gather(*(provider.initialize() for _ in range(10)))

        assert results == [True] * 10
        assert loads == 1

    @pytest.mark.asyncio
    async def test_outcome_fixed_after_failure(self, broken_loader: Any) -> None:
        calls = 0

        def counting_loader(model_id: str) -> Any:
            nonlocal calls
            calls += 1
            return broken_loader(model_id)

        provider = EmbeddingProvider(backends=[("fastembed", counting_loader)])
        assert not await provider.initialize()
        assert not await provider.initialize()
        assert calls == 1


class TestEmbed:
    """Encoding never raises."""

    @pytest.mark.asyncio
    async def test_embed_returns_vector_of_configured_size(
        self, make_backend: type, loader_for: Callable[..., Any]
    ) -> None:
        provider = EmbeddingProvider(backends=[("fastembed", loader_for(make_backend()))])
        vec = await provider.embed("how do we refresh tokens")

        assert vec is not None
        assert vec.dtype == np.float32
        assert vec.shape == (384,)

    @pytest.mark.asyncio
    async def test_embed_is_deterministic(
        self, make_backend: type, loader_for: Callable[..., Any]
    ) -> None:
        provider = EmbeddingProvider(backends=[("fastembed", loader_for(make_backend()))])
        a = await provider.embed("same text")
        b = await provider.embed("same text")
        assert a is not None and b is not None
        assert np.array_equal(a, b)

    @pytest.mark.asyncio
    async def test_embed_unavailable_returns_none(self, broken_loader: Any) -> None:
        provider = EmbeddingProvider(backends=[("fastembed", broken_loader)])
        assert await provider.embed("anything") is None

    @pytest.mark.asyncio
    async def test_input_truncated_before_encoding(
        self, make_backend: type, loader_for: Callable[..., Any]
    ) -> None:
        backend = make_backend()
        provider = EmbeddingProvider(
            max_input_chars=10, backends=[("fastembed", loader_for(backend))]
        )
        await provider.embed("x" * 50)
        assert backend.calls[-1] == ["x" * 10]

    @pytest.mark.asyncio
    async def test_wrong_dimension_output_returns_none(
        self, make_backend: type, loader_for: Callable[..., Any]
    ) -> None:
        provider = EmbeddingProvider(
            "org/model", dimensions=8, backends=[("fastembed", loader_for(make_backend(dim=4)))]
        )
        assert await provider.embed("text") is None

    @pytest.mark.asyncio
    async def test_backend_exception_returns_none(
        self, make_backend: type, loader_for: Callable[..., Any]
    ) -> None:
        backend = make_backend()
        provider = EmbeddingProvider(backends=[("fastembed", loader_for(backend))])
        await provider.initialize()
        with patch.object(backend, "embed", side_effect=RuntimeError("onnx crashed")):
            assert await provider.embed("text") is None


class TestEmbedBatch:
    @pytest.mark.asyncio
    async def test_empty_batch(self, broken_loader: Any) -> None:
        provider = EmbeddingProvider(backends=[("fastembed", broken_loader)])
        assert await provider.embed_batch([]) == []

    @pytest.mark.asyncio
    async def test_unavailable_yields_all_none(self, broken_loader: Any) -> None:
        provider = EmbeddingProvider(backends=[("fastembed", broken_loader)])
        assert await provider.embed_batch(["a", "b"]) == [None, None]

    @pytest.mark.asyncio
    async def test_native_batch_single_call(
        self, make_backend: type, loader_for: Callable[..., Any]
    ) -> None:
        backend = make_backend()
        provider = EmbeddingProvider(backends=[("fastembed", loader_for(backend))])
        vectors = await provider.embed_batch(["a", "b", "c"])

        assert all(v is not None for v in vectors)
        assert backend.calls == [["a", "b", "c"]]

    @pytest.mark.asyncio
    async def test_batch_failure_falls_back_to_serial(
        self, make_backend: type, loader_for: Callable[..., Any]
    ) -> None:
        """One bad item does not abort the batch."""
        inner = make_backend()

        class PickyBackend:
            def embed(self, texts: list[str]) -> list[Any]:
                if "poison" in texts:
                    raise ValueError("cannot encode poison")
                return inner.embed(texts)

        provider = EmbeddingProvider(backends=[("fastembed", loader_for(PickyBackend()))])
        vectors = await provider.embed_batch(["good", "poison", "fine"])

        assert vectors[0] is not None
        assert vectors[1] is None
        assert vectors[2] is not None

"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and provides the shared storage and embedding fixtures.
"""

import sys
from pathlib import Path

# Insert local src directory at the beginning of sys.path
# This ensures that the local memplane package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of memplane modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("memplane"):
        del sys.modules[module_name]

import tempfile  # noqa: E402
import zlib  # noqa: E402
from collections.abc import Callable, Generator  # noqa: E402
from typing import Any  # noqa: E402

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from memplane.store.database import Database  # noqa: E402
from memplane.store.observations import ObservationStore  # noqa: E402
from memplane.store.schema import create_schema  # noqa: E402

HOUR_MS = 3_600_000
NOW_MS = 1_750_000_000_000


class FakeBackend:
    """Deterministic embedder: same text, same unit vector."""

    def __init__(self, dim: int = 384, fixed: dict[str, list[float]] | None = None) -> None:
        self.dim = dim
        self.fixed = fixed or {}
        self.calls: list[list[str]] = []

    def embed(self, texts: list[str]) -> list[np.ndarray[Any, np.dtype[np.float32]]]:
        self.calls.append(list(texts))
        results = []
        for text in texts:
            if text in self.fixed:
                results.append(np.asarray(self.fixed[text], dtype=np.float32))
                continue
            rng = np.random.RandomState(zlib.crc32(text.encode()) % (2**31))
            vec = rng.randn(self.dim).astype(np.float32)
            vec /= np.linalg.norm(vec)
            results.append(vec)
        return results


def make_loader(backend: Any) -> Callable[[str], Any]:
    """Backend loader returning a pre-built backend for any model id."""

    def _load(_model_id: str) -> Any:
        return backend

    return _load


def failing_loader(_model_id: str) -> Any:
    raise ImportError("backend not installed")


def observation_record(
    obs_id: int | None = None,
    *,
    project: str = "demo",
    type: str = "discovery",
    title: str = "An observation",
    text: str | None = "Some text",
    narrative: str | None = None,
    concepts: str | None = None,
    files_modified: str | None = None,
    created_at_epoch: int = NOW_MS,
    is_stale: bool = False,
    last_accessed_epoch: int | None = None,
) -> dict[str, Any]:
    """Full column dict for BulkWriter.insert_many / ObservationStore.add_observations."""
    record: dict[str, Any] = {
        "memory_session_id": "session-1",
        "project": project,
        "type": type,
        "title": title,
        "subtitle": None,
        "text": text,
        "narrative": narrative,
        "facts": None,
        "concepts": concepts,
        "files_read": None,
        "files_modified": files_modified,
        "prompt_number": None,
        "created_at": "2025-06-15T00:00:00+00:00",
        "created_at_epoch": created_at_epoch,
        "last_accessed_epoch": last_accessed_epoch,
        "is_stale": is_stale,
    }
    if obs_id is not None:
        record["id"] = obs_id
    return record


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database with schema."""
    db = Database(temp_dir / "memory.db")
    create_schema(db)
    yield db
    db.dispose()


@pytest.fixture
def store(temp_db: Database) -> ObservationStore:
    return ObservationStore(temp_db)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_record() -> Callable[..., dict[str, Any]]:
    """Factory for full observation column dicts."""
    return observation_record


@pytest.fixture
def loader_for() -> Callable[[Any], Callable[[str], Any]]:
    """Factory wrapping a backend in a loader callable."""
    return make_loader


@pytest.fixture
def seed(
    store: ObservationStore, make_record: Callable[..., dict[str, Any]]
) -> Callable[..., list[int]]:
    """Insert observations from keyword dicts; returns their ids in order."""

    def _seed(*specs: dict[str, Any]) -> list[int]:
        records = [make_record(**spec) for spec in specs]
        store.add_observations(records)
        return [int(r["id"]) for r in records]

    return _seed


@pytest.fixture
def make_backend() -> type[FakeBackend]:
    return FakeBackend


@pytest.fixture
def broken_loader() -> Callable[[str], Any]:
    """Loader that behaves like a missing backend package."""
    return failing_loader

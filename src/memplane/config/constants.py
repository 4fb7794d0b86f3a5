"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
These are scoring invariants, model metadata and implementation details.

For configurable values, see models.py (VectorConfig, ContextConfig, etc.).
"""

# =============================================================================
# Knowledge Types
# =============================================================================
# Structured memory entries that outrank plain observations. Ordered from
# highest to lowest boost.

KNOWLEDGE_TYPE_BOOSTS: dict[str, float] = {
    "constraint": 1.30,
    "decision": 1.25,
    "heuristic": 1.15,
    "rejected": 1.10,
}
"""Multiplicative score boost per knowledge type (case-sensitive match)."""

STALE_PENALTY = 0.5
"""Score multiplier for observations whose referenced files changed."""

# =============================================================================
# Token Estimation
# =============================================================================

CHARS_PER_TOKEN = 4
"""Character-based token approximation used for all budgets."""

# =============================================================================
# Embedding Models
# =============================================================================

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
"""Short name of the model used when none (or an unknown one) is configured."""

DEFAULT_EMBEDDING_DIM = 384
"""Dimension assumed for fully-qualified models without a valid override."""

EMBEDDING_MODELS: dict[str, tuple[str, int]] = {
    "all-MiniLM-L6-v2": ("sentence-transformers/all-MiniLM-L6-v2", 384),
    "bge-small-en": ("BAAI/bge-small-en-v1.5", 384),
    "jina-code-v2": ("jinaai/jina-embeddings-v2-base-code", 768),
}
"""Short model name -> (hub model id, vector dimension)."""

MODEL_NAMESPACE_SEPARATOR = "/"
"""A model id containing this is taken verbatim (e.g. ``org/model``)."""

# =============================================================================
# Internal Implementation Constants
# =============================================================================

STALE_SCAN_MAX = 500
"""Maximum observations inspected per stale-detection pass."""

RECENT_ACCESS_WINDOW_HOURS = 48
"""Window for the 'recently accessed' bucket of decay statistics."""

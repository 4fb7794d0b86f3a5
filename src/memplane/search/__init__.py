"""Hybrid retrieval and context assembly.

Components, leaves first: scoring, embedding, vector, lexical, hybrid,
context.
"""

from memplane.search.context import ContextAssembler
from memplane.search.embedding import EmbeddingProvider
from memplane.search.hybrid import HybridRetriever
from memplane.search.lexical import LexicalIndex
from memplane.search.models import (
    CONTEXT_WEIGHTS,
    SEARCH_WEIGHTS,
    ContextResult,
    RetrievalFilters,
    ScoredItem,
    Signals,
    WeightVector,
)
from memplane.search.scoring import ScoringEngine
from memplane.search.vector import VectorIndex, cosine_similarity

__all__ = [
    "CONTEXT_WEIGHTS",
    "SEARCH_WEIGHTS",
    "ContextAssembler",
    "ContextResult",
    "EmbeddingProvider",
    "HybridRetriever",
    "LexicalIndex",
    "RetrievalFilters",
    "ScoredItem",
    "ScoringEngine",
    "Signals",
    "VectorIndex",
    "WeightVector",
    "cosine_similarity",
]

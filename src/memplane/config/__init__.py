"""Config module exports."""

from memplane.config.loader import load_config, resolve_db_path
from memplane.config.models import (
    ContextConfig,
    EmbeddingConfig,
    LexicalConfig,
    LoggingConfig,
    MemplaneConfig,
    ScoringConfig,
    VectorConfig,
)

__all__ = [
    "load_config",
    "resolve_db_path",
    "ContextConfig",
    "EmbeddingConfig",
    "LexicalConfig",
    "LoggingConfig",
    "MemplaneConfig",
    "ScoringConfig",
    "VectorConfig",
]

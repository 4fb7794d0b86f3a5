"""Core module exports."""

from memplane.core.errors import (
    ConfigError,
    EmbeddingError,
    ErrorCode,
    InternalError,
    MemplaneError,
    StorageError,
)
from memplane.core.logging import (
    clear_request_id,
    configure_logging,
    get_request_id,
    request_scope,
    set_request_id,
)

__all__ = [
    # Errors
    "ConfigError",
    "EmbeddingError",
    "ErrorCode",
    "InternalError",
    "MemplaneError",
    "StorageError",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_request_id",
    "request_scope",
    "set_request_id",
]

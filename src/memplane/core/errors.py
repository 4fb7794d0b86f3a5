"""memplane error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Storage
- 4xxx: Embedding
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003
    CONFIG_FILE_NOT_FOUND = 2004

    # Storage (3xxx)
    STORAGE_READ_FAILED = 3001
    STORAGE_WRITE_FAILED = 3002
    STORAGE_NOT_FOUND = 3003

    # Embedding (4xxx)
    EMBEDDING_UNAVAILABLE = 4001
    EMBEDDING_DIMENSION_MISMATCH = 4002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class MemplaneError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'CONFIG_PARSE_ERROR')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(MemplaneError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )


class StorageError(MemplaneError):
    """Observation/embedding store errors."""

    @classmethod
    def read_failed(cls, operation: str, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_READ_FAILED,
            message=f"Read failed during {operation}: {reason}",
            retryable=True,
            details={"operation": operation, "reason": reason},
        )

    @classmethod
    def write_failed(cls, operation: str, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_WRITE_FAILED,
            message=f"Write failed during {operation}: {reason}",
            retryable=True,
            details={"operation": operation, "reason": reason},
        )

    @classmethod
    def not_found(cls, kind: str, ident: int) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_NOT_FOUND,
            message=f"{kind} {ident} not found",
            details={"kind": kind, "id": ident},
        )


class EmbeddingError(MemplaneError):
    """Embedding backend errors. Never raised out of EmbeddingProvider.embed()."""

    @classmethod
    def unavailable(cls, tried: list[str]) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_UNAVAILABLE,
            message="No embedding backend could be loaded",
            details={"tried": tried},
        )

    @classmethod
    def dimension_mismatch(cls, expected: int, actual: int) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_DIMENSION_MISMATCH,
            message=f"Expected {expected}-dim vector, got {actual}",
            details={"expected": expected, "actual": actual},
        )


class InternalError(MemplaneError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )

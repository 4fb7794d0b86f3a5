"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (MEMPLANE__SECTION__KEY)
3. Project YAML (.memplane/config.yaml)
4. Global YAML (~/.config/memplane/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    MEMPLANE__<SECTION>__<KEY>=<VALUE>

Examples:
    MEMPLANE__LOGGING__LEVEL=DEBUG
    MEMPLANE__EMBEDDING__MODEL=bge-small-en
    MEMPLANE__VECTOR__MAX_CANDIDATES=5000
    MEMPLANE__CONTEXT__TOKEN_BUDGET=4000
"""

import math
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from memplane.config.constants import DEFAULT_EMBEDDING_MODEL

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
BackendName = Literal["fastembed", "sentence-transformers"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        MEMPLANE__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every candidate fetch.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        MEMPLANE__DATABASE__PATH: SQLite file location
        MEMPLANE__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        MEMPLANE__DATABASE__MAX_RETRIES: Max retry attempts for locked DB
    """

    path: str | None = Field(
        default=None,
        description="SQLite database file. Default: .memplane/memory.db under the project root.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks.",
    )
    max_retries: int = Field(
        default=3,
        description="Max retry attempts for locked database errors.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration.

    Env vars:
        MEMPLANE__EMBEDDING__MODEL: Short model name or fully-qualified hub id
        MEMPLANE__EMBEDDING__DIMENSIONS: Vector size for fully-qualified ids
    """

    model: str = Field(
        default=DEFAULT_EMBEDDING_MODEL,
        description="Short name (all-MiniLM-L6-v2, bge-small-en, jina-code-v2) "
        "or a hub id such as 'org/model'. Unknown short names use the default.",
    )
    dimensions: int | None = Field(
        default=None,
        description="Vector dimension for hub ids. Ignored for short names. "
        "Missing or invalid values fall back to 384.",
    )
    max_input_chars: int = Field(
        default=2000,
        description="Input is truncated to this many characters before encoding.",
    )
    backends: list[BackendName] = Field(
        default_factory=lambda: ["fastembed", "sentence-transformers"],
        description="Backends tried in order; the first that loads wins.",
    )

    @field_validator("dimensions", mode="before")
    @classmethod
    def coerce_dimensions(cls, v: Any) -> int | None:
        if v is None or isinstance(v, bool):
            return None
        try:
            dims = int(v)
        except (TypeError, ValueError):
            return None
        return dims if dims > 0 else None


class VectorConfig(BaseModel):
    """Vector search configuration.

    Env vars:
        MEMPLANE__VECTOR__THRESHOLD: Minimum cosine similarity
        MEMPLANE__VECTOR__MAX_CANDIDATES: Rows scanned per search
    """

    threshold: float = Field(
        default=0.3,
        description="Candidates below this cosine similarity are discarded.",
    )
    max_candidates: int = Field(
        default=2000,
        description="Most recent embeddings considered per search. Bounds CPU and memory "
        "independent of corpus size. TRADEOFF: older items become unreachable semantically.",
    )
    limit: int = Field(
        default=10,
        description="Default number of vector hits returned.",
    )
    backfill_batch_size: int = Field(
        default=50,
        description="Observations embedded per backfill call.",
    )

    @field_validator("max_candidates", "limit", "backfill_batch_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Must be positive, got {v}")
        return v


class Bm25Weights(BaseModel):
    """Per-column BM25 weights for the full-text table."""

    title: float = 10.0
    text: float = 1.0
    narrative: float = 3.0
    concepts: float = 5.0


class LexicalConfig(BaseModel):
    """Keyword search configuration.

    Env vars:
        MEMPLANE__LEXICAL__MAX_QUERY_CHARS: Query length cap
        MEMPLANE__LEXICAL__MAX_QUERY_TOKENS: Token count cap
    """

    max_query_chars: int = Field(
        default=10000,
        description="Queries are cut to this length before tokenizing.",
    )
    max_query_tokens: int = Field(
        default=100,
        description="Only the first N whitespace tokens are searched.",
    )
    default_limit: int = Field(
        default=50,
        description="Default number of keyword hits returned.",
    )
    bm25: Bm25Weights = Field(default_factory=Bm25Weights)


class WeightsConfig(BaseModel):
    """Signal weights. Must sum to 1.0."""

    semantic: float = Field(ge=0.0)
    lexical: float = Field(ge=0.0)
    recency: float = Field(ge=0.0)
    project_match: float = Field(ge=0.0)

    @model_validator(mode="after")
    def validate_sum(self) -> "WeightsConfig":
        total = self.semantic + self.lexical + self.recency + self.project_match
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Weights must sum to 1.0, got {total}")
        return self


class ScoringConfig(BaseModel):
    """Scoring configuration.

    Env vars:
        MEMPLANE__SCORING__RECENCY_HALF_LIFE_HOURS: Age at which recency is 0.5
    """

    recency_half_life_hours: float = Field(
        default=168.0,
        description="Recency half-life (one week).",
        gt=0,
    )
    access_half_life_hours: float = Field(
        default=48.0,
        description="Half-life for last-access recency.",
        gt=0,
    )
    search_weights: WeightsConfig = Field(
        default_factory=lambda: WeightsConfig(
            semantic=0.4, lexical=0.3, recency=0.2, project_match=0.1
        ),
        description="Used when a query is supplied.",
    )
    context_weights: WeightsConfig = Field(
        default_factory=lambda: WeightsConfig(
            semantic=0.0, lexical=0.0, recency=0.7, project_match=0.3
        ),
        description="Used without a query (e.g. session start).",
    )


class ContextConfig(BaseModel):
    """Context assembly configuration.

    Env vars:
        MEMPLANE__CONTEXT__TOKEN_BUDGET: Default token budget
    """

    token_budget: int = Field(
        default=2000,
        description="Default budget (approximate tokens, 4 chars each).",
    )
    max_summaries: int = Field(
        default=3,
        description="Summaries emitted unconditionally ahead of ranked items.",
    )
    summaries_fetch: int = Field(
        default=5,
        description="Summaries loaded from storage per context build.",
    )
    item_content_cap: int = Field(
        default=300,
        description="Per-item content cap in characters.",
    )
    context_candidates: int = Field(
        default=30,
        description="Recent observations considered when no query is given.",
    )
    search_limit: int = Field(
        default=30,
        description="Ranked items retrieved for a context build.",
    )


class MemplaneConfig(BaseModel):
    """Root configuration for memplane.

    All settings can be configured via:
    1. Environment variables: MEMPLANE__SECTION__KEY
    2. YAML config files (project or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector: VectorConfig = Field(default_factory=VectorConfig)
    lexical: LexicalConfig = Field(default_factory=LexicalConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)

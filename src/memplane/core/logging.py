"""Structured logging for the memory engine.

Every module logs through ``structlog.get_logger(__name__)`` with dotted
event names.  ``configure_logging`` routes those events (and stdlib records
from fastembed and friends) into one handler per configured output, each
with its own level and renderer.

Correlation: ``request_scope`` binds a short request id, plus any extra
fields such as the project, into structlog's context variables for the
duration of one retrieval or context build.  Work started inside the scope
(``asyncio.gather`` tasks, ``asyncio.to_thread`` calls) inherits the binding.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog
from structlog.contextvars import (
    bind_contextvars,
    bound_contextvars,
    get_contextvars,
    unbind_contextvars,
)

if TYPE_CHECKING:
    from memplane.config.models import LoggingConfig, LogOutputConfig

REQUEST_ID_KEY = "request_id"

# Chatty at INFO while models download
_NOISY_LOGGERS = (
    "fastembed",
    "sentence_transformers",
    "huggingface_hub",
    "urllib3",
)


# ---------------------------------------------------------------------------
# Request correlation
# ---------------------------------------------------------------------------


def _new_request_id() -> str:
    return uuid4().hex[:12]


def get_request_id() -> str | None:
    value = get_contextvars().get(REQUEST_ID_KEY)
    return str(value) if value is not None else None


def set_request_id(request_id: str | None = None) -> str:
    """Bind (or generate) the request id for the current context."""
    rid = request_id or _new_request_id()
    bind_contextvars(**{REQUEST_ID_KEY: rid})
    return rid


def clear_request_id() -> None:
    unbind_contextvars(REQUEST_ID_KEY)


@contextmanager
def request_scope(request_id: str | None = None, **fields: Any) -> Iterator[str]:
    """Bind a request id and ``fields`` for the block; prior bindings are restored."""
    rid = request_id or _new_request_id()
    with bound_contextvars(**{REQUEST_ID_KEY: rid}, **fields):
        yield rid


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _level(name: str | None, fallback: int) -> int:
    if not name:
        return fallback
    value = logging.getLevelNamesMapping().get(name.upper())
    return value if value is not None else fallback


def configure_logging(
    config: LoggingConfig | None = None,
    *,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Install handlers for ``config.outputs``, replacing any previous ones.

    Without a config a single stderr output is used, rendered as JSON when
    ``json_format`` is set.
    """
    from memplane.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level,
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )
    default_level = _level(config.level, logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(default_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Uncached so a later configure_logging call takes effect everywhere
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(default_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for output in config.outputs:
        root.addHandler(_build_handler(output, _level(output.level, default_level), pre_chain))


def _build_handler(
    output: LogOutputConfig,
    level: int,
    pre_chain: list[structlog.types.Processor],
) -> logging.Handler:
    stream = {"stderr": sys.stderr, "stdout": sys.stdout}.get(output.destination)
    handler: logging.Handler
    if stream is not None:
        handler = logging.StreamHandler(stream)
    else:
        path = Path(output.destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")

    renderer: structlog.types.Processor
    if output.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=stream is not None and stream.isatty(), pad_event_to=0
        )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)
    )
    handler.setLevel(level)
    return handler

# src/lasvpe/core/logging.py
"""Structured logging for LaS-VPE workers.

structlog events and stdlib records go through one ProcessorFormatter, so
``logging.getLogger(__name__)`` output looks like ``structlog.get_logger()``
output. Every event carries the emitting logger's name.

Task context:
    Worker threads handle one record at a time. task_context() binds the
    worker name, channel and task id as contextvars for the duration of one
    record, and every event logged meanwhile (by the runtime, the stage or a
    stdlib logger inside the stage) carries them.

Values:
    Ports, payload models and enums in event fields are rendered as plain
    JSON values, so ``port=Port(...)`` logs ``{"stage": ..., "kind": ...}``.
"""

import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel
from structlog.stdlib import ProcessorFormatter

if TYPE_CHECKING:
    from lasvpe.core.config import LoggingSettings


def _plain_values(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Render pydantic models and enums as JSON values."""
    for key, value in event_dict.items():
        if isinstance(value, BaseModel):
            event_dict[key] = value.model_dump(mode="json")
        elif isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    loggers: Mapping[str, str] | None = None,
) -> None:
    """Configure structlog and stdlib logging for a worker process.

    Args:
        json_output: If True, one JSON object per line; otherwise console text.
        level: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        loggers: Per-logger levels, e.g. {"lasvpe.core.bus": "WARNING"}.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: Any
    if json_output:
        renderer = structlog.processors.JSONRenderer()
        final_processors: list[Any] = [
            ProcessorFormatter.remove_processors_meta,
            _plain_values,
            structlog.processors.format_exc_info,
            renderer,
        ]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
        final_processors = [ProcessorFormatter.remove_processors_meta, _plain_values, renderer]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfiguration (tests, settings reload) must reach existing loggers
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    for name, logger_level in (loggers or {}).items():
        logging.getLogger(name).setLevel(logger_level.upper())


def configure_logging_from_settings(settings: "LoggingSettings") -> None:
    """configure_logging() driven by the ``logging`` section of the settings."""
    configure_logging(json_output=settings.json_output, level=settings.level, loggers=settings.loggers)


@contextmanager
def task_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every event logged by this thread until exit.

    Fields that are None are left out.
    """
    with structlog.contextvars.bound_contextvars(**{k: v for k, v in fields.items() if v is not None}):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Bound structlog logger for a module (typically ``__name__``)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger

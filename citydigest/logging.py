"""Structured logging for the City Digest pipeline.

Pipeline code logs key/value events through structlog. Helpers here build
the shared field sets for stage counts, narrative requests and failures so
every stage reports them under the same names.
"""

import json
import logging
import sys
import time
from typing import Any

import structlog
from structlog import dev, processors, stdlib

from .config import get_settings

# HTTP client chatter from the narrative API stays below WARNING
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def _processor_chain(json_logging: bool) -> list:
    chain = [
        stdlib.filter_by_level,
        stdlib.add_logger_name,
        stdlib.add_log_level,
        processors.TimeStamper(fmt="iso", utc=True),
        processors.StackInfoRenderer(),
        processors.format_exc_info,
    ]
    if json_logging:
        chain.append(processors.JSONRenderer(serializer=json.dumps, default=str))
    else:
        chain.append(dev.ConsoleRenderer(colors=False))
    return chain


def setup_logging(log_level: str | None = None, json_logging: bool | None = None) -> None:
    """Route structlog through stdlib logging on stdout.

    Args:
        log_level: Level name; defaults to ``Settings.log_level``
        json_logging: JSON lines instead of console output; defaults to
            ``Settings.json_logging``
    """
    settings = get_settings()
    level = getattr(logging, (log_level or settings.log_level).upper())
    if json_logging is None:
        json_logging = settings.json_logging

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_processor_chain(json_logging),
        wrapper_class=stdlib.BoundLogger,
        logger_factory=stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LoggingMixin:
    """Gives pipeline components a ``logger`` named after their class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")


def log_narrative_request(
    model: str,
    purpose: str,
    item_count: int,
    duration: float,
    total_tokens: int | None = None
) -> dict[str, Any]:
    """Fields for one completed narrative generation call."""
    entry: dict[str, Any] = {
        "model": model,
        "purpose": purpose,
        "item_count": item_count,
        "duration": round(duration, 3),
    }
    if total_tokens is not None:
        entry["total_tokens"] = total_tokens
    return entry


def log_processing_stage(
    stage: str,
    input_count: int,
    output_count: int,
    duration: float | None = None,
    **kwargs: Any
) -> dict[str, Any]:
    """Fields for a stage that turned ``input_count`` items into ``output_count``.

    Args:
        stage: Stage name (scoring, selection, curation...)
        input_count: Items received
        output_count: Items passed on
        duration: Seconds spent, when measured
        **kwargs: Stage-specific counters

    Returns:
        Log fields including how many items the stage removed
    """
    entry = {
        "stage": stage,
        "input_count": input_count,
        "output_count": output_count,
        "removed": max(0, input_count - output_count),
        **kwargs,
    }
    if duration is not None:
        entry["duration"] = round(duration, 3)
    return entry


def log_error(error: BaseException, context: str | None = None, **kwargs: Any) -> dict[str, Any]:
    """Fields describing a caught exception.

    Errors that carry a ``source_id`` (an open circuit, for instance) report
    it unless the caller already did.
    """
    entry = {
        "error_type": error.__class__.__name__,
        "error_message": str(error) or error.__class__.__name__,
        **kwargs,
    }
    source_id = getattr(error, "source_id", None)
    if source_id is not None:
        entry.setdefault("source_id", source_id)
    if context:
        entry["context"] = context
    return entry


class PerformanceLogger:
    """Times a block, logging its start and outcome.

    The measured time stays on ``duration`` so callers can record it as a
    stage metric.
    """

    def __init__(self, operation: str, logger: structlog.stdlib.BoundLogger):
        self.operation = operation
        self.logger = logger
        self.start_time: float | None = None
        self.duration: float = 0.0

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.info("operation_started", operation=self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        self.duration = time.perf_counter() - self.start_time
        if exc_type is None:
            self.logger.info("operation_completed", operation=self.operation, duration=self.duration)
        else:
            fields = log_error(exc_val) if exc_val is not None else {"error_type": exc_type.__name__}
            self.logger.error(
                "operation_failed", operation=self.operation, duration=self.duration, **fields
            )


# Initialize logging on module import
setup_logging()

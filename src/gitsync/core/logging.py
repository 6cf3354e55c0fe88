"""Structured logging with JSON output and deployment context fields.

Every record carries the correlation id of the request that caused it
and, while a pipeline runs, the repository and trigger id. JSON output
uses python-json-logger; ``LOG_FORMAT=text`` gives a human-readable line.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger import jsonlogger

from gitsync.config import Settings
from gitsync.observability.tracing import get_trace_ids

correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)
repo_ctx: ContextVar[str | None] = ContextVar("repo", default=None)
trigger_id_ctx: ContextVar[str | None] = ContextVar("trigger_id", default=None)

CONTEXT_FIELDS = ("correlation_id", "repo", "trigger_id", "trace_id", "span_id")

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(repo_label)s%(message)s"

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


@contextmanager
def pipeline_context(repo: str, trigger_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with a repository and trigger."""
    repo_token = repo_ctx.set(repo)
    trigger_token = trigger_id_ctx.set(trigger_id)
    try:
        yield
    finally:
        repo_ctx.reset(repo_token)
        trigger_id_ctx.reset(trigger_token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_ctx.get()
        # An explicit ``extra={"repo": ...}`` wins over the ambient one.
        record.repo = getattr(record, "repo", None) or repo_ctx.get()
        record.trigger_id = trigger_id_ctx.get()
        record.trace_id, record.span_id = get_trace_ids()
        record.repo_label = f"[{record.repo}] " if record.repo else ""
        return True


class DeploymentJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that flattens the deployment context into each line."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record.pop("repo_label", None)
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_record[key] = value
            else:
                log_record.pop(key, None)


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return DeploymentJsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(settings: Settings) -> None:
    """Install a single stdout handler on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(settings.log_format))
    handler.addFilter(ContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging configured",
        extra={"log_level": settings.log_level, "log_format": settings.log_format},
    )

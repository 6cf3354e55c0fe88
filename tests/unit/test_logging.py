"""Unit tests for structured log context."""

import json
import logging

from gitsync.core.logging import (
    ContextFilter,
    build_formatter,
    correlation_id_ctx,
    pipeline_context,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("gitsync.test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_pipeline_context_is_scoped() -> None:
    with pipeline_context("my-app", "t-1"):
        inside = _record()
        ContextFilter().filter(inside)
    outside = _record()
    ContextFilter().filter(outside)

    assert (inside.repo, inside.trigger_id) == ("my-app", "t-1")
    assert (outside.repo, outside.trigger_id) == (None, None)


def test_explicit_repo_wins() -> None:
    record = _record(repo="docs")
    with pipeline_context("my-app", "t-1"):
        ContextFilter().filter(record)

    assert record.repo == "docs"


def test_json_line_carries_context() -> None:
    token = correlation_id_ctx.set("req-1")
    try:
        with pipeline_context("my-app", "t-1"):
            record = _record()
            ContextFilter().filter(record)
    finally:
        correlation_id_ctx.reset(token)

    line = json.loads(build_formatter("json").format(record))

    assert line["message"] == "hello"
    assert line["level"] == "INFO"
    assert line["correlation_id"] == "req-1"
    assert line["repo"] == "my-app"
    assert "span_id" not in line


def test_text_format_prefixes_repo() -> None:
    with pipeline_context("my-app", "t-1"):
        record = _record()
        ContextFilter().filter(record)

    assert "[my-app] hello" in build_formatter("text").format(record)

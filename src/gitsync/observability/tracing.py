"""OpenTelemetry wiring for pipeline runs and the HTTP surface.

Spans are always created through the API; they are only exported when
an OTLP endpoint is configured and the ``otlp`` extra is installed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span

logger = logging.getLogger(__name__)

TRACER_NAME = "gitsync"

_provider: TracerProvider | None = None


def init_tracing(service_name: str, otlp_endpoint: str = "") -> TracerProvider:
    """Install the global tracer provider once per process."""
    global _provider
    if _provider is not None:
        return _provider

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    endpoint = otlp_endpoint.strip().rstrip("/")
    if endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning(
                "OTLP exporter not installed, spans will not be exported",
                extra={"endpoint": endpoint},
            )
        else:
            exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces")
            provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info("Exporting traces", extra={"endpoint": endpoint})

    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def instrument_fastapi(app: Any) -> bool:
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    except ImportError:
        logger.debug("FastAPI instrumentation not installed")
        return False
    FastAPIInstrumentor.instrument_app(app)
    return True


def get_trace_ids() -> tuple[str | None, str | None]:
    """Hex trace and span ids of the active span, if one is recording."""
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return None, None
    return f"{ctx.trace_id:032x}", f"{ctx.span_id:016x}"


@contextmanager
def start_span(name: str, *, attributes: dict[str, Any] | None = None) -> Iterator[Span]:
    """Start a span; ``None`` attribute values are dropped."""
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span

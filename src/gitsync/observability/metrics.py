from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram
from prometheus_client.exposition import generate_latest

_DURATION_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0)


@dataclass(frozen=True)
class PrometheusMetrics:
    registry: CollectorRegistry
    http_requests_total: Counter
    http_request_duration_seconds: Histogram
    triggers_total: Counter
    pipeline_runs_total: Counter
    pipeline_duration_seconds: Histogram
    step_duration_seconds: Histogram
    step_failures_total: Counter
    queued_superseded_total: Counter
    poll_checks_total: Counter
    pipelines_running: Gauge


_REGISTRY = CollectorRegistry(auto_describe=True)

METRICS = PrometheusMetrics(
    registry=_REGISTRY,
    http_requests_total=Counter(
        "gitsync_http_requests_total",
        "Total HTTP requests by method/route/status",
        labelnames=("method", "route", "status"),
        registry=_REGISTRY,
    ),
    http_request_duration_seconds=Histogram(
        "gitsync_http_request_duration_seconds",
        "HTTP request duration in seconds by route/method",
        labelnames=("route", "method"),
        registry=_REGISTRY,
    ),
    triggers_total=Counter(
        "gitsync_triggers_total",
        "Deployment triggers by source and outcome",
        labelnames=("source", "outcome"),
        registry=_REGISTRY,
    ),
    pipeline_runs_total=Counter(
        "gitsync_pipeline_runs_total",
        "Total pipeline runs by outcome",
        labelnames=("outcome",),
        registry=_REGISTRY,
    ),
    pipeline_duration_seconds=Histogram(
        "gitsync_pipeline_duration_seconds",
        "Pipeline duration in seconds",
        registry=_REGISTRY,
        buckets=_DURATION_BUCKETS,
    ),
    step_duration_seconds=Histogram(
        "gitsync_step_duration_seconds",
        "Pipeline step duration in seconds by step",
        labelnames=("step",),
        registry=_REGISTRY,
        buckets=_DURATION_BUCKETS,
    ),
    step_failures_total=Counter(
        "gitsync_step_failures_total",
        "Failed pipeline steps by step",
        labelnames=("step",),
        registry=_REGISTRY,
    ),
    queued_superseded_total=Counter(
        "gitsync_queued_trigger_superseded_total",
        "Queued triggers replaced by a newer trigger before starting",
        registry=_REGISTRY,
    ),
    poll_checks_total=Counter(
        "gitsync_poll_checks_total",
        "Poll update checks by outcome",
        labelnames=("outcome",),
        registry=_REGISTRY,
    ),
    pipelines_running=Gauge(
        "gitsync_pipelines_running",
        "Pipelines currently executing",
        registry=_REGISTRY,
    ),
)


def render_prometheus() -> tuple[bytes, str]:
    return generate_latest(METRICS.registry), CONTENT_TYPE_LATEST


def observe_http_request(*, method: str, route: str, status: str, duration_seconds: float) -> None:
    METRICS.http_requests_total.labels(method=method, route=route, status=status).inc()
    METRICS.http_request_duration_seconds.labels(route=route, method=method).observe(
        duration_seconds
    )


def record_trigger(*, source: str, outcome: str) -> None:
    METRICS.triggers_total.labels(source=source, outcome=outcome).inc()


def record_step(*, step: str, success: bool, duration_seconds: float) -> None:
    METRICS.step_duration_seconds.labels(step=step).observe(duration_seconds)
    if not success:
        METRICS.step_failures_total.labels(step=step).inc()


def record_pipeline(*, outcome: str, duration_seconds: float) -> None:
    METRICS.pipeline_runs_total.labels(outcome=outcome).inc()
    METRICS.pipeline_duration_seconds.observe(duration_seconds)

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_REQ_COUNT = Counter(
    "pgplane_http_requests_total",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
_REQ_LATENCY = Histogram(
    "pgplane_http_request_duration_seconds",
    "HTTP request latency seconds",
    labelnames=("method", "path"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0),
)
_PROBES = Counter(
    "pgplane_connection_probes_total",
    "Live connection tests against managed nodes",
    labelnames=("result",),
)
_ROLE_CHANGES = Counter(
    "pgplane_node_role_changes_total",
    "Node role transitions applied by reconciliation",
    labelnames=("transition",),
)


def observe_http_request(*, method: str, path: str, status: int, duration_seconds: float) -> None:
    _REQ_COUNT.labels(method=method, path=path, status=str(status)).inc()
    _REQ_LATENCY.labels(method=method, path=path).observe(duration_seconds)


def observe_connection_probe(*, success: bool) -> None:
    _PROBES.labels(result="ok" if success else "error").inc()


def record_role_change(*, promoted: int, demoted: int) -> None:
    if promoted:
        _ROLE_CHANGES.labels(transition="promote").inc(promoted)
    if demoted:
        _ROLE_CHANGES.labels(transition="demote").inc(demoted)


def render_metrics() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

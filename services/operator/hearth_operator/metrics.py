"""Prometheus metrics for the operator."""

from prometheus_client import Counter, Gauge, Histogram

reconcile_total = Counter(
    "hearth_reconcile_total",
    "Total reconcile passes",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "hearth_reconcile_duration_seconds",
    "Reconcile pass duration in seconds",
)

workqueue_depth = Gauge(
    "hearth_workqueue_depth",
    "Keys waiting in the work queue",
)

rcon_queries_total = Counter(
    "hearth_rcon_queries_total",
    "Total player list queries over RCON",
    ["result"],
)

events_published_total = Counter(
    "hearth_events_published_total",
    "Total state events handed to the broker",
    ["result"],
)

"""Prometheus metrics for the sync service."""

from prometheus_client import Counter, Enum, Gauge

cache_entries = Gauge(
    "hearth_sync_cache_entries",
    "Servers held in the status cache",
)

changes_total = Counter(
    "hearth_sync_changes_total",
    "Cache changes applied",
    ["type"],
)

sync_mode = Enum(
    "hearth_sync_mode",
    "How the sync service learns about state changes",
    states=["starting", "subscribed", "polling"],
)

persistence_failures_total = Counter(
    "hearth_sync_persistence_failures_total",
    "Status store writes that failed and were deferred",
)

stale_events_total = Counter(
    "hearth_sync_stale_events_total",
    "Events dropped because the cache already held newer state",
)

"""Prometheus metrics for rule sync runs."""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

registry = CollectorRegistry()

sync_runs_total = Counter(
    "rule_sync_runs_total",
    "Sync runs by final status",
    ["status"],
    registry=registry,
)

sync_files_total = Counter(
    "rule_sync_files_total",
    "Rule files processed by outcome",
    ["outcome"],
    registry=registry,
)

sync_duration_seconds = Histogram(
    "rule_sync_duration_seconds",
    "Wall-clock duration of sync runs",
    buckets=(10, 30, 60, 120, 300, 600, 1200, 1800, 3600),
    registry=registry,
)

sync_last_success_timestamp = Gauge(
    "rule_sync_last_success_timestamp",
    "Unix time of the last completed sync run",
    registry=registry,
)

sync_running = Gauge(
    "rule_sync_running",
    "Whether a sync run is in progress (1=running, 0=idle)",
    registry=registry,
)

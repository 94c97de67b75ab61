"""Prometheus metrics for SiteKeeper.

All collectors are registered on the default registry and exposed by the
``/metrics`` endpoint of the health API.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Event cache
# ---------------------------------------------------------------------------

cache_objects = Gauge(
    "sitekeeper_cache_objects",
    "Number of Website objects held by the event cache",
)
cache_synced = Gauge(
    "sitekeeper_cache_synced",
    "1 once the initial list has been applied to the event cache",
)
cache_relists_total = Counter(
    "sitekeeper_cache_relists_total",
    "Full list calls performed by the event cache",
    ["outcome"],
)
cache_watch_restarts_total = Counter(
    "sitekeeper_cache_watch_restarts_total",
    "Watch streams that terminated and forced a relist",
    ["reason"],
)

# ---------------------------------------------------------------------------
# Delta detector
# ---------------------------------------------------------------------------

events_total = Counter(
    "sitekeeper_events_total",
    "Observed cache events by type and outcome (enqueued or suppressed)",
    ["type", "outcome"],
)

# ---------------------------------------------------------------------------
# Work queue
# ---------------------------------------------------------------------------

workqueue_depth = Gauge(
    "sitekeeper_workqueue_depth",
    "Identities ready to be reconciled",
)
workqueue_adds_total = Counter(
    "sitekeeper_workqueue_adds_total",
    "Identities inserted into the work queue (coalesced adds excluded)",
)
workqueue_retries_total = Counter(
    "sitekeeper_workqueue_retries_total",
    "Delayed re-adds scheduled on the work queue",
)

# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

reconcile_total = Counter(
    "sitekeeper_reconcile_total",
    "Reconcile passes by outcome",
    ["outcome"],
)
reconcile_duration_seconds = Histogram(
    "sitekeeper_reconcile_duration_seconds",
    "Wall-clock duration of one reconcile pass",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
reconcile_actions_total = Counter(
    "sitekeeper_reconcile_actions_total",
    "Convergence actions applied to workloads",
    ["action"],
)
status_writes_total = Counter(
    "sitekeeper_status_writes_total",
    "Status sub-resource writes by outcome",
    ["outcome"],
)

"""
Prometheus metrics definitions for the GitHub search connector.

Naming conventions: snake_case, graph_connector_ prefix.
"""

from prometheus_client import Counter, Histogram

# ==============================================================================
# COUNTERS
# ==============================================================================

rate_limit_retries_total = Counter(
    "graph_connector_rate_limit_retries_total",
    "Upstream reads retried after a rate-limit response",
    ["source"],
    # source: github
)

operation_polls_total = Counter(
    "graph_connector_operation_polls_total",
    "Status-check requests issued for long-running operations",
)

operation_outcomes_total = Counter(
    "graph_connector_operation_outcomes_total",
    "Terminal outcomes of long-running operations",
    ["outcome"],
    # outcome: succeeded, failed, timed_out
)

lifecycle_signals_total = Counter(
    "graph_connector_lifecycle_signals_total",
    "Inbound lifecycle signals by reconciliation result",
    ["result"],
    # result: created, already-exists-noop, deleted, already-absent-noop, discarded, error
)

items_pushed_total = Counter(
    "graph_connector_items_pushed_total",
    "Items upserted into the search connection",
    ["kind", "status"],
    # kind: issues, repos
    # status: success, failed
)

# ==============================================================================
# HISTOGRAMS
# ==============================================================================

operation_duration_seconds = Histogram(
    "graph_connector_operation_duration_seconds",
    "Wall-clock time from operation accept to terminal state",
    buckets=[1, 10, 30, 60, 120, 300, 600, 1200, 1800],
)

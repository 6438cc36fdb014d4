"""Prometheus metrics for the note editor.

All metric objects are defined here so they can be imported from any module.
"""

from prometheus_client import Counter, Gauge

# ---------------------------------------------------------------------------
# History metrics
# ---------------------------------------------------------------------------

HISTORY_OPERATIONS = Counter(
    "editor_history_operations_total",
    "Undo/redo history operations",
    ["operation"],  # push, undo, redo, clear, evict
)

UNDO_DEPTH = Gauge(
    "editor_undo_depth",
    "Number of entries on the undo stack",
)

# ---------------------------------------------------------------------------
# Commit metrics
# ---------------------------------------------------------------------------

COMMITS = Counter(
    "editor_commits_total",
    "Debounced text-edit commits",
    ["outcome"],  # committed, noop
)

PERSIST_FAILURES = Counter(
    "editor_persist_failures_total",
    "Note writes rejected by the key-value store",
)

# ---------------------------------------------------------------------------
# Reconciliation metrics
# ---------------------------------------------------------------------------

RECONCILIATIONS = Counter(
    "editor_reconciliations_total",
    "Structural mutations driven through the toggle reconciler",
    ["outcome"],  # applied, dropped, failed, invalid, noop
)

REGION_RESTORES = Counter(
    "editor_region_restores_total",
    "Per-region scroll restoration attempts",
    ["outcome"],  # restored, stale, missing
)

from __future__ import annotations

from prometheus_client import Counter, Histogram

SYNC_OPERATIONS = Counter(
    "vendor_sync_operations_total",
    "Vendor lifecycle operations by final outcome",
    labelnames=("operation", "outcome"),
)

OUTBOX_ENTRIES_ENQUEUED = Counter(
    "vendor_sync_outbox_entries_enqueued_total",
    "Outbox entries written after a partial failure",
    labelnames=("entry_type",),
)

OUTBOX_REPLAYS = Counter(
    "vendor_sync_outbox_replays_total",
    "Outbox replay attempts by entry type and outcome",
    labelnames=("entry_type", "outcome"),
)

OUTBOX_EXHAUSTED = Counter(
    "vendor_sync_outbox_exhausted_total",
    "Outbox entries that reached the maximum number of attempts",
    labelnames=("entry_type",),
)

COMPENSATIONS = Counter(
    "vendor_sync_compensations_total",
    "Compensating actions executed by sagas",
    labelnames=("step", "outcome"),
)

IDENTITY_PROVIDER_LATENCY = Histogram(
    "vendor_sync_identity_provider_request_duration_seconds",
    "Latency of identity provider admin API calls",
    labelnames=("operation",),
)

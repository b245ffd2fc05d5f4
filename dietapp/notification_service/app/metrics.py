"""Prometheus metrics for the notification service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

# Delivery lifecycle ------------------------------------------------------------------------
NOTIFICATION_DELIVERIES_TOTAL: Final = Counter(
    "notification_deliveries_total",
    "Push deliveries attempted, by channel and outcome (sent, transient_failure, dead).",
    labelnames=("channel", "outcome"),
)

NOTIFICATION_DELIVERY_LATENCY_SECONDS: Final = Histogram(
    "notification_delivery_latency_seconds",
    "Time taken by a channel adapter to hand one notification to its provider.",
    labelnames=("channel",),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

NOTIFICATION_SUBSCRIPTIONS_PRUNED_TOTAL: Final = Counter(
    "notification_subscriptions_pruned_total",
    "Subscriptions deleted after the provider reported the endpoint as dead.",
    labelnames=("channel",),
)

NOTIFICATION_OPT_OUT_TOTAL: Final = Counter(
    "notification_opt_out_total",
    "Dispatches skipped because the recipient turned the notification kind off.",
    labelnames=("kind",),
)

# Triggers ---------------------------------------------------------------------------------
NOTIFICATION_TRIGGER_RUNS_TOTAL: Final = Counter(
    "notification_trigger_runs_total",
    "Scheduling trigger invocations.",
    labelnames=("trigger",),
)

NOTIFICATION_TRIGGER_CANDIDATES_TOTAL: Final = Counter(
    "notification_trigger_candidates_total",
    "Eligible candidates found by scheduling triggers.",
    labelnames=("trigger",),
)

# Sent-log ---------------------------------------------------------------------------------
NOTIFICATION_DUPLICATES_SKIPPED_TOTAL: Final = Counter(
    "notification_duplicates_skipped_total",
    "Candidates skipped because the sent-log already holds them for the day.",
    labelnames=("kind",),
)

NOTIFICATION_SENT_LOG_ERRORS_TOTAL: Final = Counter(
    "notification_sent_log_errors_total",
    "Number of sent-log Redis errors handled by the service.",
    labelnames=("operation",),
)

"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


OPERATIONS_TOTAL = "marketplace_operations_total"
OPERATION_DURATION = "marketplace_operation_duration_seconds"
AUDIT_WRITE_FAILURES = "audit_write_failures_total"
NOTIFICATION_FAILURES = "notification_failures_total"
TICKETS_SOLD = "listing_tickets_sold_total"

DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=OPERATIONS_TOTAL,
        metric_type="counter",
        description="Marketplace operations by outcome (ok or the error kind).",
        label_names=("operation", "outcome"),
    ),
    MetricDefinition(
        name=OPERATION_DURATION,
        metric_type="distribution",
        description="Duration of marketplace operations in seconds.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=AUDIT_WRITE_FAILURES,
        metric_type="counter",
        description="Audit events that could not be persisted.",
    ),
    MetricDefinition(
        name=NOTIFICATION_FAILURES,
        metric_type="counter",
        description="Notifications whose dispatch raised.",
    ),
    MetricDefinition(
        name=TICKETS_SOLD,
        metric_type="counter",
        description="Tickets recorded as sold across all listings.",
    ),
)

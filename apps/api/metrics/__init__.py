"""Application wide metrics utilities."""
from .base import CounterMetric, DistributionMetric, track_duration
from .definitions import (
    AUDIT_WRITE_FAILURES,
    DEFAULT_METRIC_DEFINITIONS,
    NOTIFICATION_FAILURES,
    OPERATION_DURATION,
    OPERATIONS_TOTAL,
    TICKETS_SOLD,
    MetricDefinition,
)
from .exporters import PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> None:
    """Ensure all default metric definitions exist in the registry."""
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        if definition.metric_type == "counter":
            target.counter(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        elif definition.metric_type == "distribution":
            target.distribution(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        else:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")


register_default_metrics()

__all__ = [
    "AUDIT_WRITE_FAILURES",
    "CounterMetric",
    "DistributionMetric",
    "MetricDefinition",
    "MetricsRegistry",
    "NOTIFICATION_FAILURES",
    "OPERATIONS_TOTAL",
    "OPERATION_DURATION",
    "PrometheusExporter",
    "TICKETS_SOLD",
    "metrics_registry",
    "register_default_metrics",
    "track_duration",
]

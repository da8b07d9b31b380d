"""Metric classification helpers."""

from .classifier import (
    ClassifiedMetric,
    Severity,
    SnapshotMetrics,
    classify_disk_rate,
    classify_disk_usage,
    classify_load_average,
    classify_memory_usage,
    classify_network_rate,
    classify_snapshot,
    format_bytes,
    format_duration,
    format_rate,
)

__all__ = [
    "ClassifiedMetric",
    "Severity",
    "SnapshotMetrics",
    "classify_disk_rate",
    "classify_disk_usage",
    "classify_load_average",
    "classify_memory_usage",
    "classify_network_rate",
    "classify_snapshot",
    "format_bytes",
    "format_duration",
    "format_rate",
]

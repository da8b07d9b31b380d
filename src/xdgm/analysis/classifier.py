"""Severity tiers and human-readable formatting for node metrics.

All functions are pure: they take already decoded numbers and return a
:class:`ClassifiedMetric` pairing a :class:`Severity` with the text a
display would show.  Thresholds are fixed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
from typing import Sequence

from ..telemetry.decoder import RateStat, TelemetrySnapshot

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


MIB = 1024 * 1024

_BYTE_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")
_RATE_UNITS = tuple(f"{unit}/s" for unit in _BYTE_UNITS)

_DURATION_UNITS: tuple[tuple[int, str], ...] = (
    (31_536_000_000_000, "year"),
    (2_592_000_000_000, "month"),
    (86_400_000_000, "day"),
    (3_600_000_000, "hour"),
    (60_000_000, "minute"),
    (1_000_000, "second"),
    (1_000, "millisecond"),
    (1, "microsecond"),
)

NETWORK_CAUTION_MIBPS = 100.0
NETWORK_CRITICAL_MIBPS = 120.0
DISK_CAUTION_MIBPS = 500.0
DISK_CRITICAL_MIBPS = 1000.0
LOAD_CAUTION_RATIO = 0.6
LOAD_CRITICAL_RATIO = 0.8
MEMORY_CAUTION_PERCENT = 75.0
MEMORY_CRITICAL_PERCENT = 90.0
DISK_USAGE_CAUTION_PERCENT = 80.0
DISK_USAGE_CRITICAL_PERCENT = 95.0


class Severity(str, Enum):
    NORMAL = "normal"
    CAUTION = "caution"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.NORMAL: 0, Severity.CAUTION: 1, Severity.CRITICAL: 2}


@dataclass(frozen=True, slots=True)
class ClassifiedMetric:
    severity: Severity
    text: str


def _scaled(value: float, units: Sequence[str]) -> str:
    if not math.isfinite(value) or value <= 0:
        return f"0 {units[0]}"
    index = 0
    scaled = float(value)
    while scaled >= 1024 and index < len(units) - 1:
        scaled /= 1024
        index += 1
    return f"{scaled:.2f} {units[index]}"


def format_bytes(value: float) -> str:
    """Format ``value`` bytes with 1024-based units (``1536`` → ``1.50 KiB``)."""

    return _scaled(value, _BYTE_UNITS)


def format_rate(bytes_per_second: float) -> str:
    return _scaled(bytes_per_second, _RATE_UNITS)


def format_duration(microseconds: int) -> str:
    """Render a microsecond counter using its largest whole unit.

    The value keeps one decimal place and the unit is pluralised unless the
    rendered value is exactly ``1.0``.
    """

    if microseconds <= 0:
        return "0 microseconds"
    for divisor, unit in _DURATION_UNITS:
        if microseconds >= divisor:
            rendered = f"{microseconds / divisor:.1f}"
            suffix = "" if rendered == "1.0" else "s"
            return f"{rendered} {unit}{suffix}"
    # Fractional microseconds are below every divisor.
    return f"{microseconds:.1f} microseconds"


def _percent(used: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return used / total * 100.0


def classify_network_rate(bytes_per_second: float) -> ClassifiedMetric:
    """A silent interface is as alarming as a saturated one."""

    text = format_rate(bytes_per_second)
    rate = bytes_per_second / MIB
    if bytes_per_second == 0 or rate > NETWORK_CRITICAL_MIBPS:
        return ClassifiedMetric(Severity.CRITICAL, text)
    if rate > NETWORK_CAUTION_MIBPS:
        return ClassifiedMetric(Severity.CAUTION, text)
    return ClassifiedMetric(Severity.NORMAL, text)


def classify_disk_rate(bytes_per_second: float) -> ClassifiedMetric:
    """Zero disk throughput is normal for memory-backed node stores."""

    text = format_rate(bytes_per_second)
    rate = bytes_per_second / MIB
    if bytes_per_second == 0:
        return ClassifiedMetric(Severity.NORMAL, text)
    if rate > DISK_CRITICAL_MIBPS:
        return ClassifiedMetric(Severity.CRITICAL, text)
    if rate > DISK_CAUTION_MIBPS:
        return ClassifiedMetric(Severity.CAUTION, text)
    return ClassifiedMetric(Severity.NORMAL, text)


def classify_load_average(load: float, cpu_cores: int) -> ClassifiedMetric:
    text = f"{load:.2f}"
    ratio = load / max(int(cpu_cores), 1)
    if ratio >= LOAD_CRITICAL_RATIO:
        return ClassifiedMetric(Severity.CRITICAL, text)
    if ratio >= LOAD_CAUTION_RATIO:
        return ClassifiedMetric(Severity.CAUTION, text)
    return ClassifiedMetric(Severity.NORMAL, text)


def classify_memory_usage(used: float, total: float) -> ClassifiedMetric:
    text = format_bytes(used)
    percent = _percent(used, total)
    if percent >= MEMORY_CRITICAL_PERCENT:
        return ClassifiedMetric(Severity.CRITICAL, text)
    if percent >= MEMORY_CAUTION_PERCENT:
        return ClassifiedMetric(Severity.CAUTION, text)
    return ClassifiedMetric(Severity.NORMAL, text)


def classify_disk_usage(used: float, total: float) -> ClassifiedMetric:
    text = format_bytes(used)
    percent = _percent(used, total)
    if percent >= DISK_USAGE_CRITICAL_PERCENT:
        return ClassifiedMetric(Severity.CRITICAL, text)
    if percent >= DISK_USAGE_CAUTION_PERCENT:
        return ClassifiedMetric(Severity.CAUTION, text)
    return ClassifiedMetric(Severity.NORMAL, text)


RateRow = tuple[ClassifiedMetric, ClassifiedMetric, ClassifiedMetric, ClassifiedMetric]


@dataclass(frozen=True, slots=True)
class SnapshotMetrics:
    """Display-ready classification of one :class:`TelemetrySnapshot`."""

    load_averages: tuple[ClassifiedMetric, ClassifiedMetric, ClassifiedMetric]
    process_memory: ClassifiedMetric
    system_memory: ClassifiedMetric
    disk_usage: ClassifiedMetric
    network_in: RateRow
    network_out: RateRow
    disk_read: RateRow
    disk_write: RateRow

    def all(self) -> tuple[ClassifiedMetric, ...]:
        return (
            *self.load_averages,
            self.process_memory,
            self.system_memory,
            self.disk_usage,
            *self.network_in,
            *self.network_out,
            *self.disk_read,
            *self.disk_write,
        )

    @property
    def worst(self) -> Severity:
        return max((metric.severity for metric in self.all()), key=lambda item: item.rank)


def _rate_row(stat: RateStat, classifier) -> RateRow:
    one, five, hour, day = (classifier(value) for value in stat.windows())
    return (one, five, hour, day)


def classify_snapshot(snapshot: TelemetrySnapshot) -> SnapshotMetrics:
    cores = snapshot.cpu_cores
    one, five, fifteen = snapshot.load_averages
    return SnapshotMetrics(
        load_averages=(
            classify_load_average(one, cores),
            classify_load_average(five, cores),
            classify_load_average(fifteen, cores),
        ),
        process_memory=classify_memory_usage(
            snapshot.process_memory_bytes, snapshot.system_memory_total
        ),
        system_memory=classify_memory_usage(
            snapshot.system_memory_used, snapshot.system_memory_total
        ),
        disk_usage=classify_disk_usage(snapshot.system_disk_used, snapshot.system_disk_total),
        network_in=_rate_row(snapshot.network_in, classify_network_rate),
        network_out=_rate_row(snapshot.network_out, classify_network_rate),
        disk_read=_rate_row(snapshot.disk_read, classify_disk_rate),
        disk_write=_rate_row(snapshot.disk_write, classify_disk_rate),
    )

"""Field-offset tables for the XDGM datagram revisions.

Ledger servers have shipped at least three incompatible orderings of the
same telemetry record.  Nothing inside a datagram reliably tells them
apart: the ``version`` field did not always change together with the byte
layout.  Each revision is therefore described by a :class:`LayoutTable`
and the caller chooses the table through :class:`LayoutVersion`; the
decoder itself is a single skeleton that walks whichever table it is
given.

Offsets are absolute positions inside the datagram.  All multi-byte
fields are little-endian.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

__all__ = [
    "DEBUG_COUNTER_FIELDS",
    "DEBUG_COUNTERS_SIZE",
    "FieldKind",
    "FieldSpec",
    "LEDGER_RANGE_SIZE",
    "LayoutTable",
    "LayoutVersion",
    "OBJECT_COUNT_NAME_SIZE",
    "OBJECT_COUNT_RECORD_SIZE",
    "XDGM_MAGIC",
    "layout_table",
    "parse_layout_version",
]


XDGM_MAGIC = 0x4D474458  # "XDGM" read as a little-endian uint32

LEDGER_RANGE_SIZE = 8
OBJECT_COUNT_NAME_SIZE = 56
OBJECT_COUNT_RECORD_SIZE = OBJECT_COUNT_NAME_SIZE + 8


class LayoutVersion(str, Enum):
    """Known wire layouts, selected externally."""

    XDGM_V1 = "xdgm-v1"
    XDGM_V1_EXTENDED = "xdgm-v1-extended"
    LEGACY_V0 = "legacy-v0"


class FieldKind(Enum):
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    F64 = "f64"
    RAW = "raw"
    TEXT = "text"


_KIND_WIDTHS: Mapping[FieldKind, int] = {
    FieldKind.U16: 2,
    FieldKind.U32: 4,
    FieldKind.U64: 8,
    FieldKind.F64: 8,
}


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Position of one decoded field.

    ``count`` greater than one decodes a tuple of consecutive values.
    ``size`` is only meaningful for :attr:`FieldKind.RAW` and
    :attr:`FieldKind.TEXT` fields.
    """

    name: str
    offset: int
    kind: FieldKind
    count: int = 1
    size: int = 0

    @property
    def width(self) -> int:
        if self.kind in (FieldKind.RAW, FieldKind.TEXT):
            return self.size
        return _KIND_WIDTHS[self.kind] * self.count

    @property
    def end(self) -> int:
        return self.offset + self.width


@dataclass(frozen=True, slots=True)
class LayoutTable:
    version: LayoutVersion
    header_size: int
    fields: tuple[FieldSpec, ...]
    magic: int | None = None
    accepted_versions: frozenset[int] | None = None
    range_count_field: str | None = None
    has_object_table: bool = False
    debug_counters_offset: int | None = None

    @property
    def trailing_range(self) -> bool:
        """Layouts without a count field carry one range at the buffer end."""

        return self.range_count_field is None


def _u32(name: str, offset: int) -> FieldSpec:
    return FieldSpec(name, offset, FieldKind.U32)


def _u64(name: str, offset: int, count: int = 1) -> FieldSpec:
    return FieldSpec(name, offset, FieldKind.U64, count=count)


def _f64(name: str, offset: int, count: int = 1) -> FieldSpec:
    return FieldSpec(name, offset, FieldKind.F64, count=count)


def _counters(offset: int) -> tuple[FieldSpec, ...]:
    names = (
        "timestamp",
        "uptime",
        "io_latency_us",
        "validation_quorum",
        "fetch_pack_size",
        "proposer_count",
        "converge_time_ms",
        "load_factor",
        "load_base",
        "reserve_base",
        "reserve_inc",
        "ledger_seq",
    )
    return tuple(_u64(name, offset + 8 * index) for index, name in enumerate(names))


def _system_metrics(offset: int) -> tuple[FieldSpec, ...]:
    names = (
        "process_memory_pages",
        "system_memory_total",
        "system_memory_free",
        "system_memory_used",
        "system_disk_total",
        "system_disk_free",
        "system_disk_used",
        "io_wait_time",
    )
    specs = tuple(_u64(name, offset + 8 * index) for index, name in enumerate(names))
    return specs + (_f64("load_averages", offset + 64, count=3),)


def _rates(offset: int) -> tuple[FieldSpec, ...]:
    names = ("network_in", "network_out", "disk_read", "disk_write")
    return tuple(_f64(name, offset + 32 * index, count=4) for index, name in enumerate(names))


_XDGM_V1_FIELDS: tuple[FieldSpec, ...] = (
    _u32("magic", 0),
    _u32("version", 4),
    _u32("network_id", 8),
    _u32("server_state", 12),
    _u32("peer_count", 16),
    _u32("node_size", 20),
    _u32("cpu_cores", 24),
    _u32("ledger_range_count", 28),
    _u32("warning_flags", 32),
    # 4 bytes alignment padding
    *_counters(40),
    FieldSpec("ledger_hash", 136, FieldKind.RAW, size=32),
    FieldSpec("node_public_key", 168, FieldKind.RAW, size=33),
    # 7 bytes padding
    *_system_metrics(208),
    _u64("state_transitions", 296, count=5),
    _u64("state_durations", 336, count=5),
    _u64("initial_sync_us", 376),
    *_rates(384),
)

_XDGM_V1_EXTENDED_FIELDS: tuple[FieldSpec, ...] = (
    *_XDGM_V1_FIELDS[:23],
    FieldSpec("version_string", 208, FieldKind.TEXT, size=32),
    *_system_metrics(240),
    _u64("state_transitions", 328, count=5),
    _u64("state_durations", 368, count=5),
    _u64("initial_sync_us", 408),
    *_rates(416),
)

_LEGACY_V0_FIELDS: tuple[FieldSpec, ...] = (
    _u32("version", 0),
    _u32("network_id", 4),
    _u32("server_state", 8),
    _u32("peer_count", 12),
    _u32("node_size", 16),
    _u32("cpu_cores", 20),
    FieldSpec("warning_flags", 24, FieldKind.U16),
    # 2 bytes padding
    *_counters(28),
    FieldSpec("ledger_hash", 124, FieldKind.RAW, size=32),
    FieldSpec("node_public_key", 156, FieldKind.RAW, size=33),
    # 3 bytes padding
    FieldSpec("version_string", 192, FieldKind.TEXT, size=32),
    *_system_metrics(224),
    *_rates(312),
)


# Offsets relative to ``LayoutTable.debug_counters_offset``.
DEBUG_COUNTER_FIELDS: tuple[FieldSpec, ...] = (
    _u64("node_reads_total", 0),
    _u64("node_reads_hit", 8),
    _u64("node_reads_duration_us", 16),
    _u64("node_writes", 24),
    _u64("node_written_bytes", 32),
    _u64("node_read_bytes", 40),
    _u64("read_queue", 48),
    _u64("read_request_bundle", 56),
    _u64("read_threads_running", 64),
    _u64("read_threads_total", 72),
    _u64("write_load", 80),
    _u64("historical_per_minute", 88),
    _f64("sle_hit_rate", 96),
    _f64("ledger_hit_rate", 104),
    _u64("accepted_ledger_cache_size", 112),
    _f64("accepted_ledger_hit_rate", 120),
    _u64("fullbelow_size", 128),
    _u64("treenode_cache_size", 136),
    _u64("treenode_track_size", 144),
    _u64("local_tx_count", 152),
    _u64("db_kb_total", 160),
    _u64("db_kb_ledger", 168),
    _u64("db_kb_transaction", 176),
    _u64("job_queue_count", 184),
    _u64("job_queue_threads", 192),
)
DEBUG_COUNTERS_SIZE = DEBUG_COUNTER_FIELDS[-1].end


_TABLES: Mapping[LayoutVersion, LayoutTable] = {
    LayoutVersion.XDGM_V1: LayoutTable(
        version=LayoutVersion.XDGM_V1,
        header_size=512,
        fields=_XDGM_V1_FIELDS,
        magic=XDGM_MAGIC,
        accepted_versions=frozenset({1}),
        range_count_field="ledger_range_count",
        has_object_table=True,
    ),
    LayoutVersion.XDGM_V1_EXTENDED: LayoutTable(
        version=LayoutVersion.XDGM_V1_EXTENDED,
        header_size=544 + DEBUG_COUNTERS_SIZE,
        fields=_XDGM_V1_EXTENDED_FIELDS,
        magic=XDGM_MAGIC,
        accepted_versions=frozenset({1, 2}),
        range_count_field="ledger_range_count",
        has_object_table=True,
        debug_counters_offset=544,
    ),
    LayoutVersion.LEGACY_V0: LayoutTable(
        version=LayoutVersion.LEGACY_V0,
        header_size=440,
        fields=_LEGACY_V0_FIELDS,
    ),
}


def layout_table(version: LayoutVersion | str) -> LayoutTable:
    """Return the offset table for ``version``."""

    return _TABLES[parse_layout_version(version)]


def parse_layout_version(value: LayoutVersion | str) -> LayoutVersion:
    """Coerce ``value`` into a :class:`LayoutVersion`.

    Accepts the enum itself, its value (``"xdgm-v1"``) or its name
    (``"XDGM_V1"``) case-insensitively.
    """

    if isinstance(value, LayoutVersion):
        return value
    text = str(value).strip()
    lowered = text.lower().replace("_", "-")
    for member in LayoutVersion:
        if member.value == lowered:
            return member
    raise ValueError(
        f"Unknown datagram layout {text!r}; expected one of "
        + ", ".join(member.value for member in LayoutVersion)
    )

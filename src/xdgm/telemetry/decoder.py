"""Decoder for XDGM telemetry datagrams.

:func:`decode` walks the :class:`~xdgm.telemetry.layouts.LayoutTable`
selected by the caller and never raises on malformed input.  Structural
problems (short buffers, counts that overrun the datagram) degrade the
variable sections to empty tuples; magic or version mismatches are
reported through :attr:`DecodedDatagram.rejection`.  Every cause is
logged with a structured ``event`` so that the monitor can keep running
on a noisy network.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import IntEnum
import logging
import struct
from typing import Any, Iterable, Mapping

import numpy as np

from .layouts import (
    DEBUG_COUNTER_FIELDS,
    LEDGER_RANGE_SIZE,
    OBJECT_COUNT_NAME_SIZE,
    OBJECT_COUNT_RECORD_SIZE,
    FieldKind,
    FieldSpec,
    LayoutTable,
    LayoutVersion,
    layout_table,
)

__all__ = [
    "DebugCounters",
    "DecodedDatagram",
    "LedgerRange",
    "ObjectCount",
    "OperatingMode",
    "PAGE_SIZE",
    "RateStat",
    "STATE_NAMES",
    "TelemetrySnapshot",
    "decode",
    "format_ledger_ranges",
]


logger = logging.getLogger(__name__)


PAGE_SIZE = 4096
STATE_NAMES = ("Disconnect", "Connect", "Syncing", "Tracking", "Full")

_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_U32_PAIR = struct.Struct("<II")
_F64 = struct.Struct("<d")
_LEDGER_RANGE = struct.Struct("<II")

_OBJECT_COUNT_DTYPE = np.dtype(
    [
        ("name", f"S{OBJECT_COUNT_NAME_SIZE}"),
        ("count_low", "<u4"),
        ("count_high", "<u4"),
    ]
)

_ZERO_COUNTERS = (0, 0, 0, 0, 0)


class OperatingMode(IntEnum):
    """Server operating modes reported through ``server_state``."""

    DISCONNECTED = 0
    CONNECTED = 1
    SYNCING = 2
    TRACKING = 3
    FULL = 4


@dataclass(frozen=True, slots=True)
class RateStat:
    """Rolling throughput figures for one I/O channel, in bytes per second."""

    rate_1m: float = 0.0
    rate_5m: float = 0.0
    rate_1h: float = 0.0
    rate_24h: float = 0.0

    def windows(self) -> tuple[float, float, float, float]:
        return (self.rate_1m, self.rate_5m, self.rate_1h, self.rate_24h)


@dataclass(frozen=True, slots=True)
class LedgerRange:
    """Closed interval of ledger sequences held by a node."""

    start: int
    end: int

    @property
    def span(self) -> int:
        if self.end < self.start:
            return 0
        return self.end - self.start + 1

    def __contains__(self, sequence: object) -> bool:
        if not isinstance(sequence, int):
            return False
        return self.start <= sequence <= self.end

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True, slots=True)
class ObjectCount:
    name: str
    count: int


@dataclass(frozen=True, slots=True)
class DebugCounters:
    """Engine-internal counters carried by the extended layout."""

    node_reads_total: int = 0
    node_reads_hit: int = 0
    node_reads_duration_us: int = 0
    node_writes: int = 0
    node_written_bytes: int = 0
    node_read_bytes: int = 0
    read_queue: int = 0
    read_request_bundle: int = 0
    read_threads_running: int = 0
    read_threads_total: int = 0
    write_load: int = 0
    historical_per_minute: int = 0
    sle_hit_rate: float = 0.0
    ledger_hit_rate: float = 0.0
    accepted_ledger_cache_size: int = 0
    accepted_ledger_hit_rate: float = 0.0
    fullbelow_size: int = 0
    treenode_cache_size: int = 0
    treenode_track_size: int = 0
    local_tx_count: int = 0
    db_kb_total: int = 0
    db_kb_ledger: int = 0
    db_kb_transaction: int = 0
    job_queue_count: int = 0
    job_queue_threads: int = 0


@dataclass(frozen=True, slots=True)
class TelemetrySnapshot:
    """One decoded datagram.

    Fields missing from the selected layout (or beyond the end of a short
    buffer) keep their zero defaults; ``version_string`` stays ``None``
    when the layout carries no version string.
    """

    layout: LayoutVersion = LayoutVersion.XDGM_V1
    version: int = 0
    network_id: int = 0
    server_state: int = 0
    peer_count: int = 0
    node_size: int = 0
    cpu_cores: int = 0
    warning_flags: int = 0
    timestamp: int = 0
    uptime: int = 0
    io_latency_us: int = 0
    validation_quorum: int = 0
    fetch_pack_size: int = 0
    proposer_count: int = 0
    converge_time_ms: int = 0
    load_factor: int = 0
    load_base: int = 0
    reserve_base: int = 0
    reserve_inc: int = 0
    ledger_seq: int = 0
    ledger_hash: bytes = bytes(32)
    node_public_key: bytes = bytes(33)
    version_string: str | None = None
    process_memory_pages: int = 0
    system_memory_total: int = 0
    system_memory_free: int = 0
    system_memory_used: int = 0
    system_disk_total: int = 0
    system_disk_free: int = 0
    system_disk_used: int = 0
    io_wait_time: int = 0
    load_averages: tuple[float, float, float] = (0.0, 0.0, 0.0)
    state_transitions: tuple[int, ...] = _ZERO_COUNTERS
    state_durations: tuple[int, ...] = _ZERO_COUNTERS
    initial_sync_us: int = 0
    network_in: RateStat = RateStat()
    network_out: RateStat = RateStat()
    disk_read: RateStat = RateStat()
    disk_write: RateStat = RateStat()

    @property
    def operating_mode(self) -> OperatingMode | None:
        try:
            return OperatingMode(self.server_state)
        except ValueError:
            return None

    @property
    def process_memory_bytes(self) -> int:
        return self.process_memory_pages * PAGE_SIZE

    @property
    def node_public_key_hex(self) -> str:
        return self.node_public_key.hex()

    @property
    def ledger_hash_hex(self) -> str:
        return self.ledger_hash.hex()

    @property
    def state_accounting(self) -> tuple[tuple[str, int, int], ...]:
        """``(state name, transitions, duration in microseconds)`` triples."""

        return tuple(
            zip(STATE_NAMES, self.state_transitions, self.state_durations)
        )


_SNAPSHOT_FIELDS = frozenset(item.name for item in fields(TelemetrySnapshot))
_RATE_FIELDS = frozenset({"network_in", "network_out", "disk_read", "disk_write"})


@dataclass(frozen=True, slots=True)
class DecodedDatagram:
    snapshot: TelemetrySnapshot
    ledger_ranges: tuple[LedgerRange, ...] = ()
    object_counts: tuple[ObjectCount, ...] = ()
    debug_counters: DebugCounters | None = None
    truncated: bool = False
    rejection: str | None = None

    @property
    def accepted(self) -> bool:
        return not self.truncated and self.rejection is None

    def as_tuple(
        self,
    ) -> tuple[
        TelemetrySnapshot,
        tuple[LedgerRange, ...],
        tuple[ObjectCount, ...],
        DebugCounters | None,
    ]:
        return (self.snapshot, self.ledger_ranges, self.object_counts, self.debug_counters)


def format_ledger_ranges(ranges: Iterable[LedgerRange]) -> str:
    """Render ``ranges`` the way ledger servers report complete ledgers."""

    rendered = ",".join(str(item) for item in ranges)
    return rendered or "empty"


def _read_u64(view: memoryview, offset: int) -> int:
    low, high = _U32_PAIR.unpack_from(view, offset)
    return high * 0x100000000 + low


def _read_scalar(view: memoryview, kind: FieldKind, offset: int) -> int | float:
    if kind is FieldKind.U64:
        return _read_u64(view, offset)
    if kind is FieldKind.U32:
        return _U32.unpack_from(view, offset)[0]
    if kind is FieldKind.U16:
        return _U16.unpack_from(view, offset)[0]
    return _F64.unpack_from(view, offset)[0]


def _decode_text(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace").strip()


def _read_field(view: memoryview, spec: FieldSpec, base: int) -> Any:
    offset = base + spec.offset
    if spec.kind is FieldKind.RAW:
        return bytes(view[offset : offset + spec.size])
    if spec.kind is FieldKind.TEXT:
        return _decode_text(bytes(view[offset : offset + spec.size]))
    step = spec.width // spec.count
    values = tuple(
        _read_scalar(view, spec.kind, offset + step * index) for index in range(spec.count)
    )
    if spec.count == 1:
        return values[0]
    return values


def _read_fields(
    view: memoryview, specs: Iterable[FieldSpec], *, base: int = 0
) -> dict[str, Any]:
    length = len(view)
    values: dict[str, Any] = {}
    for spec in specs:
        if base + spec.end > length:
            continue
        values[spec.name] = _read_field(view, spec, base)
    return values


def _build_snapshot(layout: LayoutVersion, values: Mapping[str, Any]) -> TelemetrySnapshot:
    kwargs: dict[str, Any] = {"layout": layout}
    for name, value in values.items():
        if name not in _SNAPSHOT_FIELDS:
            continue
        if name in _RATE_FIELDS:
            value = RateStat(*value)
        kwargs[name] = value
    return TelemetrySnapshot(**kwargs)


def _check_identity(table: LayoutTable, values: Mapping[str, Any]) -> str | None:
    magic = values.get("magic")
    if table.magic is not None and magic is not None and magic != table.magic:
        return f"Invalid magic number: {magic:#x}"
    version = values.get("version")
    if (
        table.accepted_versions is not None
        and version is not None
        and version not in table.accepted_versions
    ):
        return f"Unsupported protocol version: {version}"
    return None


def _decode_ledger_ranges(
    view: memoryview, table: LayoutTable, values: Mapping[str, Any]
) -> tuple[tuple[LedgerRange, ...], int | None]:
    """Return the ranges and the offset where the object table starts."""

    length = len(view)
    start = table.header_size
    if table.trailing_range:
        if length - start < LEDGER_RANGE_SIZE:
            return (), None
        first, last = _LEDGER_RANGE.unpack_from(view, length - LEDGER_RANGE_SIZE)
        return (LedgerRange(first, last),), None

    count = int(values.get(table.range_count_field or "", 0))
    end = start + count * LEDGER_RANGE_SIZE
    if end > length:
        logger.warning(
            "Ledger range count overruns the datagram; ignoring ranges.",
            extra={
                "event": "decoder.range_overrun",
                "declared": count,
                "available": (length - start) // LEDGER_RANGE_SIZE,
                "layout": table.version.value,
            },
        )
        return (), None
    ranges = tuple(
        LedgerRange(first, last) for first, last in _LEDGER_RANGE.iter_unpack(view[start:end])
    )
    return ranges, end


def _decode_object_counts(view: memoryview, offset: int) -> tuple[ObjectCount, ...]:
    remaining = len(view) - offset
    records, leftover = divmod(remaining, OBJECT_COUNT_RECORD_SIZE)
    if leftover:
        logger.debug(
            "Object count table has trailing bytes; ignoring partial record.",
            extra={
                "event": "decoder.object_table_remainder",
                "records": records,
                "leftover": leftover,
            },
        )
    if records <= 0:
        return ()
    table = np.frombuffer(view, dtype=_OBJECT_COUNT_DTYPE, count=records, offset=offset)
    counts: list[ObjectCount] = []
    for record in table:
        name = _decode_text(bytes(record["name"]))
        if not name:
            continue
        count = int(record["count_high"]) * 0x100000000 + int(record["count_low"])
        counts.append(ObjectCount(name=name, count=count))
    return tuple(counts)


def _decode_debug_counters(view: memoryview, table: LayoutTable) -> DebugCounters | None:
    if table.debug_counters_offset is None:
        return None
    values = _read_fields(view, DEBUG_COUNTER_FIELDS, base=table.debug_counters_offset)
    return DebugCounters(**values)


def _decode(view: memoryview, table: LayoutTable) -> DecodedDatagram:
    length = len(view)
    values = _read_fields(view, table.fields)
    truncated = length < table.header_size
    if truncated:
        logger.warning(
            "XDGM datagram shorter than the layout header.",
            extra={
                "event": "decoder.truncated",
                "length": length,
                "expected": table.header_size,
                "layout": table.version.value,
            },
        )
    snapshot = _build_snapshot(table.version, values)

    rejection = _check_identity(table, values)
    if rejection is not None:
        logger.warning(
            "XDGM datagram rejected.",
            extra={
                "event": "decoder.rejected",
                "reason": rejection,
                "layout": table.version.value,
            },
        )
        return DecodedDatagram(snapshot=snapshot, truncated=truncated, rejection=rejection)
    if truncated:
        return DecodedDatagram(snapshot=snapshot, truncated=True)

    ranges, table_offset = _decode_ledger_ranges(view, table, values)
    object_counts: tuple[ObjectCount, ...] = ()
    if table.has_object_table and table_offset is not None:
        object_counts = _decode_object_counts(view, table_offset)
    return DecodedDatagram(
        snapshot=snapshot,
        ledger_ranges=ranges,
        object_counts=object_counts,
        debug_counters=_decode_debug_counters(view, table),
    )


def decode(
    buffer: bytes | bytearray | memoryview,
    layout: LayoutVersion | str = LayoutVersion.XDGM_V1,
) -> DecodedDatagram:
    """Decode ``buffer`` using the offsets of ``layout``.

    Unknown ``layout`` names raise :class:`ValueError`; problems with
    ``buffer`` itself never do.
    """

    table = layout_table(layout)
    try:
        view = memoryview(buffer).cast("B")
        return _decode(view, table)
    except (struct.error, TypeError, ValueError) as exc:
        logger.warning(
            "Failed to decode XDGM datagram.",
            extra={
                "event": "decoder.error",
                "error": str(exc),
                "layout": table.version.value,
            },
        )
        return DecodedDatagram(snapshot=TelemetrySnapshot(layout=table.version), truncated=True)

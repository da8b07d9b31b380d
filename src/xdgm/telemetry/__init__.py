"""Wire-level telemetry: layouts, decoding, identities and UDP listeners."""

from .decoder import (
    DebugCounters,
    DecodedDatagram,
    LedgerRange,
    ObjectCount,
    OperatingMode,
    RateStat,
    TelemetrySnapshot,
    decode,
    format_ledger_ranges,
)
from .identity import abbreviate_identifier, encode_node_public, node_identifier
from .layouts import LayoutVersion, layout_table, parse_layout_version
from .udp import AsyncTelemetryListener, TelemetryListener

__all__ = [
    "AsyncTelemetryListener",
    "DebugCounters",
    "DecodedDatagram",
    "LayoutVersion",
    "LedgerRange",
    "ObjectCount",
    "OperatingMode",
    "RateStat",
    "TelemetryListener",
    "TelemetrySnapshot",
    "abbreviate_identifier",
    "decode",
    "encode_node_public",
    "format_ledger_ranges",
    "layout_table",
    "node_identifier",
    "parse_layout_version",
]

"""Top-level package for xdgm.

xdgm listens for the UDP telemetry datagrams that XRPL/Xahau nodes emit,
decodes them, and keeps a small registry of the nodes it has heard from,
raising alerts when a node goes quiet or reports an operational warning.
"""

from ._version import __version__
from .analysis import SnapshotMetrics, classify_snapshot, format_bytes
from .configuration import MonitorSettings, load_config
from .monitor import Alert, AlertLog, NodeRegistry, NodeState, NodeStatus, TelemetryMonitor
from .telemetry import (
    AsyncTelemetryListener,
    DecodedDatagram,
    LayoutVersion,
    TelemetryListener,
    TelemetrySnapshot,
    decode,
)

__all__ = [
    "Alert",
    "AlertLog",
    "AsyncTelemetryListener",
    "DecodedDatagram",
    "LayoutVersion",
    "MonitorSettings",
    "NodeRegistry",
    "NodeState",
    "NodeStatus",
    "SnapshotMetrics",
    "TelemetryListener",
    "TelemetryMonitor",
    "TelemetrySnapshot",
    "__version__",
    "classify_snapshot",
    "decode",
    "format_bytes",
    "load_config",
]

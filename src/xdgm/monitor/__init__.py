"""Node tracking, liveness evaluation and alerting."""

from .alerts import DEFAULT_ALERT_LOG_CAPACITY, Alert, AlertKind, AlertLog, format_alert
from .registry import DEFAULT_CAPACITY, NodeRegistry
from .service import DEFAULT_TICK_INTERVAL, TelemetryMonitor
from .state import (
    ALERT_THROTTLE,
    AWOL_MESSAGE,
    LIVENESS_TIMEOUT,
    AlertPolicy,
    NodeState,
    NodeStatus,
    WarningKind,
    decode_warnings,
)

__all__ = [
    "ALERT_THROTTLE",
    "AWOL_MESSAGE",
    "Alert",
    "AlertKind",
    "AlertLog",
    "AlertPolicy",
    "DEFAULT_ALERT_LOG_CAPACITY",
    "DEFAULT_CAPACITY",
    "DEFAULT_TICK_INTERVAL",
    "LIVENESS_TIMEOUT",
    "NodeRegistry",
    "NodeState",
    "NodeStatus",
    "TelemetryMonitor",
    "WarningKind",
    "decode_warnings",
    "format_alert",
]

"""Per-node liveness and warning state.

:class:`NodeState` is an immutable value.  :meth:`NodeState.apply` folds a
freshly decoded snapshot into it and :meth:`NodeState.tick` re-evaluates
liveness; both return the next state together with the alerts the
transition raised.  Time always comes from the caller so the registry can
inject a clock.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

from ..analysis.classifier import SnapshotMetrics, classify_snapshot
from ..telemetry.decoder import DebugCounters, LedgerRange, ObjectCount, TelemetrySnapshot
from .alerts import Alert, AlertKind

__all__ = [
    "ALERT_THROTTLE",
    "AWOL_MESSAGE",
    "AlertPolicy",
    "LIVENESS_TIMEOUT",
    "NodeState",
    "NodeStatus",
    "WarningKind",
    "decode_warnings",
]


LIVENESS_TIMEOUT = 2.0
ALERT_THROTTLE = 300.0
AWOL_MESSAGE = "Server is AWOL"


class WarningKind(Enum):
    """Operational warnings packed into ``warning_flags``; other bits are reserved."""

    AMENDMENT_BLOCKED = (1 << 0, "Amendment Blocked")
    UNL_BLOCKED = (1 << 1, "UNL Blocked")
    AMENDMENT_WARNED = (1 << 2, "Amendment Warned")
    NOT_SYNCED = (1 << 3, "NOT SYNCED")

    def __init__(self, bit: int, label: str) -> None:
        self.bit = bit
        self.label = label


def decode_warnings(flags: int) -> tuple[WarningKind, ...]:
    """Return the warnings set in ``flags`` in their fixed bit order."""

    return tuple(kind for kind in WarningKind if flags & kind.bit)


class NodeStatus(str, Enum):
    INITIALIZING = "initializing"
    SYNCED = "synced"
    NOT_SYNCED = "not_synced"
    AWOL = "awol"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    NodeStatus.INITIALIZING: "WAITING",
    NodeStatus.SYNCED: "SYNCED",
    NodeStatus.NOT_SYNCED: "NOT SYNCED",
    NodeStatus.AWOL: "AWOL",
}


@dataclass(frozen=True, slots=True)
class AlertPolicy:
    """Liveness timeout and re-announce window, both in seconds."""

    liveness_timeout: float = LIVENESS_TIMEOUT
    alert_throttle: float = ALERT_THROTTLE


@dataclass(frozen=True, slots=True)
class NodeState:
    public_key: bytes
    slot: int
    identifier: str
    policy: AlertPolicy = AlertPolicy()
    snapshot: TelemetrySnapshot | None = None
    ledger_ranges: tuple[LedgerRange, ...] = ()
    object_counts: tuple[ObjectCount, ...] = ()
    debug_counters: DebugCounters | None = None
    metrics: SnapshotMetrics | None = None
    source: tuple[str, int] | None = None
    warnings: tuple[WarningKind, ...] = ()
    last_seen_at: float | None = None
    awol: bool = False
    last_awol_alert_at: float | None = None
    last_warning_alert_at: float | None = None

    @property
    def status(self) -> NodeStatus:
        if self.snapshot is None:
            return NodeStatus.INITIALIZING
        if self.awol:
            return NodeStatus.AWOL
        if WarningKind.NOT_SYNCED in self.warnings:
            return NodeStatus.NOT_SYNCED
        return NodeStatus.SYNCED

    def apply(
        self,
        snapshot: TelemetrySnapshot,
        now: float,
        *,
        ledger_ranges: Iterable[LedgerRange] = (),
        object_counts: Iterable[ObjectCount] = (),
        debug_counters: DebugCounters | None = None,
        source: tuple[str, int] | None = None,
    ) -> tuple["NodeState", tuple[Alert, ...]]:
        """Fold a packet arrival into the state."""

        warnings = decode_warnings(snapshot.warning_flags)
        appeared: tuple[WarningKind, ...] = ()
        if self.snapshot is not None:
            previous = set(self.warnings)
            if set(warnings) > previous:
                appeared = tuple(kind for kind in warnings if kind not in previous)
        raised = tuple(self._alert(AlertKind.NEW_WARNING, kind.label, now) for kind in appeared)

        state = replace(
            self,
            snapshot=snapshot,
            ledger_ranges=tuple(ledger_ranges),
            object_counts=tuple(object_counts),
            debug_counters=debug_counters,
            metrics=classify_snapshot(snapshot),
            source=source if source is not None else self.source,
            warnings=warnings,
            last_seen_at=now,
            awol=False,
        )
        state, repeated = state._announce_persistent(now, exclude=appeared)
        return state, raised + repeated

    def tick(self, now: float) -> tuple["NodeState", tuple[Alert, ...]]:
        """Re-evaluate liveness without a new packet."""

        if self.last_seen_at is None:
            return self, ()
        if now - self.last_seen_at > self.policy.liveness_timeout:
            state = self if self.awol else replace(self, awol=True)
            last = state.last_awol_alert_at
            if last is not None and now - last <= self.policy.alert_throttle:
                return state, ()
            alert = self._alert(AlertKind.AWOL, AWOL_MESSAGE, now)
            return replace(state, last_awol_alert_at=now), (alert,)
        state = replace(self, awol=False) if self.awol else self
        return state._announce_persistent(now)

    def _announce_persistent(
        self, now: float, *, exclude: Iterable[WarningKind] = ()
    ) -> tuple["NodeState", tuple[Alert, ...]]:
        """Re-announce warnings other than ``exclude`` once per throttle window."""

        skipped = set(exclude)
        persistent = tuple(kind for kind in self.warnings if kind not in skipped)
        if self.awol or not persistent:
            return self, ()
        last = self.last_warning_alert_at
        if last is not None and now - last <= self.policy.alert_throttle:
            return self, ()
        alerts = tuple(
            self._alert(AlertKind.PERSISTENT_WARNING, kind.label, now) for kind in persistent
        )
        return replace(self, last_warning_alert_at=now), alerts

    def _alert(self, kind: AlertKind, message: str, now: float) -> Alert:
        return Alert(kind=kind, node_identifier=self.identifier, message=message, raised_at=now)

"""Bounded, newest-first log of operator alerts."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Iterator

__all__ = [
    "Alert",
    "AlertKind",
    "AlertLog",
    "DEFAULT_ALERT_LOG_CAPACITY",
    "format_alert",
]


DEFAULT_ALERT_LOG_CAPACITY = 100


class AlertKind(str, Enum):
    AWOL = "awol"
    NEW_WARNING = "new_warning"
    PERSISTENT_WARNING = "persistent_warning"


@dataclass(frozen=True, slots=True)
class Alert:
    """Alert raised by a node state transition.

    ``raised_at`` is a POSIX timestamp taken from the registry clock.
    """

    kind: AlertKind
    node_identifier: str
    message: str
    raised_at: float


def format_alert(alert: Alert) -> str:
    stamp = datetime.fromtimestamp(alert.raised_at).strftime("%H:%M:%S")
    return f"[{stamp}] {alert.node_identifier}: {alert.message}"


class AlertLog:
    """Ring buffer of formatted alerts; appending past capacity drops the oldest."""

    def __init__(self, capacity: int = DEFAULT_ALERT_LOG_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("AlertLog requires a positive capacity")
        self._capacity = capacity
        self._entries: deque[str] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def latest(self) -> str | None:
        if not self._entries:
            return None
        return self._entries[0]

    def append(self, alert: Alert) -> str:
        entry = format_alert(alert)
        self._entries.appendleft(entry)
        return entry

    def extend(self, alerts: Iterable[Alert]) -> None:
        for alert in alerts:
            self.append(alert)

    def entries(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

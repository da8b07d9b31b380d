"""Capacity-bounded registry of tracked nodes keyed by raw public key."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Iterator

from ..telemetry.decoder import DebugCounters, LedgerRange, ObjectCount, TelemetrySnapshot
from ..telemetry.identity import NodeIdentifierEncoder, node_identifier
from .alerts import Alert, AlertLog
from .state import AlertPolicy, NodeState

__all__ = ["DEFAULT_CAPACITY", "NodeRegistry"]


logger = logging.getLogger(__name__)
alert_logger = logging.getLogger("xdgm.alerts")


DEFAULT_CAPACITY = 20

Clock = Callable[[], float]


class NodeRegistry:
    """Map node public keys to :class:`NodeState` values.

    Slots are handed out in arrival order and never reused, so a display can
    keep each node in a stable position.  Once ``capacity`` slots are taken,
    unseen nodes are ignored; idle nodes are never evicted.
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_CAPACITY,
        clock: Clock = time.time,
        encoder: NodeIdentifierEncoder | None = None,
        alert_log: AlertLog | None = None,
        policy: AlertPolicy | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("NodeRegistry requires a positive capacity")
        self._capacity = capacity
        self._clock = clock
        self._encoder = encoder
        self._alert_log = alert_log if alert_log is not None else AlertLog()
        self._policy = policy or AlertPolicy()
        self._nodes: dict[bytes, NodeState] = {}
        self._next_slot = 0
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def alert_log(self) -> AlertLog:
        return self._alert_log

    @property
    def dropped(self) -> int:
        """Number of upserts ignored because the registry was full."""

        return self._dropped

    def now(self) -> float:
        return self._clock()

    def upsert(
        self,
        public_key: bytes,
        snapshot: TelemetrySnapshot,
        arrival_time: float | None = None,
        *,
        ledger_ranges: Iterable[LedgerRange] = (),
        object_counts: Iterable[ObjectCount] = (),
        debug_counters: DebugCounters | None = None,
        source: tuple[str, int] | None = None,
    ) -> NodeState | None:
        """Record a packet from ``public_key``; ``None`` when the node is not tracked."""

        key = bytes(public_key)
        now = self._clock() if arrival_time is None else arrival_time
        state = self._nodes.get(key)
        if state is None:
            state = self._register(key)
            if state is None:
                return None
        updated, alerts = state.apply(
            snapshot,
            now,
            ledger_ranges=ledger_ranges,
            object_counts=object_counts,
            debug_counters=debug_counters,
            source=source,
        )
        self._nodes[key] = updated
        self._publish(alerts)
        return updated

    def tick(self, now: float | None = None) -> list[Alert]:
        """Re-evaluate the liveness of every tracked node."""

        moment = self._clock() if now is None else now
        raised: list[Alert] = []
        for key, state in self._nodes.items():
            updated, alerts = state.tick(moment)
            if updated is not state:
                self._nodes[key] = updated
            raised.extend(alerts)
        self._publish(raised)
        return raised

    def nodes(self) -> list[NodeState]:
        """Tracked nodes in slot order."""

        return sorted(self._nodes.values(), key=lambda state: state.slot)

    def get(self, public_key: bytes) -> NodeState | None:
        return self._nodes.get(bytes(public_key))

    def __contains__(self, public_key: object) -> bool:
        if not isinstance(public_key, (bytes, bytearray, memoryview)):
            return False
        return bytes(public_key) in self._nodes

    def __iter__(self) -> Iterator[NodeState]:
        return iter(self.nodes())

    def __len__(self) -> int:
        return len(self._nodes)

    def _register(self, key: bytes) -> NodeState | None:
        if self._next_slot >= self._capacity:
            self._dropped += 1
            logger.debug(
                "Registry full; ignoring datagram from unseen node.",
                extra={
                    "event": "registry.capacity_drop",
                    "public_key": key.hex(),
                    "capacity": self._capacity,
                },
            )
            return None
        state = NodeState(
            public_key=key,
            slot=self._next_slot,
            identifier=node_identifier(key, self._encoder),
            policy=self._policy,
        )
        self._next_slot += 1
        logger.info(
            "Tracking new node.",
            extra={
                "event": "registry.node_added",
                "slot": state.slot,
                "node": state.identifier,
            },
        )
        return state

    def _publish(self, alerts: Iterable[Alert]) -> None:
        for alert in alerts:
            entry = self._alert_log.append(alert)
            alert_logger.warning(
                entry,
                extra={
                    "event": "node.alert",
                    "kind": alert.kind.value,
                    "node": alert.node_identifier,
                },
            )

    def list(self) -> "list[NodeState]":
        """Alias of :meth:`nodes` under the name the monitor views use."""

        return self.nodes()

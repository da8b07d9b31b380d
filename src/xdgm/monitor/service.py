"""Single-writer event processing for the node monitor.

Datagram arrivals and periodic ticks are handled one at a time, each to
completion, so the registry never sees interleaved mutations.  Either an
asyncio loop (:meth:`TelemetryMonitor.run`) or a plain select loop
(:meth:`TelemetryMonitor.serve`) can drive the monitor.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ..telemetry.decoder import decode
from ..telemetry.layouts import LayoutVersion, parse_layout_version
from ..telemetry.udp import AsyncTelemetryListener, TelemetryListener
from .alerts import Alert
from .registry import NodeRegistry
from .state import NodeState

__all__ = ["DEFAULT_TICK_INTERVAL", "TelemetryMonitor"]


logger = logging.getLogger(__name__)


DEFAULT_TICK_INTERVAL = 1.0


class TelemetryMonitor:
    """Feed decoded datagrams into a :class:`NodeRegistry`."""

    def __init__(
        self,
        registry: NodeRegistry,
        *,
        layout: LayoutVersion | str = LayoutVersion.XDGM_V1,
    ) -> None:
        self._registry = registry
        self._layout = parse_layout_version(layout)
        self._received = 0
        self._accepted = 0
        self._rejected = 0
        self._truncated = 0
        self._dropped = 0
        self._errors = 0
        self._ticks = 0

    @property
    def registry(self) -> NodeRegistry:
        return self._registry

    @property
    def layout(self) -> LayoutVersion:
        return self._layout

    @property
    def statistics(self) -> dict[str, int]:
        return {
            "received": self._received,
            "accepted": self._accepted,
            "rejected": self._rejected,
            "truncated": self._truncated,
            "dropped": self._dropped,
            "errors": self._errors,
            "ticks": self._ticks,
        }

    def handle_datagram(
        self, payload: bytes, source: tuple[str, int] | None = None
    ) -> NodeState | None:
        """Decode ``payload`` and update its node; never raises."""

        self._received += 1
        try:
            decoded = decode(payload, self._layout)
            if decoded.rejection is not None:
                self._rejected += 1
                return None
            if decoded.truncated:
                self._truncated += 1
                logger.debug(
                    "Ignoring datagram without a complete header.",
                    extra={
                        "event": "monitor.incomplete_header",
                        "length": len(payload),
                        "source": source,
                    },
                )
                return None
            state = self._registry.upsert(
                decoded.snapshot.node_public_key,
                decoded.snapshot,
                ledger_ranges=decoded.ledger_ranges,
                object_counts=decoded.object_counts,
                debug_counters=decoded.debug_counters,
                source=source,
            )
        except Exception:  # one bad datagram must not stop the monitor
            self._errors += 1
            logger.exception(
                "Unexpected failure while processing datagram.",
                extra={"event": "monitor.datagram_error", "source": source},
            )
            return None
        if state is None:
            self._dropped += 1
        else:
            self._accepted += 1
        return state

    def tick(self, now: float | None = None) -> list[Alert]:
        self._ticks += 1
        return self._registry.tick(now)

    async def run(
        self,
        listener: AsyncTelemetryListener,
        *,
        stop_event: asyncio.Event | None = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
    ) -> None:
        """Consume ``listener`` until ``stop_event`` is set or it closes."""

        loop = asyncio.get_running_loop()
        next_tick = loop.time() + tick_interval
        while not listener.closed and (stop_event is None or not stop_event.is_set()):
            remaining = max(0.0, next_tick - loop.time())
            datagram = await listener.recv(timeout=remaining)
            if datagram is not None:
                self.handle_datagram(*datagram)
            current = loop.time()
            if current >= next_tick:
                self.tick()
                next_tick += tick_interval
                if next_tick <= current:
                    next_tick = current + tick_interval

    def serve(
        self,
        listener: TelemetryListener,
        *,
        should_stop: Callable[[], bool],
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Blocking counterpart of :meth:`run` for a :class:`TelemetryListener`."""

        next_tick = clock() + tick_interval
        while not listener.closed and not should_stop():
            remaining = max(0.0, next_tick - clock())
            for payload, source in listener.poll(timeout=remaining):
                self.handle_datagram(payload, source)
            current = clock()
            if current >= next_tick:
                self.tick()
                next_tick += tick_interval
                if next_tick <= current:
                    next_tick = current + tick_interval

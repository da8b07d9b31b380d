"""Receive-only UDP listeners for XDGM datagrams.

Two flavours share the same behaviour: :class:`TelemetryListener` polls a
non-blocking socket through :func:`select.select`, while
:class:`AsyncTelemetryListener` is driven by an asyncio datagram endpoint.
Neither sends anything back to the servers.  Receive errors are logged
and counted; they never stop the listener.
"""

from __future__ import annotations

import asyncio
from collections import deque
import logging
import select
import socket
import time
from types import TracebackType
from typing import Optional, Tuple

__all__ = [
    "AsyncTelemetryListener",
    "DEFAULT_PORT",
    "Datagram",
    "MAX_DATAGRAM_SIZE",
    "TelemetryListener",
]


logger = logging.getLogger(__name__)


DEFAULT_PORT = 12345
# Large enough for the extended header plus generous range/object tables.
MAX_DATAGRAM_SIZE = 65535

Datagram = Tuple[bytes, Tuple[str, int]]


def wait_for_read_ready(
    sock: socket.socket,
    *,
    timeout: float,
    deadline: Optional[float] = None,
) -> bool:
    """Return ``True`` if ``sock`` becomes readable before ``deadline``."""

    if timeout <= 0.0:
        return True

    wait_time = timeout
    if deadline is not None:
        remaining = deadline - time.monotonic()
        if remaining <= 0.0:
            return False
        wait_time = min(timeout, remaining)

    try:
        readable, _, _ = select.select([sock], [], [], wait_time)
    except (OSError, ValueError):
        return False
    return bool(readable)


class TelemetryListener:
    """Non-blocking UDP listener polled from a single event loop."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        *,
        timeout: float = 0.05,
        max_batch: int | None = None,
    ) -> None:
        """Bind a UDP socket on ``host``:``port``.

        Parameters
        ----------
        host:
            Local interface to bind; ``"0.0.0.0"`` listens on all of them.
        port:
            UDP port the ledger servers broadcast to.  ``0`` picks a free
            port, which is mostly useful for tests.
        timeout:
            Default wait used by :meth:`poll` when no timeout is supplied.
        max_batch:
            Optional maximum number of datagrams drained per :meth:`poll`.
            ``None`` drains until the socket would block.
        """

        batch_limit = None
        if max_batch is not None:
            try:
                numeric = int(max_batch)
            except (TypeError, ValueError):
                numeric = 0
            if numeric > 0:
                batch_limit = numeric
        self._timeout = timeout
        self._max_batch = batch_limit
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._socket.setblocking(False)
        self._socket.bind((host, port))
        local_host, local_port = self._socket.getsockname()
        self._address: Tuple[str, int] = (local_host, local_port)
        self._received = 0
        self._socket_errors = 0
        self._closed = False

    @property
    def address(self) -> Tuple[str, int]:
        return self._address

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def statistics(self) -> dict[str, int]:
        return {"received": self._received, "socket_errors": self._socket_errors}

    def poll(self, timeout: float | None = None) -> list[Datagram]:
        """Wait up to ``timeout`` seconds and return every queued datagram."""

        if self._closed:
            return []
        wait = self._timeout if timeout is None else max(float(timeout), 0.0)
        datagrams = self._drain()
        if datagrams or wait <= 0.0:
            return datagrams
        if wait_for_read_ready(self._socket, timeout=wait, deadline=time.monotonic() + wait):
            datagrams = self._drain()
        return datagrams

    def _drain(self) -> list[Datagram]:
        datagrams: list[Datagram] = []
        limit = self._max_batch
        while limit is None or len(datagrams) < limit:
            try:
                payload, source = self._socket.recvfrom(MAX_DATAGRAM_SIZE)
            except BlockingIOError:
                break
            except OSError as exc:
                self._socket_errors += 1
                logger.warning(
                    "UDP receive failed; continuing to listen.",
                    extra={
                        "event": "listener.socket_error",
                        "error": str(exc),
                        "port": self._address[1],
                    },
                )
                break
            if not payload:
                continue
            self._received += 1
            datagrams.append((payload, (str(source[0]), int(source[1]))))
        return datagrams

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._socket.close()

    def __enter__(self) -> "TelemetryListener":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class _ListenerProtocol(asyncio.DatagramProtocol):
    def __init__(self, listener: "AsyncTelemetryListener") -> None:
        self._listener = listener

    def connection_made(self, transport: asyncio.BaseTransport) -> None:  # pragma: no cover - exercised indirectly
        self._listener._connection_made(transport)

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._listener._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._listener._on_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self._listener._connection_lost(exc)


class AsyncTelemetryListener:
    """Asyncio UDP listener queueing datagrams for :meth:`recv`."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        *,
        queue_size: int = 1024,
    ) -> None:
        self._host = host
        self._requested_port = port
        self._queue: deque[Datagram] = deque(maxlen=max(int(queue_size), 1))
        self._transport: asyncio.DatagramTransport | None = None
        self._address: Tuple[str, int] = ("", 0)
        self._ready: asyncio.Event | None = None
        self._closed_event: asyncio.Event | None = None
        self._closing = False
        self._received = 0
        self._socket_errors = 0
        self._overflows = 0

    @classmethod
    async def create(
        cls,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        *,
        queue_size: int = 1024,
    ) -> "AsyncTelemetryListener":
        self = cls(host=host, port=port, queue_size=queue_size)
        await self.start()
        return self

    async def start(self) -> None:
        if self._transport is not None:
            return
        loop = asyncio.get_running_loop()
        self._ready = asyncio.Event()
        self._closed_event = asyncio.Event()
        await loop.create_datagram_endpoint(
            lambda: _ListenerProtocol(self),
            local_addr=(self._host, self._requested_port),
            family=socket.AF_INET,
        )

    async def __aenter__(self) -> "AsyncTelemetryListener":
        if self._transport is None:
            await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def address(self) -> Tuple[str, int]:
        return self._address

    @property
    def closed(self) -> bool:
        return self._closing or self._transport is None

    @property
    def statistics(self) -> dict[str, int]:
        return {
            "received": self._received,
            "socket_errors": self._socket_errors,
            "overflows": self._overflows,
        }

    async def recv(self, timeout: float | None = None) -> Optional[Datagram]:
        """Return the oldest queued datagram, waiting up to ``timeout``."""

        ready = self._ready
        if ready is None:
            raise RuntimeError("AsyncTelemetryListener is not started")
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + max(float(timeout), 0.0)
        while not self._queue:
            if self._closing:
                return None
            ready.clear()
            if deadline is None:
                await ready.wait()
                continue
            remaining = deadline - loop.time()
            if remaining <= 0.0:
                return None
            try:
                await asyncio.wait_for(ready.wait(), remaining)
            except asyncio.TimeoutError:
                return None
        return self._queue.popleft()

    async def close(self) -> None:
        if self._closed_event is None:
            return
        if not self._closing:
            self._closing = True
            transport = self._transport
            if transport is not None:
                transport.close()
            else:
                self._closed_event.set()
        await self._closed_event.wait()
        self._wake()

    def _connection_made(self, transport: asyncio.BaseTransport) -> None:
        datagram = transport
        assert isinstance(datagram, asyncio.DatagramTransport)
        self._transport = datagram
        sockname = datagram.get_extra_info("sockname")
        if isinstance(sockname, tuple) and len(sockname) >= 2:
            self._address = (str(sockname[0]), int(sockname[1]))
        else:  # pragma: no cover - platform specific
            self._address = (self._host, self._requested_port)

    def _on_datagram(self, payload: bytes, source: tuple[str, int]) -> None:
        if not payload:
            return
        self._received += 1
        if len(self._queue) == self._queue.maxlen:
            self._overflows += 1
            logger.warning(
                "Datagram queue full; dropping the oldest datagram.",
                extra={
                    "event": "listener.queue_overflow",
                    "queue_size": self._queue.maxlen,
                    "port": self._address[1],
                },
            )
        self._queue.append((payload, (str(source[0]), int(source[1]))))
        self._wake()

    def _on_error(self, exc: Exception) -> None:
        self._socket_errors += 1
        logger.warning(
            "UDP receive failed; continuing to listen.",
            extra={
                "event": "listener.socket_error",
                "error": str(exc),
                "port": self._address[1],
            },
        )

    def _connection_lost(self, _exc: Exception | None) -> None:
        self._transport = None
        self._closing = True
        if self._closed_event is not None:
            self._closed_event.set()
        self._wake()

    def _wake(self) -> None:
        if self._ready is not None:
            self._ready.set()

"""
connection.py: DeviceConnectionManager, the owner of the single RouterOS session.

State machine:

    DISCONNECTED --ensure_ready()--> CONNECTING --ok--> READY
         ^                               |
         +------------fail---------------+
    READY --transport error--> ERROR --close--> DISCONNECTED (+ one delayed reconnect)

Two paths lead into a (re)connect, both through the same guarded transition:
  1. request-driven: ensure_ready() from the voucher issuer
  2. self-initiated: the transport error callback registered on every
     connection, which schedules exactly one reconnect after a fixed delay

At most one connect attempt is in flight. It is a shared task; concurrent
callers await it instead of opening their own socket.

The connection object itself is blocking (librouteros), so connect and write
run in worker threads. Writes are serialized on the one socket.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from backend.hotspot.errors import DeviceError, DeviceUnavailableError

logger = logging.getLogger(__name__)

RECONNECT_DELAY_S = 5.0


class DeviceConnection(Protocol):
    def write(self, path: str, args: Dict[str, str]) -> List[Dict[str, Any]]: ...

    def close(self) -> None: ...


ErrorCallback = Callable[[Any, BaseException], None]
# Blocking factory: receives the error callback, returns an open connection
# or raises DeviceUnavailableError.
ConnectionFactory = Callable[[ErrorCallback], DeviceConnection]


class DeviceState(str, Enum):
    disconnected = "DISCONNECTED"
    connecting = "CONNECTING"
    ready = "READY"
    error = "ERROR"


class DeviceConnectionManager:
    def __init__(
        self,
        connection_factory: ConnectionFactory,
        reconnect_delay_s: float = RECONNECT_DELAY_S,
    ) -> None:
        self._factory = connection_factory
        self._reconnect_delay_s = reconnect_delay_s
        self._state = DeviceState.disconnected
        self._connection: Optional[DeviceConnection] = None
        self._state_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._attempt: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _set_state(self, new_state: DeviceState) -> None:
        if new_state is self._state:
            return
        logger.info("Device state %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    # ------------------------------------------------------------------
    # Request-driven connect
    # ------------------------------------------------------------------

    async def ensure_ready(self) -> None:
        """
        Return once the connection is READY.

        Raises:
            DeviceUnavailableError: the (possibly shared) connect attempt failed.
        """
        if self._closed:
            raise DeviceUnavailableError("Device connection manager is closed")
        if self._state is DeviceState.ready:
            return
        async with self._state_lock:
            if self._state is DeviceState.ready:
                return
            if self._attempt is None:
                self._loop = asyncio.get_running_loop()
                self._attempt = self._loop.create_task(self._open())
            attempt = self._attempt
        # shield: a cancelled waiter must not cancel the attempt other callers share
        await asyncio.shield(attempt)

    async def _open(self) -> None:
        self._set_state(DeviceState.connecting)
        try:
            connection = await asyncio.to_thread(self._factory, self._report_error)
        except Exception as exc:
            self._set_state(DeviceState.disconnected)
            logger.warning("Device connect failed: %s", exc)
            if isinstance(exc, DeviceUnavailableError):
                raise
            raise DeviceUnavailableError(str(exc)) from exc
        else:
            if self._closed:
                # shut down while the socket was opening
                connection.close()
                self._set_state(DeviceState.disconnected)
                raise DeviceUnavailableError("Device connection manager is closed")
            self._connection = connection
            self._set_state(DeviceState.ready)
        finally:
            self._attempt = None
            if self._state is DeviceState.connecting:
                # cancelled mid-connect
                self._set_state(DeviceState.disconnected)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def write_command(self, path: str, args: Dict[str, str]) -> List[Dict[str, Any]]:
        """
        Send one command on the READY connection. No retry here; the caller
        decides whether retrying is safe.

        Raises:
            DeviceUnavailableError: not READY.
            DeviceCommandError: the write failed.
        """
        connection = self._connection
        if self._state is not DeviceState.ready or connection is None:
            raise DeviceUnavailableError(f"Device not ready (state={self._state.value})")
        async with self._write_lock:
            # The connection may have been torn down while we queued for the socket
            if connection is not self._connection:
                raise DeviceUnavailableError("Device connection was reset")
            return await asyncio.to_thread(connection.write, path, args)

    async def force_disconnect(self) -> None:
        """Drop the current connection without scheduling a reconnect."""
        async with self._state_lock:
            if self._attempt is not None:
                # A fresh connection is already being opened; nothing to drop
                return
            self._close_current()
            self._set_state(DeviceState.disconnected)

    def _close_current(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()

    # ------------------------------------------------------------------
    # Self-healing path
    # ------------------------------------------------------------------

    def _report_error(self, connection: Any, exc: BaseException) -> None:
        """Error callback handed to every connection. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._handle_transport_error, connection, exc)

    def _handle_transport_error(self, connection: Any, exc: BaseException) -> None:
        if connection is not self._connection:
            logger.debug("Ignoring transport error from a stale connection: %s", exc)
            return
        logger.warning("Device transport error, closing connection: %s", exc)
        self._set_state(DeviceState.error)
        self._close_current()
        self._set_state(DeviceState.disconnected)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed or self._attempt is not None or self.reconnect_scheduled:
            return
        logger.info("Device reconnect scheduled in %.1fs", self._reconnect_delay_s)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self._reconnect_delay_s)
        try:
            await self.ensure_ready()
        except DeviceUnavailableError as exc:
            logger.warning("Scheduled device reconnect failed: %s", exc)
        else:
            logger.info("Scheduled device reconnect succeeded")

    async def run_keepalive(self, interval_s: float, path: str, args: Optional[Dict[str, str]] = None) -> None:
        """
        Probe the READY connection every interval_s until cancelled.

        A dead socket surfaces as a transport error on the probe, which feeds
        the error callback and its scheduled reconnect.
        """
        while True:
            await asyncio.sleep(interval_s)
            if self._state is not DeviceState.ready:
                continue
            try:
                await self.write_command(path, args or {})
            except DeviceError as exc:
                logger.warning("Device keepalive probe failed: %s", exc)

    async def close(self) -> None:
        """
        Shutdown: cancel any pending reconnect, wait out an in-flight connect
        and drop the connection. Later ensure_ready() calls fail.
        """
        self._closed = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        attempt = self._attempt
        if attempt is not None:
            # the worker thread cannot be interrupted; _open closes what it opened
            await asyncio.gather(attempt, return_exceptions=True)
        self._close_current()
        self._set_state(DeviceState.disconnected)

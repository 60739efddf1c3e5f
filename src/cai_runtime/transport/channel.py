"""Transport channel - one duplex WebSocket connection per logical endpoint.

State machine:

    disconnected -> connecting -> open -> disconnected -> connecting ...
                                      \\-> gave_up (after max attempts)
    any state -> closed (deliberate close)

Inbound frames are published to the message bus in the order received,
except the keep-alive sentinel which is echoed back and dropped.
Unexpected closes trigger a fixed-delay reconnect using the last saved
connection options. Pending correlated requests are left alone across a
reconnect; they finish by their own deadline.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from enum import Enum
from typing import Any, Protocol

import websockets
from pydantic import BaseModel
from websockets.exceptions import ConnectionClosed

from ..bus import MessageBus
from ..errors import ConfigurationError, NotConnectedError, TransportClosedError
from ..protocol.frames import InboundFrame, RawFrame, encode_frame, is_keepalive
from ..session import SessionIdentity
from .endpoints import ConnectionOptions, Endpoint, handshake_frames
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    GAVE_UP = "gave_up"  # Reconnect attempts exhausted; needs explicit connect()
    CLOSED = "closed"  # Deliberately closed; never reconnects on its own


class Socket(Protocol):
    """The subset of a websockets client connection the channel uses."""

    async def send(self, message: RawFrame) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[RawFrame]: ...


Connector = Callable[[str, dict[str, str]], Awaitable[Socket]]


async def websocket_connector(url: str, headers: dict[str, str]) -> Socket:
    """Open a WebSocket connection with the given upgrade headers."""
    return await websockets.connect(url, additional_headers=headers)


class TransportChannel:
    """Owns the physical connection to one endpoint.

    Connect is single-flight: concurrent callers share one in-flight
    attempt instead of opening duplicate sockets.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        url: str,
        bus: MessageBus,
        *,
        policy: RetryPolicy | None = None,
        connector: Connector | None = None,
        identity: Callable[[], SessionIdentity | None] | None = None,
        command_ids: Iterator[int] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.url = url
        self._bus = bus
        self._policy = policy or RetryPolicy()
        self._connector = connector or websocket_connector
        self._identity = identity or (lambda: None)

        self._state = ChannelState.DISCONNECTED
        self._ws: Socket | None = None
        self._options: ConnectionOptions | None = None
        self._attempts = 0
        self._command_ids = command_ids or itertools.count(1)

        self._inflight: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"TransportChannel({self.endpoint.value}, state={self._state.value})"

    @property
    def state(self) -> ChannelState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if a live connection exists."""
        return self._state == ChannelState.OPEN and self._ws is not None

    @property
    def attempts(self) -> int:
        """Consecutive failed or pending reconnect attempts."""
        return self._attempts

    @property
    def options(self) -> ConnectionOptions | None:
        """Last saved connection options."""
        return self._options

    def next_command_id(self) -> int:
        """Next numeric command id.

        Unique for the lifetime of the id sequence, which outlives the
        channel when one is passed in.
        """
        return next(self._command_ids)

    async def connect(self, options: ConnectionOptions | None = None) -> None:
        """Open the connection, or return at once if it is already open.

        Args:
            options: Credential and rollout tag; saved for later reconnects.
                Optional once a previous call has saved options.

        Raises:
            ConfigurationError: If no options were passed or saved
            TransportClosedError: If the handshake fails
        """
        if options is not None:
            self._options = options

        if self.is_connected:
            return

        if self._options is None:
            raise ConfigurationError(
                f"Options required for initial connection to {self.endpoint.value} endpoint"
            )

        if self._state == ChannelState.CLOSED:
            self._state = ChannelState.DISCONNECTED

        try:
            await self._connect_once(self._options)
        except TransportClosedError:
            self._schedule_reconnect()
            raise

    async def send(self, frame: BaseModel | dict[str, Any] | RawFrame) -> None:
        """Write one frame to the live connection.

        Raises:
            NotConnectedError: If no connection is live
        """
        ws = self._ws
        if ws is None or self._state != ChannelState.OPEN:
            raise NotConnectedError(f"{self.endpoint.value} channel is not connected")
        await self._send_raw(ws, encode_frame(frame))

    async def close(self) -> None:
        """Close the connection and stop any reconnect in progress."""
        self._state = ChannelState.CLOSED
        ws, self._ws = self._ws, None

        for task in (self._reconnect_task, self._reader_task):
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reconnect_task = None
        self._reader_task = None

        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
            logger.info(f"{self.endpoint.value} channel closed")

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def _connect_once(self, options: ConnectionOptions) -> None:
        """Join the in-flight attempt, or start one."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._open(options))
        await asyncio.shield(self._inflight)

    async def _open(self, options: ConnectionOptions) -> None:
        self._state = ChannelState.CONNECTING
        logger.debug(f"Connecting {self.endpoint.value} channel to {self.url}")

        try:
            ws = await self._connector(self.url, options.headers())
        except Exception as e:
            if self._state == ChannelState.CONNECTING:
                self._state = ChannelState.DISCONNECTED
            logger.warning(f"{self.endpoint.value} handshake failed: {e}")
            raise TransportClosedError(f"Failed to connect to {self.url}: {e}") from e

        if self._state == ChannelState.CLOSED:
            with contextlib.suppress(Exception):
                await ws.close()
            raise TransportClosedError(f"{self.endpoint.value} channel closed while connecting")

        self._ws = ws
        self._state = ChannelState.OPEN
        self._reader_task = asyncio.create_task(self._read_loop(ws))

        try:
            for frame in handshake_frames(options, self._identity(), self.next_command_id):
                await self._send_raw(ws, encode_frame(frame))
        except Exception as e:
            if self._ws is ws:
                self._ws = None
                if self._state == ChannelState.OPEN:
                    self._state = ChannelState.DISCONNECTED
            with contextlib.suppress(Exception):
                await ws.close()
            logger.warning(f"{self.endpoint.value} handshake failed: {e}")
            raise TransportClosedError(f"{self.endpoint.value} closed during handshake") from e

        self._attempts = 0
        logger.info(f"{self.endpoint.value} channel connected")

    async def _read_loop(self, ws: Socket) -> None:
        """Background task publishing inbound frames to the bus."""
        try:
            async for raw in ws:
                if is_keepalive(raw):
                    await self._send_raw(ws, raw)
                    continue
                self._bus.publish(InboundFrame(raw=raw, endpoint=self.endpoint.value))
        except ConnectionClosed as e:
            logger.debug(f"{self.endpoint.value} connection closed: {e}")
        except NotConnectedError:
            pass
        except Exception:
            logger.exception(f"{self.endpoint.value} read loop error")
        finally:
            self._on_closed(ws)

    def _on_closed(self, ws: Socket) -> None:
        if ws is not self._ws:
            return  # Stale socket or deliberate close
        self._ws = None
        if self._state == ChannelState.CLOSED:
            return

        code = getattr(ws, "close_code", None)
        reason = getattr(ws, "close_reason", None)
        logger.info(f"{self.endpoint.value} disconnected (code={code}, reason={reason})")
        self._state = ChannelState.DISCONNECTED
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._state == ChannelState.CLOSED:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if not self._policy.allows(self._attempts):
            self._give_up()
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self._state != ChannelState.CLOSED:
            if self.is_connected:
                return
            if not self._policy.allows(self._attempts):
                self._give_up()
                return

            self._attempts += 1
            logger.info(
                f"Attempting to reconnect {self.endpoint.value} in {self._policy.delay:g} "
                f"seconds... (Attempt {self._attempts}/{self._policy.max_attempts})"
            )
            await self._policy.wait()

            options = self._options
            if self._state == ChannelState.CLOSED or options is None:
                return
            try:
                await self._connect_once(options)
            except TransportClosedError as e:
                logger.warning(f"Reconnection failed: {e}")

    def _give_up(self) -> None:
        self._state = ChannelState.GAVE_UP
        logger.error(
            f"Max reconnection attempts ({self._policy.max_attempts}) reached for "
            f"{self.endpoint.value}. Giving up."
        )

    async def _send_raw(self, ws: Socket, data: RawFrame) -> None:
        async with self._send_lock:
            try:
                await ws.send(data)
            except ConnectionClosed as e:
                raise NotConnectedError(f"{self.endpoint.value} connection closed") from e

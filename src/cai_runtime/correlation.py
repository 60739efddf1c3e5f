"""Correlation engine - synchronous request/reply over a multiplexed stream.

Each correlated call registers a PendingRequest keyed by its correlation
token, subscribes a transient handler to the message bus, sends its frame
and suspends until a published frame satisfies its predicate or its
deadline passes. A single-resolution guard on the PendingRequest makes
the matched, timed-out and abandoned paths mutually exclusive.

Disconnects do not fail pending requests: a reconnect may still deliver
the reply, so each request only ends by match, deadline, or explicit
teardown via abandon_all().
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel

from .bus import FrameHandler, MessageBus
from .errors import RequestTimeoutError, TransportClosedError
from .protocol.frames import InboundFrame, RawFrame, encode_frame

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Pure function over a decoded inbound frame
FramePredicate = Callable[[dict[str, Any]], bool]


class FrameSender(Protocol):
    """Anything frames can be sent through (normally a TransportChannel)."""

    async def send(self, frame: RawFrame) -> None: ...


class RequestState(str, Enum):
    """Lifecycle of a pending request. Only PENDING can change."""

    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"


@dataclass(eq=False)
class PendingRequest:
    """An outstanding correlated request waiting for its reply."""

    token: str
    predicate: FramePredicate
    future: asyncio.Future[dict[str, Any]]
    deadline: float
    state: RequestState = RequestState.PENDING
    handler: FrameHandler | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def settle(
        self,
        state: RequestState,
        result: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> bool:
        """Move out of PENDING exactly once.

        Returns:
            True if this call settled the request, False if it was already
            settled by another path
        """
        with self._lock:
            if self.state != RequestState.PENDING:
                return False
            self.state = state

        loop = self.future.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            _complete(self.future, result, error)
        else:
            loop.call_soon_threadsafe(_complete, self.future, result, error)
        return True


def _complete(
    future: asyncio.Future[dict[str, Any]],
    result: dict[str, Any] | None,
    error: BaseException | None,
) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result or {})


class CorrelationEngine:
    """Pairs outgoing commands with their replies on the message bus."""

    def __init__(self, bus: MessageBus, default_timeout: float = DEFAULT_TIMEOUT) -> None:
        self._bus = bus
        self.default_timeout = default_timeout
        self._pending: dict[str, PendingRequest] = {}
        self._lock = threading.Lock()

    @staticmethod
    def new_token() -> str:
        """Generate a correlation token (random 128-bit id as text)."""
        return str(uuid.uuid4())

    @property
    def pending_count(self) -> int:
        """Number of outstanding requests."""
        with self._lock:
            return len(self._pending)

    def is_pending(self, token: str) -> bool:
        with self._lock:
            return token in self._pending

    async def send_and_await(
        self,
        channel: FrameSender,
        frame: BaseModel | dict[str, Any] | RawFrame,
        predicate: FramePredicate,
        timeout: float | None = None,
        token: str | None = None,
        endpoint: str | None = None,
    ) -> dict[str, Any]:
        """Send a frame and wait for the first published frame matching predicate.

        Args:
            channel: Where to send the frame
            frame: Outgoing command (model, dict, or pre-encoded text)
            predicate: Called with each decoded inbound frame; True selects the reply
            timeout: Seconds to wait (defaults to default_timeout)
            token: Correlation token; must not be outstanding. Generated if omitted.
            endpoint: Only consider frames received on this endpoint

        Returns:
            The decoded matching frame

        Raises:
            RequestTimeoutError: If nothing matched before the deadline
            NotConnectedError: If the channel has no live connection
            TransportClosedError: If the request was abandoned on teardown
            ValueError: If the token is already outstanding
        """
        timeout = self.default_timeout if timeout is None else timeout
        token = token or self.new_token()
        data = encode_frame(frame)

        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            token=token,
            predicate=predicate,
            future=loop.create_future(),
            deadline=loop.time() + timeout,
        )

        with self._lock:
            if token in self._pending:
                raise ValueError(f"Correlation token already outstanding: {token}")
            self._pending[token] = pending

        pending.handler = self._make_handler(pending, endpoint)
        self._bus.subscribe(pending.handler)
        timer = loop.call_at(pending.deadline, self._expire, pending, timeout)

        try:
            await channel.send(data)
            return await pending.future
        finally:
            timer.cancel()
            self._bus.unsubscribe(pending.handler)
            with self._lock:
                self._pending.pop(token, None)
            # Send failed or caller cancelled
            pending.settle(RequestState.ABANDONED)

    def abandon_all(self, reason: str = "Client closed") -> int:
        """Fail every outstanding request with TransportClosedError.

        Returns:
            Number of requests abandoned
        """
        with self._lock:
            pending = list(self._pending.values())

        count = 0
        for request in pending:
            if request.settle(RequestState.ABANDONED, error=TransportClosedError(reason)):
                count += 1
        if count:
            logger.info(f"Abandoned {count} pending request(s): {reason}")
        return count

    def _make_handler(self, pending: PendingRequest, endpoint: str | None) -> FrameHandler:
        def handler(frame: InboundFrame) -> None:
            if frame.claimed or pending.state != RequestState.PENDING:
                return
            if endpoint is not None and frame.endpoint != endpoint:
                return
            data = frame.data
            if data is None:
                return
            try:
                matched = pending.predicate(data)
            except Exception as e:
                logger.debug(f"Predicate for {pending.token} raised {e!r}; treating as no match")
                return
            if matched and pending.settle(RequestState.RESOLVED, result=data):
                frame.claimed = True
                self._bus.unsubscribe(handler)

        return handler

    def _expire(self, pending: PendingRequest, timeout: float) -> None:
        error = RequestTimeoutError(pending.token, timeout)
        if pending.settle(RequestState.TIMED_OUT, error=error):
            logger.warning(f"Request {pending.token} timed out after {timeout:g}s")
            if pending.handler is not None:
                self._bus.unsubscribe(pending.handler)

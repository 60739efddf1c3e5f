"""Pytest configuration and shared fixtures.

Provides an in-memory WebSocket double, a connector that hands them out,
and a fake clock so reconnect tests never sleep for real.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosed

from cai_runtime.bus import MessageBus
from cai_runtime.transport.endpoints import ConnectionOptions
from cai_runtime.transport.retry import RetryPolicy

_CLOSE = object()

Responder = Callable[["FakeSocket", Any], None]


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, responder: Responder | None = None) -> None:
        self.sent: list[Any] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()
        self._responder = responder

    @property
    def sent_json(self) -> list[dict[str, Any]]:
        """Sent frames decoded as JSON objects (non-JSON frames skipped)."""
        decoded = []
        for item in self.sent:
            try:
                value = json.loads(item)
            except (TypeError, ValueError):
                continue
            if isinstance(value, dict):
                decoded.append(value)
        return decoded

    async def send(self, message: Any) -> None:
        if self.closed:
            raise ConnectionClosed(None, None)
        self.sent.append(message)
        if self._responder is not None:
            self._responder(self, message)

    def feed(self, raw: Any) -> None:
        """Queue an inbound frame (dicts are JSON-encoded)."""
        if isinstance(raw, dict):
            raw = json.dumps(raw)
        self._incoming.put_nowait(raw)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulate an unexpected close from the remote side."""
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(_CLOSE)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.close_code = 1000
            self._incoming.put_nowait(_CLOSE)

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> Any:
        item = await self._incoming.get()
        if item is _CLOSE:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector double recording every connection attempt."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.sockets: list[FakeSocket] = []
        self.fail_next = 0
        self.fail_always = False
        self.gate: asyncio.Event | None = None
        self.responder: Responder | None = None

    async def __call__(self, url: str, headers: dict[str, str]) -> FakeSocket:
        self.calls.append((url, headers))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_always or self.fail_next > 0:
            self.fail_next = max(0, self.fail_next - 1)
            raise OSError("connection refused")
        socket = FakeSocket(self.responder)
        self.sockets.append(socket)
        return socket

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


class FakeClock:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def bus() -> MessageBus:
    return MessageBus()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy(clock: FakeClock) -> RetryPolicy:
    return RetryPolicy(max_attempts=5, delay=5.0, sleep=clock.sleep)


@pytest.fixture
def options() -> ConnectionOptions:
    return ConnectionOptions(authorization="secret-token", edge_rollout="60")


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a condition on the running loop until it holds."""
    return _wait_until

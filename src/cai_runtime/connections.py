"""Connection manager - one live transport channel per logical endpoint."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel

from .bus import MessageBus
from .config import ClientSettings
from .protocol.frames import RawFrame
from .session import SessionContext
from .transport.channel import Connector, TransportChannel
from .transport.endpoints import ConnectionOptions, Endpoint
from .transport.retry import RetryPolicy

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Creates, caches and tears down transport channels.

    Channels are created lazily on first use and all publish into the
    same message bus. Numeric command ids come from one sequence per
    endpoint, so a replacement channel never reuses an id that a request
    on the previous channel may still be waiting on.
    """

    def __init__(
        self,
        settings: ClientSettings,
        bus: MessageBus,
        session: SessionContext,
        *,
        policy: RetryPolicy | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._settings = settings
        self._bus = bus
        self._session = session
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._connector = connector
        self._channels: dict[Endpoint, TransportChannel] = {}
        self._command_ids: dict[Endpoint, Iterator[int]] = {}

    def channel(self, endpoint: Endpoint) -> TransportChannel:
        """Get the channel for an endpoint, creating it if absent."""
        channel = self._channels.get(endpoint)
        if channel is None:
            channel = TransportChannel(
                endpoint,
                endpoint.url(self._settings),
                self._bus,
                policy=self._policy,
                connector=self._connector,
                identity=self._session.peek,
                command_ids=self._command_ids.setdefault(endpoint, itertools.count(1)),
            )
            self._channels[endpoint] = channel
        return channel

    def channels(self) -> dict[Endpoint, TransportChannel]:
        """Snapshot of the channels created so far."""
        return dict(self._channels)

    async def connect(
        self, endpoint: Endpoint, options: ConnectionOptions | None = None
    ) -> TransportChannel:
        """Connect an endpoint's channel (no-op if already open)."""
        channel = self.channel(endpoint)
        await channel.connect(options)
        return channel

    async def send(self, endpoint: Endpoint, frame: BaseModel | dict[str, Any] | RawFrame) -> None:
        """Send a frame on an endpoint's channel."""
        await self.channel(endpoint).send(frame)

    async def reinitialize(self, endpoint: Endpoint) -> TransportChannel:
        """Close and replace an endpoint's channel, keeping its saved options."""
        old = self._channels.pop(endpoint, None)
        options = None
        if old is not None:
            options = old.options
            await old.close()
        channel = self.channel(endpoint)
        if options is not None:
            await channel.connect(options)
        return channel

    async def close(self) -> None:
        """Close every channel."""
        channels = list(self._channels.values())
        self._channels.clear()
        await asyncio.gather(*(c.close() for c in channels), return_exceptions=True)
        logger.debug(f"Closed {len(channels)} channel(s)")

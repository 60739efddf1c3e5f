"""CaiClient - the session and connection manager.

One CaiClient owns everything a chat session needs: the message bus, the
correlation engine, the transport channels, the session identity and the
HTTP requester. Nothing is module-global, so several isolated clients can
live in one process.

Usage:
    async with CaiClient() as client:
        await client.authenticate(token)
        chat = await client.chat.create_conversation(character_id)
        reply = await client.chat.send_message("Hi!", character_id, chat_id)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from .auth import Authenticator
from .bus import MessageBus
from .chat import ChatAPI, GroupAPI
from .config import ClientSettings
from .connections import ConnectionManager
from .correlation import CorrelationEngine, FramePredicate
from .http import HttpRequester
from .protocol.frames import InboundFrame, RawFrame
from .session import SessionContext, SessionIdentity
from .transport.channel import Connector, TransportChannel
from .transport.endpoints import ConnectionOptions, Endpoint
from .transport.retry import RetryPolicy

logger = logging.getLogger(__name__)


class CaiClient:
    """Client-side session manager for the chat service."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        http: HttpRequester | None = None,
        connector: Connector | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.bus = MessageBus()
        self.session = SessionContext()
        self.engine = CorrelationEngine(self.bus, default_timeout=self.settings.request_timeout)
        self.connections = ConnectionManager(
            self.settings,
            self.bus,
            self.session,
            policy=retry_policy,
            connector=connector,
        )
        self.http = http or HttpRequester(timeout=self.settings.http_timeout)
        self._auth = Authenticator(self.settings, self.http, self.session, self.connections)

    @property
    def chat(self) -> ChatAPI:
        """One-on-one chat operations."""
        return ChatAPI(_client=self)

    @property
    def group(self) -> GroupAPI:
        """Group room operations."""
        return GroupAPI(_client=self)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def authenticate(self, session_token: str, *, connect: bool = True) -> SessionIdentity:
        """Validate a session token, load the profile and open the primary channel."""
        return await self._auth.authenticate(session_token, connect=connect)

    def current_user(self) -> SessionIdentity:
        """The authenticated identity; raises NotAuthenticatedError if none."""
        return self.session.current_user()

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    async def connect(
        self,
        endpoint: Endpoint = Endpoint.PRIMARY,
        options: ConnectionOptions | None = None,
    ) -> TransportChannel:
        """Connect an endpoint (idempotent)."""
        return await self.connections.connect(endpoint, options)

    async def ensure_connected(self, endpoint: Endpoint) -> TransportChannel:
        """Return the endpoint's live channel, opening it if needed.

        Uses the channel's saved options, falling back to the session
        credential when the channel has never been opened.
        """
        channel = self.connections.channel(endpoint)
        if channel.is_connected:
            return channel

        options = channel.options
        identity = self.session.peek()
        if options is None and identity is not None:
            options = ConnectionOptions(
                authorization=identity.authorization,
                edge_rollout=self.settings.edge_rollout,
            )
        await channel.connect(options)
        return channel

    async def send(
        self, endpoint: Endpoint, frame: BaseModel | dict[str, Any] | RawFrame
    ) -> None:
        """Send an uncorrelated frame; raises NotConnectedError if not connected."""
        await self.connections.send(endpoint, frame)

    async def send_and_await(
        self,
        endpoint: Endpoint,
        frame: BaseModel | dict[str, Any] | RawFrame,
        predicate: FramePredicate,
        timeout: float | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        """Send a command on an endpoint and wait for the reply matching predicate."""
        channel = await self.ensure_connected(endpoint)
        return await self.engine.send_and_await(
            channel, frame, predicate, timeout=timeout, token=token, endpoint=endpoint.value
        )

    def on_push(
        self,
        handler: Callable[[dict[str, Any]], None],
        endpoint: Endpoint | None = None,
    ) -> Callable[[], None]:
        """Listen for decoded inbound frames (unsolicited pushes included).

        Args:
            handler: Called with every decodable frame
            endpoint: Only deliver frames from this endpoint

        Returns:
            Unsubscribe function
        """

        def deliver(frame: InboundFrame) -> None:
            if endpoint is not None and frame.endpoint != endpoint.value:
                return
            data = frame.data
            if data is not None:
                handler(data)

        return self.bus.subscribe(deliver)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Abandon pending requests, close channels and the HTTP client."""
        self.engine.abandon_all("Client closed")
        await self.connections.close()
        await self.http.aclose()

    async def __aenter__(self) -> CaiClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

"""cai-runtime - client-side session manager for the Character.AI chat service.

Keeps long-lived WebSocket channels to the chat and group endpoints,
reconnects them on unexpected closes, and turns the multiplexed frame
stream into awaitable request/reply calls.
"""

from .bus import FrameHandler, MessageBus
from .chat import ChatAPI, GroupAPI, HistoryPage
from .client import CaiClient
from .config import ClientSettings
from .correlation import CorrelationEngine, FramePredicate, PendingRequest, RequestState
from .errors import (
    AuthenticationError,
    CaiError,
    ConfigurationError,
    NotAuthenticatedError,
    NotConnectedError,
    RemoteCommandError,
    RequestTimeoutError,
    TransportClosedError,
)
from .protocol import Command, CommandType, InboundFrame, RoomCommand
from .session import SessionContext, SessionIdentity
from .transport import ChannelState, ConnectionOptions, Endpoint, RetryPolicy, TransportChannel

__version__ = "0.1.0"

__all__ = [
    # Client
    "CaiClient",
    "ChatAPI",
    "GroupAPI",
    "HistoryPage",
    "ClientSettings",
    # Core
    "MessageBus",
    "FrameHandler",
    "CorrelationEngine",
    "FramePredicate",
    "PendingRequest",
    "RequestState",
    "SessionContext",
    "SessionIdentity",
    # Transport
    "ChannelState",
    "ConnectionOptions",
    "Endpoint",
    "RetryPolicy",
    "TransportChannel",
    # Protocol
    "Command",
    "CommandType",
    "InboundFrame",
    "RoomCommand",
    # Errors
    "CaiError",
    "AuthenticationError",
    "ConfigurationError",
    "NotAuthenticatedError",
    "NotConnectedError",
    "RemoteCommandError",
    "RequestTimeoutError",
    "TransportClosedError",
]

"""Transport layer.

One TransportChannel per logical endpoint, each with its own connection
state machine and fixed-delay reconnect policy. Inbound frames flow to
the MessageBus; outbound frames are written with TransportChannel.send.
"""

from .channel import ChannelState, Connector, Socket, TransportChannel, websocket_connector
from .endpoints import ConnectionOptions, Endpoint, handshake_frames
from .retry import RetryPolicy

__all__ = [
    "ChannelState",
    "ConnectionOptions",
    "Connector",
    "Endpoint",
    "RetryPolicy",
    "Socket",
    "TransportChannel",
    "handshake_frames",
    "websocket_connector",
]

"""Logical endpoints and the options needed to open them."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..config import ClientSettings
from ..protocol.commands import RoomCommand, user_channel
from ..session import SessionIdentity

SITE_ORIGIN = "https://character.ai"
SITE_REFERER = "https://character.ai/"


class Endpoint(str, Enum):
    """The remote services this client keeps a channel to."""

    PRIMARY = "primary"  # One-on-one chat
    GROUP = "group"  # Group chat rooms

    def url(self, settings: ClientSettings) -> str:
        """WebSocket URL of this endpoint."""
        if self is Endpoint.PRIMARY:
            return settings.primary_url
        return settings.group_url


@dataclass(frozen=True)
class ConnectionOptions:
    """Credential and rollout tag used to open (and reopen) a channel."""

    authorization: str
    edge_rollout: str = "60"

    def headers(self) -> dict[str, str]:
        """Handshake headers for the WebSocket upgrade request."""
        return {
            "Cookie": (
                f'HTTP_AUTHORIZATION="Token {self.authorization}"; '
                f"edge_rollout={self.edge_rollout};"
            ),
            "Origin": SITE_ORIGIN,
            "Referer": SITE_REFERER,
        }

    def __repr__(self) -> str:
        return f"ConnectionOptions(authorization='***', edge_rollout={self.edge_rollout!r})"


def handshake_frames(
    options: ConnectionOptions,
    identity: SessionIdentity | None,
    next_id: Callable[[], int],
) -> list[RoomCommand]:
    """Frames sent immediately after a channel opens.

    A connection-announce frame, then (once a session identity exists) a
    subscription to the user's private push channel.
    """
    frames = [RoomCommand.announce(next_id(), options.authorization)]
    if identity is not None:
        frames.append(RoomCommand.subscribe_channel(next_id(), user_channel(identity.user_id)))
    return frames

"""Session context - the authenticated identity of this client.

The identity is replaced as a whole on every authentication cycle and is
read by channel handshakes and command builders to stamp actor fields.
"""

from __future__ import annotations

import threading
from typing import Any

from pydantic import BaseModel, Field

from .errors import NotAuthenticatedError


class SessionIdentity(BaseModel):
    """The authenticated user.

    ``authorization`` is the bare session token, without the ``Token ``
    prefix used in HTTP headers.
    """

    user_id: str
    username: str
    authorization: str
    profile: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_profile(cls, profile: dict[str, Any], authorization: str) -> SessionIdentity:
        """Build an identity from the ``/chat/user/`` response body.

        Args:
            profile: Response JSON; the ``user`` object holds id and username
            authorization: Bare session token
        """
        user = profile.get("user", profile)
        if "id" not in user:
            raise ValueError("Profile response has no user id")
        return cls(
            user_id=str(user["id"]),
            username=user.get("username") or user.get("name") or "",
            authorization=authorization,
            profile=profile,
        )


class SessionContext:
    """Holder for the single authenticated identity of a client."""

    def __init__(self, identity: SessionIdentity | None = None) -> None:
        self._identity = identity
        self._lock = threading.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    def current_user(self) -> SessionIdentity:
        """Return the cached identity.

        Raises:
            NotAuthenticatedError: If no session has been established
        """
        identity = self._identity
        if identity is None:
            raise NotAuthenticatedError("No session established; authenticate first")
        return identity

    def peek(self) -> SessionIdentity | None:
        """Return the identity, or None when not authenticated."""
        return self._identity

    def replace(self, identity: SessionIdentity) -> None:
        """Replace the whole identity (one call per authentication cycle)."""
        with self._lock:
            self._identity = identity

    def clear(self) -> None:
        with self._lock:
            self._identity = None

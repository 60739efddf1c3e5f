"""Authentication flow.

Validates a session token over HTTP, loads the user profile into the
session context, then opens the primary chat channel.
"""

from __future__ import annotations

import logging

import httpx

from .config import ClientSettings
from .connections import ConnectionManager
from .errors import AuthenticationError
from .http import HttpRequester
from .session import SessionContext, SessionIdentity
from .transport.endpoints import ConnectionOptions, Endpoint

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "Token "


def normalize_token(token: str) -> str:
    """Strip surrounding whitespace and an optional ``Token `` prefix."""
    token = token.strip()
    if token.startswith(TOKEN_PREFIX):
        token = token[len(TOKEN_PREFIX) :]
    return token


class Authenticator:
    """Establishes the session identity for a client."""

    def __init__(
        self,
        settings: ClientSettings,
        http: HttpRequester,
        session: SessionContext,
        connections: ConnectionManager,
    ) -> None:
        self._settings = settings
        self._http = http
        self._session = session
        self._connections = connections

    async def authenticate(self, session_token: str, *, connect: bool = True) -> SessionIdentity:
        """Authenticate with a session token.

        Args:
            session_token: Token, with or without the ``Token `` prefix
            connect: Open the primary channel once the profile is loaded

        Returns:
            The new session identity

        Raises:
            AuthenticationError: If the token is empty or rejected, or the
                user endpoints cannot be reached
        """
        token = normalize_token(session_token)
        if not token:
            raise AuthenticationError("Session token is required")

        self._http.update_token(token)

        try:
            response = await self._http.request(
                f"{self._settings.api_url}/chat/user/settings/",
                "GET",
                include_authorization=True,
            )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Could not validate token: {e}") from e
        if not response.is_success:
            raise AuthenticationError("Invalid authentication token.")

        identity = await self.load_profile(token)
        self._session.replace(identity)
        logger.info(f"Authenticated as {identity.username} ({identity.user_id})")

        if connect:
            await self._connections.connect(
                Endpoint.PRIMARY,
                ConnectionOptions(authorization=token, edge_rollout=self._settings.edge_rollout),
            )
        return identity

    async def load_profile(self, token: str) -> SessionIdentity:
        """Fetch the current user's profile as a session identity."""
        try:
            profile = await self._http.get_json(f"{self._settings.api_url}/chat/user/")
        except (httpx.HTTPError, ValueError) as e:
            raise AuthenticationError(f"Could not load profile: {e}") from e
        try:
            return SessionIdentity.from_profile(profile, authorization=token)
        except (ValueError, AttributeError, TypeError) as e:
            raise AuthenticationError(f"Unexpected profile response: {e}") from e

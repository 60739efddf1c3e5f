"""HTTP requester used for authentication and chat history.

This is a sibling of the WebSocket core, not a dependency of it: channels
and the correlation engine never make HTTP calls.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx

logger = logging.getLogger(__name__)

Method = Literal["GET", "POST", "PATCH", "PUT", "DELETE"]
ContentType = Literal[
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
]

# Browser-like headers the service expects on every request
DEFAULT_HEADERS = {
    "User-Agent": "Character.AI",
    "DNT": "1",
    "Sec-GPC": "1",
    "Connection": "close",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
    "Origin": "https://character.ai",
    "Referer": "https://character.ai/",
    "TE": "trailers",
}


class HttpRequester:
    """Thin wrapper over httpx.AsyncClient that stamps authorization."""

    def __init__(
        self,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._authorization = ""

    @property
    def has_token(self) -> bool:
        return bool(self._authorization)

    def update_token(self, token: str) -> None:
        """Set the session token (bare, without the ``Token `` prefix).

        Empty tokens are ignored.
        """
        if not token:
            return
        self._authorization = f"Token {token}"

    async def request(
        self,
        url: str,
        method: Method = "GET",
        *,
        include_authorization: bool = False,
        body: str | None = None,
        content_type: ContentType | None = None,
        form_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Perform an HTTP request.

        Args:
            url: Absolute URL
            method: HTTP method
            include_authorization: Add the ``Authorization`` header
            body: Raw request body
            content_type: Value for the ``Content-Type`` header
            form_data: Form fields, sent url-encoded or as multipart
                depending on content_type

        Returns:
            The response; status is not checked here
        """
        headers = dict(DEFAULT_HEADERS)
        if include_authorization:
            headers["Authorization"] = self._authorization

        kwargs: dict[str, Any] = {}
        if form_data is not None:
            if content_type == "application/x-www-form-urlencoded":
                headers["Content-Type"] = content_type
                kwargs["data"] = form_data
            else:
                # httpx generates the multipart boundary header itself
                kwargs["files"] = {k: (None, v) for k, v in form_data.items()}
        else:
            if content_type:
                headers["Content-Type"] = content_type
            if body is not None:
                kwargs["content"] = body.encode("utf-8")

        logger.debug(f"{method} {url}")
        return await self._client.request(method, url, headers=headers, **kwargs)

    async def get_json(self, url: str, *, include_authorization: bool = True) -> Any:
        """GET a URL and decode its JSON body, raising on HTTP errors."""
        response = await self.request(url, "GET", include_authorization=include_authorization)
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

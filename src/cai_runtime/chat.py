"""Chat operations built on correlated send-and-await.

Each operation is a command plus a reply predicate; the correlation
engine does the rest.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from pydantic import BaseModel, Field

from .correlation import FramePredicate
from .errors import RemoteCommandError
from .protocol.commands import Command, CommandType, RoomCommand, room_channel
from .transport.endpoints import Endpoint

if TYPE_CHECKING:
    from .client import CaiClient


class HistoryPage(BaseModel):
    """One page of chat turns, newest first."""

    turns: list[dict[str, Any]] = Field(default_factory=list)
    next_token: str | None = None


def command_reply(
    request_id: str,
    command: str | CommandType,
    accept: Callable[[dict[str, Any]], bool] | None = None,
) -> FramePredicate:
    """Predicate for a primary endpoint reply.

    Matches a frame with the given ``request_id`` whose ``command`` is the
    expected reply (and passes ``accept``), or a ``neo_error`` for the same
    request.
    """
    expected = command.value if isinstance(command, CommandType) else command

    def predicate(frame: dict[str, Any]) -> bool:
        if frame.get("request_id") != request_id:
            return False
        if frame.get("command") == CommandType.NEO_ERROR.value:
            return True
        if frame.get("command") != expected:
            return False
        return accept is None or accept(frame)

    return predicate


def command_ack(command_id: int) -> FramePredicate:
    """Predicate for a group endpoint reply to the command with ``command_id``."""

    def predicate(frame: dict[str, Any]) -> bool:
        return frame.get("id") == command_id

    return predicate


def is_final_turn(frame: dict[str, Any]) -> bool:
    """Check whether the first candidate of the frame's turn is final."""
    candidates = frame["turn"]["candidates"]
    return bool(candidates) and bool(candidates[0].get("is_final"))


def raise_for_error(frame: dict[str, Any]) -> dict[str, Any]:
    """Raise RemoteCommandError for error replies, else return the frame."""
    if frame.get("command") == CommandType.NEO_ERROR.value:
        raise RemoteCommandError(frame)
    error = frame.get("error")
    if isinstance(error, dict):
        raise RemoteCommandError(
            {
                "comment": error.get("message"),
                "error_code": error.get("code"),
                "request_id": frame.get("id"),
            }
        )
    return frame


@dataclass
class ChatAPI:
    """One-on-one chat operations."""

    _client: CaiClient

    async def create_conversation(
        self, character_id: str, timeout: float | None = None
    ) -> dict[str, Any]:
        """Create a new chat with a character.

        Resolves when the service adds the greeting turn.

        Returns:
            The ``add_turn`` frame (chat metadata and greeting turn)
        """
        if not character_id:
            raise ValueError("Character ID is required for creating new conversation")

        user = self._client.current_user()
        request_id = self._client.engine.new_token()
        command = Command.create_chat(
            character_id,
            creator_id=user.user_id,
            request_id=request_id,
            origin_id=self._client.settings.origin_id,
        )
        reply = await self._client.send_and_await(
            Endpoint.PRIMARY,
            command,
            command_reply(request_id, CommandType.ADD_TURN),
            timeout=timeout,
            token=request_id,
        )
        return raise_for_error(reply)

    async def send_message(
        self,
        message: str,
        character_id: str,
        chat_id: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Post a message and wait for the character's final reply.

        Intermediate ``update_turn`` frames (streamed partial candidates)
        are ignored.

        Returns:
            The final ``update_turn`` frame
        """
        if not message:
            raise ValueError("Message is required for sending message")
        if not chat_id:
            raise ValueError("Chat ID is required for sending message")
        if not character_id:
            raise ValueError("Character ID is required for sending message")

        user = self._client.current_user()
        request_id = self._client.engine.new_token()
        command = Command.create_and_generate_turn(
            message,
            character_id,
            chat_id,
            author_id=user.user_id,
            author_name=user.username,
            request_id=request_id,
            origin_id=self._client.settings.origin_id,
        )
        reply = await self._client.send_and_await(
            Endpoint.PRIMARY,
            command,
            command_reply(request_id, CommandType.UPDATE_TURN, accept=is_final_turn),
            timeout=timeout,
            token=request_id,
        )
        return raise_for_error(reply)

    async def get_history_page(self, chat_id: str, next_token: str | None = None) -> HistoryPage:
        """Fetch one page (up to 50 turns) of a chat's history."""
        if not chat_id:
            raise ValueError("Chat ID is required for fetching messages")
        query = f"?next_token={quote(next_token, safe='')}" if next_token else ""
        url = f"{self._client.settings.neo_url}/turns/{chat_id}/{query}"
        data = await self._client.http.get_json(url)
        return HistoryPage(
            turns=data.get("turns") or [],
            next_token=(data.get("meta") or {}).get("next_token"),
        )

    async def get_messages(
        self, chat_id: str, next_token: str | None = None
    ) -> list[dict[str, Any]]:
        """Fetch up to 50 turns of a chat; pass ``next_token`` for older ones."""
        page = await self.get_history_page(chat_id, next_token)
        return page.turns

    async def iter_messages(
        self, chat_id: str, max_pages: int | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield turns page by page until history is exhausted."""
        token: str | None = None
        pages = 0
        while max_pages is None or pages < max_pages:
            page = await self.get_history_page(chat_id, token)
            pages += 1
            for turn in page.turns:
                yield turn
            if not page.turns or not page.next_token:
                return
            token = page.next_token


@dataclass
class GroupAPI:
    """Group chat room subscriptions on the group endpoint."""

    _client: CaiClient

    async def subscribe_room(self, room_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Subscribe to a room's push channel and wait for the acknowledgement."""
        return await self._room_command(room_id, subscribe=True, timeout=timeout)

    async def unsubscribe_room(self, room_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Unsubscribe from a room's push channel and wait for the acknowledgement."""
        return await self._room_command(room_id, subscribe=False, timeout=timeout)

    async def _room_command(
        self, room_id: str, *, subscribe: bool, timeout: float | None
    ) -> dict[str, Any]:
        if not room_id:
            raise ValueError("Room ID is required")

        channel = await self._client.ensure_connected(Endpoint.GROUP)
        command_id = channel.next_command_id()
        name = room_channel(room_id)
        if subscribe:
            command = RoomCommand.subscribe_channel(command_id, name)
        else:
            command = RoomCommand.unsubscribe_channel(command_id, name)

        reply = await self._client.engine.send_and_await(
            channel,
            command,
            command_ack(command_id),
            timeout=timeout,
            token=f"{Endpoint.GROUP.value}:{command_id}",
            endpoint=Endpoint.GROUP.value,
        )
        return raise_for_error(reply)

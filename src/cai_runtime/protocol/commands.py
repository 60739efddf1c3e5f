"""Outgoing command envelopes.

Primary endpoint commands carry a caller-chosen ``request_id`` that the
service echoes on every related reply. Group endpoint commands carry a
numeric ``id`` that the service echoes once on its reply.

Payloads are generic structured data; only the envelope is modelled.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_ORIGIN_ID = "web-next"

# Reply annotation labels; each is sent as a zero counter together with
# its "not_" counterpart.
ANNOTATION_LABELS = (
    "boring",
    "inaccurate",
    "repetitive",
    "out_of_character",
    "bad_memory",
    "long",
    "short",
    "ends_chat_early",
    "funny",
    "interesting",
    "helpful",
)


class CommandType(str, Enum):
    """Primary endpoint command and reply discriminators."""

    # Client -> service
    CREATE_CHAT = "create_chat"
    CREATE_AND_GENERATE_TURN = "create_and_generate_turn"

    # Service -> client
    ADD_TURN = "add_turn"
    UPDATE_TURN = "update_turn"
    NEO_ERROR = "neo_error"


class Command(BaseModel):
    """A correlated command for the primary chat endpoint.

    Example:
        {
            "command": "create_chat",
            "request_id": "5d1f...",
            "payload": {"chat": {...}, "with_greeting": true},
            "origin_id": "web-next"
        }
    """

    command: str
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    payload: dict[str, Any] = Field(default_factory=dict)
    origin_id: str = DEFAULT_ORIGIN_ID

    @classmethod
    def create(
        cls,
        command: str | CommandType,
        payload: dict[str, Any] | None = None,
        request_id: str | None = None,
        origin_id: str = DEFAULT_ORIGIN_ID,
    ) -> Command:
        """Factory method for creating commands."""
        return cls(
            command=command.value if isinstance(command, CommandType) else command,
            request_id=request_id or str(uuid.uuid4()),
            payload=payload or {},
            origin_id=origin_id,
        )

    @classmethod
    def create_chat(
        cls,
        character_id: str,
        creator_id: str,
        request_id: str | None = None,
        origin_id: str = DEFAULT_ORIGIN_ID,
    ) -> Command:
        """Create a ``create_chat`` command for a private one-on-one chat.

        The new chat reuses the request id as its chat id.
        """
        request_id = request_id or str(uuid.uuid4())
        return cls.create(
            CommandType.CREATE_CHAT,
            {
                "chat": {
                    "character_id": character_id,
                    "creator_id": creator_id,
                    "chat_id": request_id,
                    "type": "TYPE_ONE_ON_ONE",
                    "visibility": "VISIBILITY_PRIVATE",
                },
                "chat_type": "TYPE_ONE_ON_ONE",
                "with_greeting": True,
            },
            request_id=request_id,
            origin_id=origin_id,
        )

    @classmethod
    def create_and_generate_turn(
        cls,
        message: str,
        character_id: str,
        chat_id: str,
        author_id: str,
        author_name: str,
        request_id: str | None = None,
        origin_id: str = DEFAULT_ORIGIN_ID,
    ) -> Command:
        """Create a ``create_and_generate_turn`` command posting one message.

        The request id doubles as the turn id and the candidate id.
        """
        request_id = request_id or str(uuid.uuid4())
        return cls.create(
            CommandType.CREATE_AND_GENERATE_TURN,
            {
                "chat_type": "TYPE_ONE_ON_ONE",
                "num_candidates": 1,
                "tts_enabled": False,
                "selected_language": "",
                "character_id": character_id,
                "user_name": author_name,
                "turn": {
                    "turn_key": {"turn_id": request_id, "chat_id": chat_id},
                    "author": {
                        "author_id": author_id,
                        "is_human": True,
                        "name": author_name,
                    },
                    "candidates": [{"candidate_id": request_id, "raw_content": message}],
                    "primary_candidate_id": request_id,
                },
                "previous_annotations": empty_annotations(),
                "generate_comparison": False,
            },
            request_id=request_id,
            origin_id=origin_id,
        )


class RoomCommand(BaseModel):
    """A command for the group endpoint.

    Exactly one of the operation fields is set; ``id`` is echoed by the
    service on the reply.

    Example:
        {"id": 3, "subscribe": {"channel": "room:abc"}}
    """

    id: int
    connect: dict[str, Any] | None = None
    subscribe: dict[str, Any] | None = None
    unsubscribe: dict[str, Any] | None = None

    @classmethod
    def announce(cls, command_id: int, token: str, name: str = "python") -> RoomCommand:
        """Connection-announce frame sent right after a channel opens."""
        return cls(id=command_id, connect={"token": token, "name": name})

    @classmethod
    def subscribe_channel(cls, command_id: int, channel: str) -> RoomCommand:
        return cls(id=command_id, subscribe={"channel": channel})

    @classmethod
    def unsubscribe_channel(cls, command_id: int, channel: str) -> RoomCommand:
        return cls(id=command_id, unsubscribe={"channel": channel})


def empty_annotations() -> dict[str, int]:
    """Zeroed ``previous_annotations`` block."""
    return {
        name: 0 for label in ANNOTATION_LABELS for name in (label, f"not_{label}")
    }


def user_channel(user_id: str | int) -> str:
    """Private push channel name for a user."""
    return f"user#{user_id}"


def room_channel(room_id: str) -> str:
    """Push channel name for a group chat room."""
    return f"room:{room_id}"

"""Wire protocol: frame codec and command envelopes."""

from .commands import (
    ANNOTATION_LABELS,
    Command,
    CommandType,
    RoomCommand,
    empty_annotations,
    room_channel,
    user_channel,
)
from .frames import (
    KEEPALIVE_BYTES,
    KEEPALIVE_TEXT,
    InboundFrame,
    RawFrame,
    decode_frame,
    encode_frame,
    is_keepalive,
)

__all__ = [
    # Commands
    "ANNOTATION_LABELS",
    "Command",
    "CommandType",
    "RoomCommand",
    "empty_annotations",
    "room_channel",
    "user_channel",
    # Frames
    "KEEPALIVE_BYTES",
    "KEEPALIVE_TEXT",
    "InboundFrame",
    "RawFrame",
    "decode_frame",
    "encode_frame",
    "is_keepalive",
]

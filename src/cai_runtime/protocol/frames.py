"""Wire frames.

A frame is one JSON document exchanged over a duplex connection. Inbound
frames have no fixed schema; the only field the runtime itself looks at
is the optional ``command`` discriminator (primary endpoint) or the
numeric ``id`` reply field (group endpoint). Everything else is left to
the predicates of correlated calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# The two-byte empty-object frame the service uses as a liveness probe.
KEEPALIVE_TEXT = "{}"
KEEPALIVE_BYTES = b"{}"

RawFrame = bytes | str

_UNSET: Any = object()


def is_keepalive(raw: RawFrame) -> bool:
    """Check whether a raw frame is the keep-alive sentinel."""
    return raw == KEEPALIVE_TEXT or raw == KEEPALIVE_BYTES


def encode_frame(frame: BaseModel | dict[str, Any] | RawFrame) -> str:
    """Serialize an outgoing frame to JSON text.

    Raw text and bytes are passed through unchanged (bytes are decoded as
    UTF-8), models are dumped without unset optional fields.
    """
    if isinstance(frame, str):
        return frame
    if isinstance(frame, bytes):
        return frame.decode("utf-8")
    if isinstance(frame, BaseModel):
        return frame.model_dump_json(exclude_none=True)
    return json.dumps(frame)


def decode_frame(raw: RawFrame) -> dict[str, Any] | None:
    """Best-effort decode of an inbound frame.

    Returns:
        The decoded JSON object, or None when the frame is not valid JSON
        or does not hold an object at the top level.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"Skipping undecodable frame: {e}")
        return None
    if not isinstance(data, dict):
        logger.debug(f"Skipping non-object frame: {type(data).__name__}")
        return None
    return data


@dataclass(eq=False)
class InboundFrame:
    """A raw frame as received from one transport channel.

    The frame is published verbatim; ``data`` decodes it on first access
    and caches the result so every subscriber shares one decode pass.
    ``claimed`` is set by the first correlated request whose predicate
    matches, so that one frame never resolves two requests.
    """

    raw: RawFrame
    endpoint: str | None = None
    claimed: bool = False
    _data: Any = field(default=_UNSET, repr=False)

    @property
    def data(self) -> dict[str, Any] | None:
        """Decoded JSON object, or None if the frame is not structured data."""
        if self._data is _UNSET:
            self._data = decode_frame(self.raw)
        return self._data

    @property
    def command(self) -> str | None:
        """The ``command`` discriminator, if present."""
        data = self.data
        if data is None:
            return None
        value = data.get("command")
        return value if isinstance(value, str) else None

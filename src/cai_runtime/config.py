"""Client configuration.

Settings are plain dataclass fields with defaults for the public service.
Every field can be overridden from the environment with a ``CAI_`` prefix.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields

from .errors import ConfigurationError

ENV_PREFIX = "CAI_"


@dataclass
class ClientSettings:
    """Configuration for a CaiClient and its channels."""

    # WebSocket endpoints
    primary_url: str = "wss://neo.character.ai/ws/"
    group_url: str = "wss://neo.character.ai/connection/websocket"

    # HTTP endpoints
    api_url: str = "https://plus.character.ai"
    neo_url: str = "https://neo.character.ai"

    # Protocol stamps
    edge_rollout: str = "60"
    origin_id: str = "web-next"

    # Timeouts (seconds)
    request_timeout: float = 30.0
    http_timeout: float = 30.0

    # Reconnection: fixed delay, hard cap, no backoff
    reconnect_delay: float = 5.0
    max_reconnect_attempts: int = 5

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientSettings:
        """Build settings from ``CAI_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}

        for f in fields(cls):
            name = f"{ENV_PREFIX}{f.name.upper()}"
            raw = env.get(name)
            if raw is None or raw == "":
                continue
            if f.type in ("float", float):
                overrides[f.name] = _parse(name, raw, float)
            elif f.type in ("int", int):
                overrides[f.name] = _parse(name, raw, int)
            else:
                overrides[f.name] = raw

        return cls(**overrides)  # type: ignore[arg-type]


def _parse(name: str, raw: str, kind: type) -> object:
    try:
        value = kind(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from e
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative")
    return value

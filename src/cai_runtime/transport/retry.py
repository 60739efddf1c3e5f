"""Reconnect policy for transport channels.

Fixed delay, hard cap on consecutive attempts, no exponential backoff.
The attempt counter lives on the channel and only resets on a successful
open.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ..config import ClientSettings

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_DELAY = 5.0


@dataclass
class RetryPolicy:
    """Retry rules plus the clock used to wait between attempts.

    ``sleep`` can be replaced with a fake in tests.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay: float = DEFAULT_DELAY
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def allows(self, attempts: int) -> bool:
        """Check whether another attempt may follow ``attempts`` failed ones."""
        return attempts < self.max_attempts

    async def wait(self) -> None:
        """Wait the fixed delay before the next attempt."""
        await self.sleep(self.delay)

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_reconnect_attempts,
            delay=settings.reconnect_delay,
        )

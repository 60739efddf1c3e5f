"""Message Bus - process-wide broadcast point for inbound frames.

Every frame read by any transport channel is published here. Correlated
requests and unsolicited push listeners subscribe to it. Delivery is
synchronous, in subscription order, on the caller's task or thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .protocol.frames import InboundFrame, RawFrame

logger = logging.getLogger(__name__)

# Type for frame handlers
FrameHandler = Callable[[InboundFrame], None]


class MessageBus:
    """Typed publish/subscribe over a single frame type.

    Thread-safe: the subscriber list is guarded by a lock and publish
    iterates over a snapshot, so handlers may subscribe or unsubscribe
    (including themselves) while a publish is in progress.
    """

    def __init__(self) -> None:
        self._subscribers: list[FrameHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: FrameHandler) -> Callable[[], None]:
        """Register a handler for every published frame.

        Args:
            handler: Callable invoked with each InboundFrame

        Returns:
            Unsubscribe function
        """
        with self._lock:
            self._subscribers.append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: FrameHandler) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        with self._lock:
            try:
                self._subscribers.remove(handler)
            except ValueError:
                return False
        return True

    def publish(self, frame: InboundFrame | RawFrame) -> InboundFrame:
        """Deliver a frame to every current subscriber.

        A handler that raises is logged and skipped; delivery continues
        with the next handler.

        Returns:
            The InboundFrame that was delivered
        """
        if not isinstance(frame, InboundFrame):
            frame = InboundFrame(raw=frame)

        with self._lock:
            subscribers = list(self._subscribers)

        for handler in subscribers:
            try:
                handler(frame)
            except Exception:
                logger.exception(f"Error in frame subscriber {handler!r}")

        return frame

    def is_subscribed(self, handler: FrameHandler) -> bool:
        """Check whether a handler is currently registered."""
        with self._lock:
            return handler in self._subscribers

    @property
    def subscriber_count(self) -> int:
        """Number of registered handlers."""
        with self._lock:
            return len(self._subscribers)

    def reset(self) -> None:
        """Drop all subscribers."""
        with self._lock:
            self._subscribers.clear()

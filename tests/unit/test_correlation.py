"""Unit tests for the correlation engine.

Covers matching, timeouts, the single-resolution guard, first-match-wins
dispatch and handler cleanup.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from cai_runtime.bus import MessageBus
from cai_runtime.correlation import CorrelationEngine, PendingRequest, RequestState
from cai_runtime.errors import NotConnectedError, RequestTimeoutError, TransportClosedError


def make_sender() -> MagicMock:
    sender = MagicMock()
    sender.send = AsyncMock()
    return sender


def publish(bus: MessageBus, data: dict[str, Any]) -> None:
    bus.publish(json.dumps(data).encode("utf-8"))


def done_reply(token: str):
    def predicate(frame: dict[str, Any]) -> bool:
        return frame.get("request_id") == token and frame.get("done") is True

    return predicate


# =============================================================================
# Matching
# =============================================================================


class TestSendAndAwait:
    """Tests for the happy path and matching discipline."""

    @pytest.mark.asyncio
    async def test_resolves_with_matching_frame_not_earlier_partial(
        self, bus: MessageBus, wait_until
    ) -> None:
        """A partial reply for the same token is ignored; the final one resolves."""
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(
                sender, {"request_id": "T1"}, done_reply("T1"), timeout=1.0, token="T1"
            )
        )
        await wait_until(lambda: sender.send.await_count == 1)

        publish(bus, {"request_id": "T1", "done": False, "seq": 1})
        publish(bus, {"request_id": "T1", "done": True, "seq": 2})

        result = await task
        assert result == {"request_id": "T1", "done": True, "seq": 2}
        assert engine.pending_count == 0
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_frame_is_serialized_before_sending(self, bus: MessageBus, wait_until) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {"request_id": "T2"}, done_reply("T2"), timeout=1.0)
        )
        await wait_until(lambda: sender.send.await_count == 1)

        sent = sender.send.await_args.args[0]
        assert isinstance(sent, str)
        assert json.loads(sent) == {"request_id": "T2"}

        publish(bus, {"request_id": "T2", "done": True})
        await task

    @pytest.mark.asyncio
    async def test_undecodable_frames_are_skipped(self, bus: MessageBus, wait_until) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {}, done_reply("T3"), timeout=1.0, token="T3")
        )
        await wait_until(lambda: sender.send.await_count == 1)

        bus.publish(b"\x00not json")
        bus.publish("[1, 2, 3]")
        publish(bus, {"request_id": "T3", "done": True})

        assert (await task)["request_id"] == "T3"

    @pytest.mark.asyncio
    async def test_raising_predicate_counts_as_no_match(self, bus: MessageBus, wait_until) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        def predicate(frame: dict[str, Any]) -> bool:
            return frame["turn"]["final"] is True

        task = asyncio.create_task(engine.send_and_await(sender, {}, predicate, timeout=1.0))
        await wait_until(lambda: sender.send.await_count == 1)

        publish(bus, {"command": "something_else"})
        publish(bus, {"turn": {"final": True}})

        assert (await task) == {"turn": {"final": True}}

    @pytest.mark.asyncio
    async def test_matched_frame_still_reaches_other_subscribers(
        self, bus: MessageBus, wait_until
    ) -> None:
        """Claiming only affects other correlated requests, not push listeners."""
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {}, done_reply("T4"), timeout=1.0, token="T4")
        )
        await wait_until(lambda: sender.send.await_count == 1)

        pushed: list[Any] = []
        bus.subscribe(lambda frame: pushed.append(frame.data))

        publish(bus, {"request_id": "T4", "done": True})
        await task

        assert pushed == [{"request_id": "T4", "done": True}]


class TestFirstMatchWins:
    """One inbound frame resolves at most one pending request."""

    @pytest.mark.asyncio
    async def test_frame_resolves_only_first_matching_request(
        self, bus: MessageBus, wait_until
    ) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        def any_pong(frame: dict[str, Any]) -> bool:
            return frame.get("type") == "pong"

        first = asyncio.create_task(engine.send_and_await(sender, {}, any_pong, timeout=1.0))
        await wait_until(lambda: sender.send.await_count == 1)
        second = asyncio.create_task(engine.send_and_await(sender, {}, any_pong, timeout=1.0))
        await wait_until(lambda: sender.send.await_count == 2)

        publish(bus, {"type": "pong", "n": 1})
        assert (await first)["n"] == 1
        assert not second.done()
        assert engine.pending_count == 1

        publish(bus, {"type": "pong", "n": 2})
        assert (await second)["n"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_requests_select_their_own_replies(
        self, bus: MessageBus, wait_until
    ) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        tasks = {
            token: asyncio.create_task(
                engine.send_and_await(sender, {}, done_reply(token), timeout=1.0, token=token)
            )
            for token in ("a", "b", "c")
        }
        await wait_until(lambda: sender.send.await_count == 3)

        for token in ("c", "a", "b"):
            publish(bus, {"request_id": token, "done": True})

        for token, task in tasks.items():
            assert (await task)["request_id"] == token
        assert bus.subscriber_count == 0


# =============================================================================
# Timeouts and the single-resolution guard
# =============================================================================


class TestTimeout:
    @pytest.mark.asyncio
    async def test_times_out_and_removes_handler(self, bus: MessageBus) -> None:
        """With nothing published the call fails and leaves no handler behind."""
        engine = CorrelationEngine(bus)
        sender = make_sender()

        with pytest.raises(RequestTimeoutError) as exc_info:
            await engine.send_and_await(sender, {}, done_reply("T5"), timeout=0.1, token="T5")

        assert exc_info.value.token == "T5"
        assert exc_info.value.timeout == 0.1
        assert isinstance(exc_info.value, TimeoutError)
        assert bus.subscriber_count == 0
        assert engine.pending_count == 0

    @pytest.mark.asyncio
    async def test_handler_removed_at_deadline(self, bus: MessageBus, wait_until) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {}, done_reply("T6"), timeout=0.1, token="T6")
        )
        await wait_until(lambda: bus.subscriber_count == 1)
        await wait_until(lambda: task.done())

        assert bus.subscriber_count == 0
        assert isinstance(task.exception(), RequestTimeoutError)

    @pytest.mark.asyncio
    async def test_late_frame_after_timeout_is_ignored(self, bus: MessageBus) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        with pytest.raises(RequestTimeoutError):
            await engine.send_and_await(sender, {}, done_reply("T7"), timeout=0.05, token="T7")

        # Nobody listens any more; publishing must be harmless
        frame = bus.publish(json.dumps({"request_id": "T7", "done": True}))
        assert frame.claimed is False

    @pytest.mark.asyncio
    async def test_default_timeout_used(self, bus: MessageBus) -> None:
        engine = CorrelationEngine(bus, default_timeout=0.05)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await engine.send_and_await(make_sender(), {}, done_reply("x"))

        assert exc_info.value.timeout == 0.05


class TestSingleResolution:
    @pytest.mark.asyncio
    async def test_resolve_then_expire_keeps_result(self) -> None:
        loop = asyncio.get_running_loop()
        pending = PendingRequest("t", lambda f: True, loop.create_future(), loop.time())

        assert pending.settle(RequestState.RESOLVED, result={"ok": True}) is True
        assert pending.settle(RequestState.TIMED_OUT, error=RequestTimeoutError("t", 1)) is False

        assert pending.state == RequestState.RESOLVED
        assert await pending.future == {"ok": True}

    @pytest.mark.asyncio
    async def test_expire_then_resolve_keeps_timeout(self) -> None:
        loop = asyncio.get_running_loop()
        pending = PendingRequest("t", lambda f: True, loop.create_future(), loop.time())

        assert pending.settle(RequestState.TIMED_OUT, error=RequestTimeoutError("t", 1)) is True
        assert pending.settle(RequestState.RESOLVED, result={"ok": True}) is False

        assert pending.state == RequestState.TIMED_OUT
        with pytest.raises(RequestTimeoutError):
            await pending.future

    @pytest.mark.asyncio
    async def test_timeout_racing_matching_frame(self, bus: MessageBus, wait_until) -> None:
        """Deadline and match in the same loop tick: exactly one outcome wins."""
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {}, done_reply("race"), timeout=0.05, token="race")
        )
        await wait_until(lambda: sender.send.await_count == 1)
        await asyncio.sleep(0.05)
        publish(bus, {"request_id": "race", "done": True})

        outcome: str
        try:
            await task
            outcome = "resolved"
        except RequestTimeoutError:
            outcome = "timed_out"

        assert outcome in ("resolved", "timed_out")
        assert bus.subscriber_count == 0
        assert engine.pending_count == 0


# =============================================================================
# Registration, failures and teardown
# =============================================================================


class TestRegistration:
    def test_tokens_are_unique(self) -> None:
        tokens = {CorrelationEngine.new_token() for _ in range(1000)}
        assert len(tokens) == 1000

    @pytest.mark.asyncio
    async def test_duplicate_outstanding_token_rejected(self, bus: MessageBus, wait_until) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {}, done_reply("dup"), timeout=1.0, token="dup")
        )
        await wait_until(lambda: engine.is_pending("dup"))

        with pytest.raises(ValueError):
            await engine.send_and_await(sender, {}, done_reply("dup"), timeout=1.0, token="dup")

        publish(bus, {"request_id": "dup", "done": True})
        await task

    @pytest.mark.asyncio
    async def test_send_failure_propagates_and_cleans_up(self, bus: MessageBus) -> None:
        engine = CorrelationEngine(bus)
        sender = MagicMock()
        sender.send = AsyncMock(side_effect=NotConnectedError("primary channel is not connected"))

        with pytest.raises(NotConnectedError):
            await engine.send_and_await(sender, {}, done_reply("n"), timeout=1.0)

        assert bus.subscriber_count == 0
        assert engine.pending_count == 0

    @pytest.mark.asyncio
    async def test_caller_cancellation_cleans_up(self, bus: MessageBus, wait_until) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {}, done_reply("c"), timeout=5.0, token="c")
        )
        await wait_until(lambda: sender.send.await_count == 1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert bus.subscriber_count == 0
        assert engine.pending_count == 0

    @pytest.mark.asyncio
    async def test_abandon_all_fails_pending_requests(self, bus: MessageBus, wait_until) -> None:
        engine = CorrelationEngine(bus)
        sender = make_sender()

        task = asyncio.create_task(
            engine.send_and_await(sender, {}, done_reply("z"), timeout=5.0, token="z")
        )
        await wait_until(lambda: sender.send.await_count == 1)

        assert engine.abandon_all("shutting down") == 1

        with pytest.raises(TransportClosedError, match="shutting down"):
            await task
        assert bus.subscriber_count == 0

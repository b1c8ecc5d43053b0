"""Tests for MessageStream polling and event dispatch."""

import asyncio
from unittest.mock import Mock

import pytest

from kafka_gateway.schemas import Message
from kafka_gateway.stream import CLOSE, DATA, ERROR, MessageStream


def _message(offset, value=None):
    return Message(topic="orders", value=value, partition=0, offset=offset)


def _fetch_from(*results):
    """Fetch returning (or raising) each result once, then empty batches."""
    pending = list(results)

    async def fetch():
        if not pending:
            return []
        result = pending.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    return fetch


class TestListeners:
    """Test listener registration and emission."""

    def test_emit_in_registration_order(self):
        stream = MessageStream("orders", fetch=_fetch_from())
        calls = []
        stream.on(DATA, lambda batch: calls.append(("first", batch)))
        stream.on(DATA, lambda batch: calls.append(("second", batch)))

        stream.emit(DATA, [1])

        assert calls == [("first", [1]), ("second", [1])]

    def test_remove_listener(self):
        stream = MessageStream("orders", fetch=_fetch_from())
        listener = Mock()
        stream.on(ERROR, listener)

        stream.remove_listener(ERROR, listener)
        stream.remove_listener(ERROR, listener)
        stream.emit(ERROR, ValueError())

        listener.assert_not_called()
        assert stream.listener_count(ERROR) == 0

    def test_unknown_event_rejected(self):
        stream = MessageStream("orders", fetch=_fetch_from())

        with pytest.raises(ValueError, match="Unknown stream event"):
            stream.on("end", Mock())

    def test_detach_clears_listeners_and_is_idempotent(self):
        stream = MessageStream("orders", fetch=_fetch_from())
        stream.on(DATA, Mock())
        stream.on(ERROR, Mock())

        stream.detach()
        stream.detach()

        assert stream.is_detached
        assert stream.listener_count(DATA) == 0
        assert stream.listener_count(ERROR) == 0


class TestPolling:
    """Test the polling task."""

    @pytest.mark.asyncio
    async def test_emits_non_empty_batches(self, wait_for):
        batch = [_message(0, {"n": 1}), _message(1, {"n": 2})]
        stream = MessageStream("orders", fetch=_fetch_from([], batch), poll_interval=0.01)
        received = []
        stream.on(DATA, received.append)

        stream.start()
        await wait_for(lambda: received)
        stream.detach()

        assert received == [batch]

    @pytest.mark.asyncio
    async def test_fetch_errors_emitted_and_polling_continues(self, wait_for):
        error = ConnectionResetError()
        batch = [_message(0)]
        stream = MessageStream(
            "orders", fetch=_fetch_from(error, batch), poll_interval=0.01
        )
        errors, received = [], []
        stream.on(ERROR, errors.append)
        stream.on(DATA, received.append)

        stream.start()
        await wait_for(lambda: received)
        stream.detach()

        assert errors == [error]
        assert received == [batch]

    @pytest.mark.asyncio
    async def test_detach_stops_polling(self):
        stream = MessageStream("orders", fetch=_fetch_from(), poll_interval=0.01)
        stream.start()
        assert stream.is_running

        stream.detach()
        await stream.wait_closed()

        assert not stream.is_running

    @pytest.mark.asyncio
    async def test_listener_exception_surfaces_from_wait_closed(self):
        stream = MessageStream("orders", fetch=_fetch_from([_message(0)]), poll_interval=0.01)

        def handler(batch):
            raise RuntimeError("handler failed")

        stream.on(DATA, handler)
        stream.start()

        with pytest.raises(RuntimeError, match="handler failed"):
            await asyncio.wait_for(stream.wait_closed(), timeout=2)

    @pytest.mark.asyncio
    async def test_listener_exception_emitted_as_close(self, wait_for):
        stream = MessageStream("orders", fetch=_fetch_from([_message(0)]), poll_interval=0.01)
        error = RuntimeError("handler failed")
        closed = []
        stream.on(DATA, Mock(side_effect=error))
        stream.on(CLOSE, closed.append)

        stream.start()
        await wait_for(lambda: closed)

        assert closed == [error]
        assert not stream.is_running

    @pytest.mark.asyncio
    async def test_detach_does_not_emit_close(self):
        stream = MessageStream("orders", fetch=_fetch_from(), poll_interval=0.01)
        on_close = Mock()
        stream.on(CLOSE, on_close)
        stream.start()

        stream.detach()
        await stream.wait_closed()

        on_close.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_after_detach_is_noop(self):
        stream = MessageStream("orders", fetch=_fetch_from())
        stream.detach()

        stream.start()

        assert not stream.is_running

# tests/unit/orchestrator/test_unit_events.py - v1
"""Tests for orchestrator/events.py."""

from __future__ import annotations

import logging

import pytest

from autodetect.orchestrator.events import EventChannel


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_emit_in_subscription_order(self):
        channel = EventChannel("progress")
        received = []
        channel.subscribe(lambda x: received.append(("first", x)))

        async def second(x):
            received.append(("second", x))

        channel.subscribe(second)
        await channel.emit(42)
        assert received == [("first", 42), ("second", 42)]

    @pytest.mark.asyncio
    async def test_cancel_stops_delivery(self):
        channel = EventChannel("status")
        received = []
        sub = channel.subscribe(received.append)
        sub.cancel()
        await channel.emit("running")
        assert received == []
        assert not sub.active
        assert len(channel) == 0

    def test_cancel_is_idempotent(self):
        channel = EventChannel("status")
        sub = channel.subscribe(print)
        sub.cancel()
        sub.cancel()
        assert len(channel) == 0

    def test_cancel_after_clear(self):
        channel = EventChannel("report")
        sub = channel.subscribe(print)
        channel.clear()
        sub.cancel()
        assert not sub.active

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, caplog):
        channel = EventChannel("progress")
        received = []

        def broken(_):
            raise RuntimeError("ui crashed")

        channel.subscribe(broken)
        channel.subscribe(received.append)
        with caplog.at_level(logging.ERROR):
            await channel.emit("snapshot")
        assert received == ["snapshot"]
        assert "Subscriber on 'progress' channel failed" in caplog.text

    @pytest.mark.asyncio
    async def test_multiple_arguments(self):
        channel = EventChannel("status")
        received = []
        channel.subscribe(lambda status, session: received.append((status, session)))
        await channel.emit("paused", {"id": "s1"})
        assert received == [("paused", {"id": "s1"})]

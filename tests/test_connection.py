"""Tests for the per-viewer connection lifecycle."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from kubeview.broker import Broker
from kubeview.connection import ClientConnection, ConnectionState
from kubeview.models import ChangeEvent, EventKind, Resource

from .conftest import make_obj


class TestLifecycle:
    def test_starts_opening(self, broker: Broker) -> None:
        conn = ClientConnection(broker, "default", "abc")
        assert conn.state is ConnectionState.OPENING
        assert broker.subscriber_count() == 0

    def test_open_registers(self, broker: Broker) -> None:
        conn = ClientConnection(broker, "default", "abc")
        sub = conn.open()
        assert conn.state is ConnectionState.STREAMING
        assert sub.scope == "default"
        assert broker.subscriber_count("default") == 1

    def test_open_twice_rejected(self, broker: Broker) -> None:
        conn = ClientConnection(broker, "default")
        conn.open()
        with pytest.raises(RuntimeError):
            conn.open()

    def test_close_unregisters_exactly_once(self) -> None:
        broker = MagicMock()
        conn = ClientConnection(broker, "default", "abc")
        conn.open()
        conn.close()
        conn.close()
        assert conn.state is ConnectionState.CLOSED
        broker.unregister.assert_called_once_with(broker.register.return_value)

    def test_close_before_open(self) -> None:
        broker = MagicMock()
        conn = ClientConnection(broker, "default")
        conn.close()
        assert conn.state is ConnectionState.CLOSED
        broker.unregister.assert_not_called()

    async def test_context_manager_closes_on_error(self, broker: Broker) -> None:
        conn = ClientConnection(broker, "default")
        with pytest.raises(ValueError):
            async with conn:
                assert broker.subscriber_count() == 1
                raise ValueError("transport failed")
        assert conn.state is ConnectionState.CLOSED
        assert broker.subscriber_count() == 0


class TestEvents:
    async def test_yields_published_events(self, broker: Broker) -> None:
        event = ChangeEvent(EventKind.ADDED, Resource(make_obj("Pod", "web-1")))
        async with ClientConnection(broker, "default") as conn:
            broker.publish("default", event)
            stream = conn.events()
            assert await stream.__anext__() is event
            await stream.aclose()

    async def test_replaced_connection_ends(self, broker: Broker) -> None:
        first = ClientConnection(broker, "default", "abc")
        first.open()
        received = []

        async def consume() -> None:
            async for event in first.events():
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        async with ClientConnection(broker, "default", "abc"):
            await asyncio.wait_for(task, timeout=2.0)
            assert first.state is ConnectionState.CLOSED
            assert broker.subscriber_count() == 1
        assert received == []

    async def test_cancelled_consumer_unregisters(self, broker: Broker) -> None:
        async def serve() -> None:
            async with ClientConnection(broker, "default") as conn:
                async for _ in conn.events():
                    pass

        task = asyncio.create_task(serve())
        await asyncio.sleep(0.01)
        assert broker.subscriber_count() == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert broker.subscriber_count() == 0

    async def test_events_before_open_is_empty(self, broker: Broker) -> None:
        conn = ClientConnection(broker, "default")
        assert [e async for e in conn.events()] == []

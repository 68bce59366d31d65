"""Tests for the per-user connection registry."""

import pytest

from helpers import make_connection, make_websocket
from matcha_realtime import ConnectionRegistry, ConnectionState


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


class TestRegisterAndRemove:
    """Test registry membership."""

    @pytest.mark.asyncio
    async def test_should_track_connection_when_registered(
        self, registry: ConnectionRegistry
    ) -> None:
        conn = make_connection(1)

        first = await registry.register(1, conn)

        assert first is True
        assert registry.lookup(1) == {conn}
        assert registry.is_connected(1)
        assert registry.connection_count() == 1

    @pytest.mark.asyncio
    async def test_should_keep_multiple_devices_per_user(
        self, registry: ConnectionRegistry
    ) -> None:
        phone, laptop = make_connection(1), make_connection(1)

        assert await registry.register(1, phone) is True
        assert await registry.register(1, laptop) is False

        assert registry.lookup(1) == {phone, laptop}
        assert registry.connected_user_ids() == [1]

    @pytest.mark.asyncio
    async def test_should_delete_user_key_when_last_connection_removed(
        self, registry: ConnectionRegistry
    ) -> None:
        phone, laptop = make_connection(1), make_connection(1)
        await registry.register(1, phone)
        await registry.register(1, laptop)

        assert await registry.remove(1, phone) is False
        assert registry.is_connected(1)

        assert await registry.remove(1, laptop) is True
        assert not registry.is_connected(1)
        assert registry.connected_user_ids() == []
        assert registry.lookup(1) == frozenset()

    @pytest.mark.asyncio
    async def test_should_ignore_removal_of_unknown_user(
        self, registry: ConnectionRegistry
    ) -> None:
        assert await registry.remove(42, make_connection(42)) is True
        assert registry.connection_count() == 0

    @pytest.mark.asyncio
    async def test_should_return_snapshot_from_lookup(
        self, registry: ConnectionRegistry
    ) -> None:
        conn = make_connection(1)
        await registry.register(1, conn)

        snapshot = registry.lookup(1)
        await registry.remove(1, conn)

        assert snapshot == {conn}


class TestSendToUser:
    """Test fan-out to one user's connections."""

    @pytest.mark.asyncio
    async def test_should_report_nothing_delivered_when_user_not_connected(
        self, registry: ConnectionRegistry
    ) -> None:
        result = await registry.send_to_user(7, {"type": "message"})

        assert result.total == 0
        assert result.delivered is False

    @pytest.mark.asyncio
    async def test_should_send_to_every_connection_of_user(
        self, registry: ConnectionRegistry
    ) -> None:
        ws1, ws2, other = make_websocket(), make_websocket(), make_websocket()
        await registry.register(1, make_connection(1, ws1))
        await registry.register(1, make_connection(1, ws2))
        await registry.register(2, make_connection(2, other))

        payload = {"type": "notification", "content": "hi"}
        result = await registry.send_to_user(1, payload)

        assert result.succeeded == 2
        ws1.send_json.assert_awaited_once_with(payload)
        ws2.send_json.assert_awaited_once_with(payload)
        other.send_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_should_remove_connection_whose_send_fails(
        self, registry: ConnectionRegistry
    ) -> None:
        good, bad = make_websocket(), make_websocket()
        bad.send_json.side_effect = RuntimeError("Connection error")
        good_conn, bad_conn = make_connection(1, good), make_connection(1, bad)
        await registry.register(1, good_conn)
        await registry.register(1, bad_conn)

        result = await registry.send_to_user(1, {"type": "ping"})

        assert result.total == 2
        assert result.succeeded == 1
        assert result.failed == 1
        assert registry.lookup(1) == {good_conn}

    @pytest.mark.asyncio
    async def test_should_skip_closed_connections(
        self, registry: ConnectionRegistry
    ) -> None:
        conn = make_connection(1)
        conn.state = ConnectionState.CLOSED
        await registry.register(1, conn)

        result = await registry.send_to_user(1, {"type": "ping"})

        assert result.total == 0
        conn.websocket.send_json.assert_not_called()

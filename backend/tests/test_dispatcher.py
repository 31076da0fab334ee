"""
Pulse Backend — Fan-out Dispatcher Tests
=========================================

What we test:
    ✅ multi-device sender to an offline receiver
    ✅ zero live connections is a silent no-op
    ✅ one copy per live connection, sender == receiver not duplicated
    ✅ dead transports are purged and closed, other pushes still delivered
    ✅ broadcast / single send
"""

import pytest

from app.realtime.dispatcher import FanoutDispatcher
from app.realtime.events import ChatMessage
from app.realtime.registry import Connection, ConnectionRegistry, PresenceChange
from tests.conftest import CREATED_AT, FakeTransport


def message(sender="A", receiver="B", mid=501):
    return ChatMessage(
        id=mid,
        conversation_id=7,
        sender_id=sender,
        receiver_id=receiver,
        content="hi",
        created_at=CREATED_AT,
    )


def add(registry, user_id, cid, fail=False):
    transport = FakeTransport(cid, fail=fail)
    registry.register(user_id, Connection(user_id=user_id, transport=transport, id=cid))
    return transport


class TestDispatch:
    def setup_method(self):
        self.registry = ConnectionRegistry()
        self.dispatcher = FanoutDispatcher(self.registry)

    @pytest.mark.asyncio
    async def test_two_devices_to_offline_receiver(self):
        c1 = add(self.registry, "A", "c1")
        c2 = add(self.registry, "A", "c2")

        report = await self.dispatcher.dispatch(message())

        assert sorted(report.delivered) == ["c1", "c2"]
        assert report.failed == []
        assert len(c1.sent) == 1 and len(c2.sent) == 1
        assert c1.sent[0]["event"] == "receiveMessage"
        assert c1.sent[0]["data"]["id"] == 501

    @pytest.mark.asyncio
    async def test_nobody_online_is_silent(self):
        report = await self.dispatcher.dispatch(message())

        assert report.attempted == 0

    @pytest.mark.asyncio
    async def test_payload_shape(self):
        c3 = add(self.registry, "B", "c3")

        await self.dispatcher.dispatch(message())

        assert c3.sent == [
            {
                "event": "receiveMessage",
                "data": {
                    "id": 501,
                    "conversationId": 7,
                    "senderId": "A",
                    "receiverId": "B",
                    "content": "hi",
                    "createdAt": CREATED_AT.isoformat(),
                },
            }
        ]

    @pytest.mark.asyncio
    async def test_self_conversation_gets_one_copy_per_connection(self):
        c1 = add(self.registry, "A", "c1")

        await self.dispatcher.dispatch(message(sender="A", receiver="A"))

        assert len(c1.sent) == 1

    @pytest.mark.asyncio
    async def test_dead_connection_is_purged(self):
        alive = add(self.registry, "A", "c1")
        dead = add(self.registry, "A", "c2", fail=True)
        receiver = add(self.registry, "B", "c3")

        report = await self.dispatcher.dispatch(message())

        assert report.failed == ["c2"]
        assert sorted(report.delivered) == ["c1", "c3"]
        assert len(alive.sent) == 1 and len(receiver.sent) == 1
        assert self.registry.lookup("A") == {"c1"}
        assert dead.closed_with == 1011
        assert alive.closed_with is None

    @pytest.mark.asyncio
    async def test_purge_reports_offline_transition(self):
        changes = []

        async def on_change(change):
            changes.append(change)

        self.dispatcher.on_presence_change = on_change
        add(self.registry, "B", "c3", fail=True)

        await self.dispatcher.dispatch(message())

        assert changes == [PresenceChange("B", False)]
        assert self.registry.lookup("B") == frozenset()


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_broadcast_and_send(self):
        registry = ConnectionRegistry()
        dispatcher = FanoutDispatcher(registry)
        t1 = add(registry, 1, "c1")
        t2 = add(registry, 2, "c2")

        report = await dispatcher.broadcast({"event": "presence", "data": {}})
        assert sorted(report.delivered) == ["c1", "c2"]

        assert await dispatcher.send("c2", {"event": "pong", "data": {}}) is True
        assert await dispatcher.send("ghost", {"event": "pong", "data": {}}) is False
        assert len(t1.sent) == 1 and len(t2.sent) == 2

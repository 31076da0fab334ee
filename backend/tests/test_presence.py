"""
Pulse Backend — Presence Tests
===============================

What we test:
    ✅ online status derived from registry occupancy
    ✅ notifications are edge-triggered (first connect / last disconnect only)
    ✅ a failing subscriber never breaks the connection flow
    ✅ optional presence broadcast to live connections
"""

import pytest

from app.realtime import create_hub
from app.realtime.registry import PresenceChange
from tests.conftest import FakeTransport


class TestPresence:
    @pytest.mark.asyncio
    async def test_edge_triggered_notifications(self, hub):
        changes = []

        async def record(change):
            changes.append(change)

        hub.presence.subscribe(record)

        s1 = await hub.gateway.connect(FakeTransport("c1"), {"userId": "5"})
        s2 = await hub.gateway.connect(FakeTransport("c2"), {"userId": "5"})
        assert hub.presence.is_online(5)

        await hub.gateway.disconnect(s1)
        assert hub.presence.is_online(5)

        await hub.gateway.disconnect(s2)
        assert not hub.presence.is_online(5)

        assert changes == [PresenceChange(5, True), PresenceChange(5, False)]

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_contained(self, hub):
        async def boom(change):
            raise RuntimeError("subscriber down")

        hub.presence.subscribe(boom)

        session = await hub.gateway.connect(FakeTransport(), {"userId": "5"})

        assert hub.presence.online_users() == {5}
        await hub.gateway.disconnect(session)
        assert hub.presence.online_users() == frozenset()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, hub):
        seen = []

        async def record(change):
            seen.append(change)

        unsubscribe = hub.presence.subscribe(record)
        unsubscribe()
        unsubscribe()

        await hub.gateway.connect(FakeTransport(), {"userId": "5"})
        assert seen == []

    @pytest.mark.asyncio
    async def test_presence_broadcast(self, store, resolver):
        hub = create_hub(store, resolver, presence_broadcast=True)
        watcher = FakeTransport("watcher")
        await hub.gateway.connect(watcher, {"userId": "1"})

        session = await hub.gateway.connect(FakeTransport("c2"), {"userId": "2"})
        await hub.gateway.disconnect(session)

        presence = watcher.events("presence")
        assert {"userId": 2, "online": True} in presence
        assert presence[-1] == {"userId": 2, "online": False}

"""
Pulse Backend — Connection Registry Tests
==========================================

What we test:
    ✅ register / lookup with several devices per user
    ✅ idempotent register, connection moved between users
    ✅ last deregister removes the user entry (no empty sets)
    ✅ unknown deregister is a no-op
    ✅ random register/deregister sequences against a reference model
"""

import random

from app.realtime.registry import Connection, ConnectionRegistry, PresenceChange
from tests.conftest import FakeTransport


def conn(user_id, cid):
    return Connection(user_id=user_id, transport=FakeTransport(cid), id=cid)


class TestRegister:
    def setup_method(self):
        self.registry = ConnectionRegistry()

    def test_lookup_unknown_user_is_empty(self):
        assert self.registry.lookup("nobody") == frozenset()

    def test_register_multiple_devices(self):
        assert self.registry.register(1, conn(1, "c1")) == PresenceChange(1, True)
        assert self.registry.register(1, conn(1, "c2")) is None

        assert self.registry.lookup(1) == {"c1", "c2"}
        assert self.registry.owner("c2") == 1
        assert self.registry.connection_count() == 2
        assert self.registry.user_count() == 1

    def test_register_is_idempotent(self):
        c = conn(1, "c1")
        self.registry.register(1, c)
        assert self.registry.register(1, c) is None

        assert self.registry.lookup(1) == {"c1"}
        assert len(self.registry) == 1

    def test_connection_id_belongs_to_one_user_only(self):
        self.registry.register(1, conn(1, "c1"))
        self.registry.register(1, conn(1, "c2"))

        self.registry.register(2, conn(2, "c1"))

        assert self.registry.lookup(1) == {"c2"}
        assert self.registry.lookup(2) == {"c1"}
        assert self.registry.owner("c1") == 2

    def test_lookup_returns_a_snapshot(self):
        self.registry.register(1, conn(1, "c1"))
        snapshot = self.registry.lookup(1)
        self.registry.register(1, conn(1, "c2"))

        assert snapshot == {"c1"}


class TestDeregister:
    def setup_method(self):
        self.registry = ConnectionRegistry()

    def test_last_connection_removes_entry(self):
        self.registry.register("alice", conn("alice", "c1"))

        change = self.registry.deregister("c1")

        assert change == PresenceChange("alice", False)
        assert self.registry.lookup("alice") == frozenset()
        assert "alice" not in self.registry.users()
        assert self.registry.get("c1") is None

    def test_other_devices_stay_registered(self):
        self.registry.register(1, conn(1, "c1"))
        self.registry.register(1, conn(1, "c2"))

        assert self.registry.deregister("c1") is None
        assert self.registry.lookup(1) == {"c2"}

    def test_unknown_connection_is_noop(self):
        self.registry.register(1, conn(1, "c1"))

        assert self.registry.deregister("ghost") is None
        assert self.registry.deregister("ghost") is None

        assert self.registry.lookup(1) == {"c1"}
        assert self.registry.users() == {1}

    def test_double_disconnect(self):
        self.registry.register(1, conn(1, "c1"))

        assert self.registry.deregister("c1") == PresenceChange(1, False)
        assert self.registry.deregister("c1") is None


def test_random_sequences_match_reference_model():
    rng = random.Random(1234)
    registry = ConnectionRegistry()
    model = {}  # connection_id -> user_id

    for step in range(2000):
        cid = f"c{rng.randrange(30)}"
        if rng.random() < 0.6:
            user = rng.randrange(6)
            registry.register(user, conn(user, cid))
            model[cid] = user
        else:
            registry.deregister(cid)
            model.pop(cid, None)

        for user in range(6):
            expected = {c for c, u in model.items() if u == user}
            assert registry.lookup(user) == expected, f"step {step}"

        assert registry.users() == set(model.values())
        assert registry.connection_ids() == set(model)

import unittest

from chatsync.errors import StoreError
from chatsync.memory import InMemoryStore
from chatsync.store import SERVER_TIMESTAMP

from .store_util import FakeClock


class InMemoryStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.store = InMemoryStore(now_func=self.clock.now)
        self.conn = self.store.connect()

    def _recorder(self):
        received = []
        return received, lambda snapshot: received.append(snapshot.value)

    async def test_set_get_and_remove_prunes_empty_parents(self):
        await self.conn.set("a/b/c", 1)
        await self.conn.set("a/d", "x")
        self.assertEqual(await self.conn.get("a"), {"b": {"c": 1}, "d": "x"})

        await self.conn.remove("a/b/c")
        self.assertEqual(await self.conn.get("a"), {"d": "x"})
        self.assertIsNone(await self.conn.get("a/b"))

        await self.conn.set("a/d", None)
        self.assertIsNone(await self.conn.get("a"))
        self.assertIsNone(await self.conn.get(""))

    async def test_server_timestamp_resolves_to_store_clock(self):
        await self.conn.set("users/u1", {"email": "a@x.com", "lastSeen": SERVER_TIMESTAMP})

        self.assertEqual(await self.conn.get("users/u1/lastSeen"), "2023-11-14T22:13:20.000Z")

    async def test_lists_are_stored_as_index_keyed_children(self):
        await self.conn.set("l", ["x", None, "z"])

        self.assertEqual(await self.conn.get("l"), {"0": "x", "2": "z"})

    async def test_push_keys_preserve_creation_order(self):
        keys = []
        for index in range(30):
            keys.append(await self.conn.push("rooms/r1/messages", {"text": str(index)}))
            if index % 7 == 0:
                self.clock.advance(0.001)

        stored = await self.conn.get("rooms/r1/messages")
        self.assertEqual(list(sorted(stored)), keys)
        self.assertEqual([stored[key]["text"] for key in sorted(stored)], [str(i) for i in range(30)])

    async def test_subscribers_receive_full_snapshots_for_related_writes_only(self):
        received, callback = self._recorder()
        await self.conn.set("rooms/r1/name", "Lobby")
        await self.conn.subscribe("rooms/r1", callback)

        await self.conn.set("rooms/r1/members/u1", {"email": "a@x.com"})
        await self.conn.set("rooms/r2/name", "Other")
        await self.conn.set("rooms/r1/name", "Lobby")
        await self.conn.remove("rooms")

        self.assertEqual(
            received,
            [
                {"name": "Lobby"},
                {"name": "Lobby", "members": {"u1": {"email": "a@x.com"}}},
                None,
            ],
        )

    async def test_update_is_a_single_atomic_write(self):
        await self.conn.set("users/u1", {"email": "a@x.com", "online": True})
        received, callback = self._recorder()
        await self.conn.subscribe("users/u1", callback)

        await self.conn.update("users/u1", {"online": False, "lastSeen": "later"})
        await self.conn.update("", {"users/u1/username": "amy", "rooms/r1/name": "Lobby"})

        self.assertEqual(len(received), 3)
        self.assertEqual(received[1], {"email": "a@x.com", "online": False, "lastSeen": "later"})
        self.assertEqual(received[2]["username"], "amy")
        self.assertEqual(await self.conn.get("rooms/r1/name"), "Lobby")

    async def test_update_rejects_overlapping_paths(self):
        with self.assertRaises(StoreError) as ctx:
            await self.conn.update("users", {"u1": {"email": "a"}, "u1/email": "b"})

        self.assertEqual(ctx.exception.code, "invalid_request")
        self.assertIsNone(await self.conn.get("users"))

    async def test_forbidden_keys_are_rejected(self):
        with self.assertRaises(StoreError) as ctx:
            await self.conn.get("users/a.b")
        self.assertEqual(ctx.exception.code, "invalid_path")

        with self.assertRaises(StoreError) as ctx:
            await self.conn.set("users", {"a#b": 1})
        self.assertEqual(ctx.exception.code, "invalid_path")

    async def test_disconnect_writes_fire_exactly_once(self):
        observer = self.store.connect()
        received, callback = self._recorder()
        await self.conn.set("users/u1", {"email": "a@x.com", "online": True})
        await self.conn.set("rooms/r1/members/u1", {"email": "a@x.com"})
        await observer.subscribe("users/u1", callback)

        await self.conn.on_disconnect("users/u1", "update", {"online": False, "lastSeen": SERVER_TIMESTAMP})
        await self.conn.on_disconnect("rooms/r1/members/u1", "remove")
        self.clock.advance(5)
        self.conn.disconnect()
        self.conn.disconnect()

        self.assertEqual(len(received), 2)
        self.assertEqual(received[-1], {"email": "a@x.com", "online": False, "lastSeen": "2023-11-14T22:13:25.000Z"})
        self.assertIsNone(await observer.get("rooms/r1/members/u1"))
        self.assertEqual(self.store.connection_count(), 1)

    async def test_registering_again_replaces_and_cancel_removes(self):
        await self.conn.on_disconnect("flags/a", "set", 1)
        await self.conn.on_disconnect("flags/a", "set", 2)
        await self.conn.on_disconnect("flags/b", "set", 3)
        await self.conn.cancel_on_disconnect("flags/b")

        self.conn.disconnect()

        self.assertEqual(self.store.read("flags"), {"a": 2})

    async def test_invalid_disconnect_registrations_are_rejected(self):
        with self.assertRaises(StoreError):
            await self.conn.on_disconnect("flags/a", "increment", 1)
        with self.assertRaises(StoreError):
            await self.conn.on_disconnect("flags/a", "update", "not a mapping")

    async def test_closed_connection_stops_subscriptions_and_rejects_calls(self):
        received, callback = self._recorder()
        await self.conn.subscribe("rooms", callback)
        other = self.store.connect()

        self.conn.disconnect()
        await other.set("rooms/r1/name", "Lobby")

        self.assertEqual(received, [None])
        self.assertEqual(self.store.hub.subscriber_count(), 0)
        with self.assertRaises(StoreError) as ctx:
            await self.conn.set("rooms/r2/name", "x")
        self.assertEqual(ctx.exception.code, "disconnected")


if __name__ == "__main__":
    unittest.main()

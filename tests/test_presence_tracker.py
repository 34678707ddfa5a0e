import asyncio
import unittest

from fakes import FakeClock, FakeDocumentStore
from threadsync.repositories.user_repository import UserRepository
from threadsync.schemas.chat import PeerPresence
from threadsync.services.presence_tracker import PresenceTracker, presence_label


class PresenceLabelTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()

    def _seen(self, seconds_ago: float) -> PeerPresence:
        return PeerPresence(user_id="B", is_online=False, last_seen_at=self.clock.now() - int(seconds_ago * 1000))

    def test_relative_labels(self):
        now = self.clock.now()
        self.assertEqual(presence_label(self._seen(30), now), "Last seen just now")
        self.assertEqual(presence_label(self._seen(90), now), "Last seen 1m ago")
        self.assertEqual(presence_label(self._seen(59 * 60), now), "Last seen 59m ago")
        self.assertEqual(presence_label(self._seen(3700), now), "Last seen 1h ago")
        self.assertEqual(presence_label(self._seen(50 * 3600), now), "Last seen 2d ago")

    def test_future_last_seen_clamps(self):
        self.assertEqual(presence_label(self._seen(-120), self.clock.now()), "Last seen just now")

    def test_online_and_unknown(self):
        now = self.clock.now()
        self.assertEqual(presence_label(PeerPresence(user_id="B", is_online=True, last_seen_at=1), now), "Online")
        self.assertEqual(presence_label(PeerPresence(user_id="B"), now), "Offline")
        self.assertEqual(presence_label(None, now), "Offline")


class PresenceTrackerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.store = FakeDocumentStore(self.clock)
        self.changes = 0
        self.tracker = PresenceTracker(
            UserRepository(self.store), on_change=self._changed, now_func=self.clock.now, tick_seconds=3600
        )

    async def asyncTearDown(self):
        await self.tracker.close()

    def _changed(self):
        self.changes += 1

    async def test_label_follows_clock(self):
        self.store.put("users", "B", {"name": "Bee", "isOnline": False, "lastSeenAt": self.clock.now() - 90_000})
        self.tracker.sync(["B"])
        self.assertEqual(self.tracker.label("B"), "Last seen 1m ago")
        self.clock.advance(3610)
        self.assertEqual(self.tracker.label("B"), "Last seen 1h ago")
        self.assertEqual(self.tracker.display_name("B"), "Bee")

    async def test_lookup_by_uid_fills_presence(self):
        self.store.put("users", "auto-id", {"uid": "B", "online": True, "displayName": "Bee"})
        self.tracker.sync(["B"])
        self.assertEqual(self.tracker.label("B"), "Online")
        self.assertEqual(self.tracker.snapshot()["B"]["display_name"], "Bee")

    async def test_updates_merge_across_shapes(self):
        self.store.put("users", "B", {"name": "Bee"})
        self.tracker.sync(["B"])
        self.store.put("users", "auto-id", {"uid": "B", "isOnline": True})
        presence = self.tracker.get("B")
        self.assertEqual(presence.display_name, "Bee")
        self.assertTrue(presence.is_online)

    async def test_sync_diffs_listeners(self):
        self.tracker.sync(["B", "C", "", "B"])
        self.assertEqual(sorted(self.tracker.peer_ids), ["B", "C"])
        self.assertEqual(len(self.store.active_listeners()), 4)

        self.tracker.sync(["C", "D"])
        self.assertEqual(sorted(self.tracker.peer_ids), ["C", "D"])
        self.assertEqual(len(self.store.active_listeners()), 4)
        self.assertEqual(len(self.store.listeners), 6)

    async def test_dropped_peer_forgets_presence(self):
        self.store.put("users", "B", {"name": "Bee", "isOnline": True})
        self.tracker.sync(["B"])
        self.assertIsNotNone(self.tracker.get("B"))

        self.tracker.sync([])
        self.assertIsNone(self.tracker.get("B"))
        self.assertNotIn("B", self.tracker.snapshot())
        self.assertEqual(self.tracker.label("B"), "Offline")

    async def test_unknown_peer(self):
        self.tracker.sync(["zzzzzzzz9"])
        self.assertEqual(self.tracker.label("zzzzzzzz9"), "Offline")
        self.assertEqual(self.tracker.display_name("zzzzzzzz9"), "User zzzzzz")
        self.assertEqual(self.tracker.label(None), "Offline")

    async def test_tick_refreshes_and_close_stops(self):
        tracker = PresenceTracker(UserRepository(self.store), on_change=self._changed, tick_seconds=0.01)
        tracker.start()
        await asyncio.sleep(0.05)
        self.assertGreater(self.changes, 0)

        tracker.sync(["B"])
        await tracker.close()
        self.assertEqual(self.store.active_listeners(), [])
        count = self.changes
        await asyncio.sleep(0.03)
        self.store.put("users", "B", {"isOnline": True})
        self.assertEqual(self.changes, count)

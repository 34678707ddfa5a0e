import unittest

from fakes import FakeDocumentStore
from threadsync.repositories.conversation_repository import ConversationRepository
from threadsync.schemas.chat import LogicalThread
from threadsync.services.thread_resolver import ThreadResolver


class ThreadResolverTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = FakeDocumentStore()
        self.resolver = ThreadResolver(ConversationRepository(self.store))

    def _creates(self):
        return [w for w in self.store.writes if w[0] == "create"]

    async def test_reuses_reversed_pair(self):
        self.store.put("conversations", "c9", {"participant1_id": "B", "participant2_id": "A"})
        self.assertEqual(await self.resolver.resolve("A", "B"), "c9")
        self.assertEqual(self._creates(), [])

    async def test_each_shape_is_discoverable(self):
        variants = {
            "pair": {"participant1_id": "A", "participant2_id": "B"},
            "reversed": {"participant1_id": "B", "participant2_id": "A"},
            "ids": {"participantIds": ["B", "A"]},
            "members": {"participants": ["A", "B"]},
        }
        for name, data in variants.items():
            with self.subTest(shape=name):
                store = FakeDocumentStore()
                store.put("conversations", "existing", data)
                resolver = ThreadResolver(ConversationRepository(store))
                self.assertEqual(await resolver.resolve("A", "B"), "existing")
                self.assertEqual([w for w in store.writes if w[0] == "create"], [])

    async def test_array_scan_ignores_other_peers(self):
        self.store.put("conversations", "group", {"participantIds": ["A", "C"]})
        self.assertIsNone(await self.resolver.find_existing("A", "B"))

    async def test_known_thread_skips_queries(self):
        thread = LogicalThread(key="A|B", id="c1", participant_ids=["A", "B"], source_ids=["c1"])
        self.assertEqual(await self.resolver.resolve("A", "B", [thread]), "c1")
        self.assertEqual(self.store.queries, [])

    async def test_failing_pair_queries_still_reach_array_scan(self):
        self.store.failing_fields.add("participant1_id")
        self.store.put("conversations", "c4", {"participants": ["B", "A"]})
        self.assertEqual(await self.resolver.resolve("A", "B"), "c4")

    async def test_creates_both_representations(self):
        conversation_id = await self.resolver.resolve("A", "B")
        data = self.store.data(f"conversations/{conversation_id}")
        self.assertEqual(data["participantIds"], ["A", "B"])
        self.assertEqual(data["participants"], ["A", "B"])
        self.assertEqual((data["participant1_id"], data["participant2_id"]), ("A", "B"))
        self.assertEqual(data["unreadCountByUser"], {"A": 0, "B": 0})
        self.assertEqual(data["updatedAt"], self.store.clock.now())
        self.assertEqual(len(self._creates()), 1)

        # a second resolve finds the record it just created
        self.assertEqual(await self.resolver.resolve("B", "A"), conversation_id)
        self.assertEqual(len(self._creates()), 1)

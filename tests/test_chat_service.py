import unittest

from fakes import FakeClock, FakeDocumentStore, settle
from threadsync.services.chat_service import SEND_FAILED, ChatService
from threadsync.services.message_merger import MESSAGES_UNAVAILABLE


def seed(store: FakeDocumentStore) -> None:
    now = store.clock.now()
    store.put("users", "B", {"name": "Bee", "isOnline": False, "lastSeenAt": now - 90_000})
    store.put("users", "C", {"displayName": "Cee", "isOnline": True})
    store.put(
        "conversations",
        "c1",
        {"participant1_id": "A", "participant2_id": "B", "updated_at": 1_000, "unreadCountByUser": {"A": 1}},
    )
    store.put(
        "conversations",
        "c2",
        {"participantIds": ["B", "A"], "lastMessageText": "unread", "updatedAt": 2_000, "unreadCountByUser": {"A": 2}},
    )
    store.put("conversations/c1/messages", "m1", {"sender_id": "B", "content": "hi", "created_at": 1_000, "status": "sent"})
    store.put("conversations/c2/messages", "m1", {"senderId": "B", "text": "hi", "created_at": 1_000, "read_by": ["A"]})
    store.put("conversations/c2/messages", "m2", {"senderId": "B", "text": "unread", "created_at": 1_500})


class ChatServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.store = FakeDocumentStore(self.clock)
        self.events = []
        self.service = ChatService(
            self.store, "A", lambda kind, payload: self.events.append((kind, payload)), now_func=self.clock.now,
            tick_seconds=3600,
        )

    async def asyncTearDown(self):
        await self.service.close()

    def last(self, kind):
        for event_kind, payload in reversed(self.events):
            if event_kind == kind:
                return payload
        raise AssertionError(f"no {kind} event")

    async def test_duplicate_records_open_as_one_thread(self):
        seed(self.store)
        self.service.start()
        await settle()

        threads = self.last("threads")
        self.assertEqual(len(threads["items"]), 1)
        item = threads["items"][0]
        self.assertEqual(item["id"], "c2")
        self.assertEqual(item["source_ids"], ["c1", "c2"])
        self.assertEqual(item["merged_unread_count"], 3)
        self.assertEqual(item["peer_id"], "B")
        self.assertEqual(item["peer_label"], "Bee")
        self.assertEqual(item["presence"], "Last seen 1m ago")
        self.assertEqual(threads["selected"], "c2")

        messages = self.last("messages")
        self.assertEqual(messages["thread_id"], "c2")
        self.assertEqual([m["id"] for m in messages["items"]], ["m1", "m2"])
        self.assertTrue(all(m["is_read"] for m in messages["items"]))

    async def test_read_receipts_written_once_per_copy(self):
        seed(self.store)
        self.service.start()
        await settle()

        self.assertTrue(self.store.data("conversations/c2/messages/m2")["isRead"])
        paths = [w[1] for w in self.store.writes if w[0] == "update"]
        self.assertEqual(len(paths), len(set(paths)))
        self.assertIn("conversations/c2/messages/m2", paths)
        self.assertNotIn("conversations/c2/messages/m1", paths)

    async def test_presence_events_follow_clock(self):
        seed(self.store)
        self.service.start()
        await settle()
        self.assertEqual(self.last("presence")["peers"]["B"]["label"], "Last seen 1m ago")
        self.clock.advance(3600)
        self.assertEqual(self.service.presence.label("B"), "Last seen 1h ago")

    async def test_select_by_any_source_id_and_switch(self):
        seed(self.store)
        self.store.put("conversations", "c3", {"participantIds": ["A", "C"], "lastMessageText": "yo", "updatedAt": 500})
        self.store.put("conversations/c3/messages", "m9", {"sender_id": "C", "content": "yo", "created_at": 400})
        self.service.start()
        await settle()

        self.assertTrue(self.service.select_thread("c3"))
        await settle()
        self.assertEqual(self.last("threads")["selected"], "c3")
        self.assertEqual([m["id"] for m in self.last("messages")["items"]], ["m9"])
        self.assertEqual(self.store.active_listeners("conversations/c1/messages"), [])
        self.assertEqual(self.store.active_listeners("conversations/c2/messages"), [])

        self.assertTrue(self.service.select_thread("c1"))
        self.assertEqual(self.service.selected_thread.id, "c2")
        self.assertFalse(self.service.select_thread("nope"))

    async def test_selection_survives_winner_change(self):
        seed(self.store)
        self.service.start()
        await settle()
        self.store.put(
            "conversations", "c1", {"participant1_id": "A", "participant2_id": "B", "updated_at": 9_000}
        )
        await settle()
        self.assertEqual(self.last("threads")["selected"], "c1")
        self.assertEqual([m["id"] for m in self.last("messages")["items"]], ["m1", "m2"])

    async def test_first_message_to_new_peer_creates_thread(self):
        seed(self.store)
        self.service.start()
        self.service.open_peer("D")
        self.assertEqual(self.last("threads")["pending_peer_id"], "D")

        message_id = await self.service.send_message("  hello  ")
        await settle()

        self.assertIsNotNone(message_id)
        thread = self.service.selected_thread
        self.assertEqual(sorted(thread.participant_ids), ["A", "D"])
        stored = self.store.data(f"conversations/{thread.id}/messages/{message_id}")
        self.assertEqual(stored["content"], "hello")
        self.assertEqual(stored["senderId"], "A")
        self.assertEqual(self.store.data(f"conversations/{thread.id}")["lastMessageText"], "hello")
        self.assertEqual([m["content"] for m in self.last("messages")["items"]], ["hello"])
        self.assertIsNone(self.last("threads")["pending_peer_id"])

    async def test_send_to_known_peer_reuses_thread(self):
        seed(self.store)
        self.service.start()
        await settle()
        await self.service.send_message("again", peer_id="B")
        self.assertEqual([w for w in self.store.writes if w[0] == "create" and w[1] == "conversations"], [])
        self.assertEqual(self.store.data("conversations/c2")["lastMessageText"], "again")

    async def test_send_validation(self):
        self.service.start()
        with self.assertRaises(ValueError):
            await self.service.send_message("   ", peer_id="B")
        with self.assertRaises(ValueError):
            await self.service.send_message("hi")

    async def test_send_failure_surfaces_error(self):
        seed(self.store)
        self.service.start()
        await settle()
        self.store.failing_writes.add("conversations/c2/messages")
        self.assertIsNone(await self.service.send_message("hi"))
        self.assertEqual(self.last("messages")["error"], SEND_FAILED)

    async def test_listener_failure_surfaces_error(self):
        seed(self.store)
        self.service.start()
        await settle()
        self.store.fail_listeners("conversations/c2/messages")
        self.assertEqual(self.last("messages")["error"], MESSAGES_UNAVAILABLE)

    async def test_close_releases_every_listener(self):
        seed(self.store)
        self.service.start()
        await settle()
        await self.service.close()
        self.assertEqual(self.store.active_listeners(), [])

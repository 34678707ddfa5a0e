import unittest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from fakes import FakeDocumentStore
from test_chat_service import seed
from threadsync.database.connection import store_dependency
from threadsync.routers.chat import router as chat_router
from threadsync.routers.conversations import router as conversations_router
from threadsync.routers.presence import router as presence_router


class RouterTests(unittest.TestCase):
    def setUp(self):
        self.store = FakeDocumentStore()
        seed(self.store)
        app = FastAPI()
        app.include_router(chat_router)
        app.include_router(conversations_router)
        app.include_router(presence_router)
        app.dependency_overrides[store_dependency] = lambda: self.store
        self.client = TestClient(app)

    def test_conversation_list_is_deduplicated(self):
        resp = self.client.get("/conversations", params={"user_id": "A"})
        self.assertEqual(resp.status_code, 200)
        items = resp.json()["items"]
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["id"], "c2")
        self.assertEqual(items[0]["source_ids"], ["c1", "c2"])
        self.assertEqual(items[0]["merged_unread_count"], 3)

    def test_conversation_list_filters(self):
        self.store.put("conversations", "c3", {"participantIds": ["A", "C"], "lastMessageText": "lunch?", "updatedAt": 5})
        resp = self.client.get("/conversations", params={"user_id": "A", "q": "LUNCH"})
        self.assertEqual([t["id"] for t in resp.json()["items"]], ["c3"])
        resp = self.client.get("/conversations", params={"user_id": "A", "unread_only": "true"})
        self.assertEqual([t["id"] for t in resp.json()["items"]], ["c2"])

    def test_messages_merge_every_source(self):
        resp = self.client.get("/conversations/c1/messages", params={"user_id": "A"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["source_ids"], ["c1", "c2"])
        self.assertEqual([m["id"] for m in body["items"]], ["m1", "m2"])
        self.assertTrue(body["items"][0]["is_read"])

    def test_messages_require_participant(self):
        self.assertEqual(self.client.get("/conversations/c1/messages", params={"user_id": "Z"}).status_code, 404)
        self.assertEqual(self.client.get("/conversations/nope/messages", params={"user_id": "A"}).status_code, 404)

    def test_presence(self):
        body = self.client.get("/presence/C").json()
        self.assertEqual(body["display_name"], "Cee")
        self.assertTrue(body["online"])
        self.assertEqual(body["label"], "Online")

        body = self.client.get("/presence/unknown-user").json()
        self.assertEqual(body["display_name"], "User unknow")
        self.assertFalse(body["online"])
        self.assertEqual(body["label"], "Offline")

    def test_send_endpoint(self):
        resp = self.client.post("/messages/A/send", json={"content": "ping", "peer_id": "B"})
        self.assertEqual(resp.status_code, 200)
        message_id = resp.json()["message_id"]
        # without a live thread list the pair lookup answers first
        self.assertEqual(self.store.data(f"conversations/c1/messages/{message_id}")["content"], "ping")
        self.assertEqual([w for w in self.store.writes if w[:2] == ("create", "conversations")], [])

        self.assertEqual(self.client.post("/messages/A/send", json={"content": " ", "peer_id": "B"}).status_code, 400)
        self.assertEqual(self.client.post("/messages/A/send", json={"content": "x"}).status_code, 400)

    def test_websocket_session(self):
        with self.client.websocket_connect("/messages/ws/chat/A") as ws:
            threads = self._receive_until(ws, lambda f: f["type"] == "threads" and f["items"])
            self.assertEqual(threads["selected"], "c2")
            self.assertEqual(threads["items"][0]["peer_label"], "Bee")

            ws.send_json({"type": "send", "content": "over socket", "client_message_id": "tmp-1"})
            ack = self._receive_until(ws, lambda f: f["type"] == "ack")
            self.assertTrue(ack["ok"])
            self.assertEqual(ack["client_message_id"], "tmp-1")

            ws.send_text("not json")
            error = self._receive_until(ws, lambda f: f["type"] == "error")
            self.assertEqual(error["scope"], "frame")

            ws.send_json({"type": "select", "thread_id": "missing"})
            error = self._receive_until(ws, lambda f: f["type"] == "error")
            self.assertEqual(error["scope"], "select")

        self.assertEqual(self.store.data(f"conversations/c2/messages/{ack['message_id']}")["text"], "over socket")
        self.assertIn("isOnline", self.store.data("users/A"))

    @staticmethod
    def _receive_until(ws, predicate, limit=50):
        for _ in range(limit):
            frame = ws.receive_json()
            if predicate(frame):
                return frame
        raise AssertionError("expected frame never arrived")

from typing import List, Optional

from threadsync.models import fields
from threadsync.models.message import MessageDocument, ReadReceiptFields
from threadsync.repositories.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    ErrorCallback,
    RawRecord,
    SnapshotCallback,
    StoreQuery,
    Subscription,
)


LEGACY_COLLECTION = "messages"


def thread_messages_path(conversation_id: str) -> str:
    return f"conversations/{conversation_id}/messages"


def read_receipt_fields() -> ReadReceiptFields:
    # every spelling at once so readers of any schema variant see the change
    return {
        "is_read": True,
        "isRead": True,
        "read": True,
        "seen": True,
        "status": "read",
        "read_at": SERVER_TIMESTAMP,
        "readAt": SERVER_TIMESTAMP,
    }


class MessageRepository:

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def live_queries(self, conversation_id: str, limit: int) -> List[StoreQuery]:
        """Live listener shapes, most specific first."""
        path = thread_messages_path(conversation_id)
        ordered = [
            StoreQuery(path=path, order_by=name, descending=True, limit=limit)
            for name in fields.MESSAGE_ORDER_FIELDS
        ]
        return ordered + [StoreQuery(path=path, limit=limit)]

    def legacy_queries(self, conversation_id: str, limit: int) -> List[StoreQuery]:
        base = StoreQuery(path=LEGACY_COLLECTION, limit=limit)
        return [base.where(name, "==", conversation_id) for name in fields.MESSAGE_CONVERSATION]

    def latest_queries(self, conversation_id: str) -> List[StoreQuery]:
        return self.live_queries(conversation_id, limit=1)

    def subscribe(self, query: StoreQuery, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        return self._store.subscribe(query, on_snapshot, on_error)

    async def query(self, query: StoreQuery) -> List[RawRecord]:
        return await self._store.query(query)

    async def mark_read(self, message_id: str, conversation_id: Optional[str] = None) -> None:
        """Write the read receipt to one location; raises StoreError on failure."""
        if conversation_id:
            path = f"{thread_messages_path(conversation_id)}/{message_id}"
        else:
            path = f"{LEGACY_COLLECTION}/{message_id}"
        await self._store.update(path, read_receipt_fields())

    async def save_message(self, conversation_id: str, sender_id: str, content: str, message_type: str = "text") -> str:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "conversationId": conversation_id,
            "sender_id": sender_id,
            "senderId": sender_id,
            "content": content,
            "text": content,
            "message_type": message_type,
            "messageType": message_type,
            "created_at": SERVER_TIMESTAMP,
            "createdAt": SERVER_TIMESTAMP,
            "status": "sent",
            "delivered": False,
            "is_read": False,
            "isRead": False,
            "read": False,
        }
        return await self._store.create(thread_messages_path(conversation_id), doc)

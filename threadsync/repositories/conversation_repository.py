from typing import Dict, List, Optional, Sequence, Tuple

from threadsync.models import fields
from threadsync.models.conversation import ConversationDocument
from threadsync.repositories.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    ErrorCallback,
    RawRecord,
    SnapshotCallback,
    StoreError,
    StoreQuery,
    Subscription,
)


COLLECTION = "conversations"


class ConversationRepository:

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def participant_queries(self, user_id: str, limit: int) -> List[Tuple[str, StoreQuery]]:
        """Every query shape that can find a user's conversation records."""
        base = StoreQuery(path=COLLECTION, limit=limit)
        shapes = [(name, base.where(name, "==", user_id)) for name in fields.PARTICIPANT_PAIR]
        shapes += [(name, base.where(name, "array-contains", user_id)) for name in fields.PARTICIPANT_ARRAYS]
        return shapes

    def pair_query(self, first_id: str, second_id: str) -> StoreQuery:
        first_field, second_field = fields.PARTICIPANT_PAIR
        return (
            StoreQuery(path=COLLECTION, limit=1)
            .where(first_field, "==", first_id)
            .where(second_field, "==", second_id)
        )

    def array_queries(self, user_id: str, limit: int) -> List[StoreQuery]:
        base = StoreQuery(path=COLLECTION, limit=limit)
        return [base.where(name, "array-contains", user_id) for name in fields.PARTICIPANT_ARRAYS]

    def subscribe(self, query: StoreQuery, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        return self._store.subscribe(query, on_snapshot, on_error)

    async def query(self, query: StoreQuery) -> List[RawRecord]:
        return await self._store.query(query)

    async def list_for_user(self, user_id: str, limit: int) -> List[RawRecord]:
        """One-shot union of every participant shape; failing shapes are skipped."""
        by_id: Dict[str, RawRecord] = {}
        for _name, query in self.participant_queries(user_id, limit):
            try:
                records = await self._store.query(query)
            except StoreError:
                continue
            for record in records:
                by_id[record.id] = record
        return list(by_id.values())

    async def create_thread(self, participant_ids: Sequence[str]) -> str:
        ids = list(dict.fromkeys(participant_ids))
        first_field, second_field = fields.PARTICIPANT_PAIR
        doc: ConversationDocument = {
            "participantIds": ids,
            "participants": ids,
            first_field: ids[0],
            second_field: ids[1] if len(ids) > 1 else ids[0],
            "createdAt": SERVER_TIMESTAMP,
            "created_at": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
            "lastMessageText": "",
            "last_message_text": "",
            "lastMessageAt": SERVER_TIMESTAMP,
            "last_message_at": SERVER_TIMESTAMP,
            "unreadCountByUser": {uid: 0 for uid in ids},
        }
        return await self._store.create(COLLECTION, doc)

    async def update_on_new_message(self, conversation_id: str, preview: str) -> None:
        await self._store.update(
            f"{COLLECTION}/{conversation_id}",
            {
                "lastMessageText": preview,
                "last_message_text": preview,
                "lastMessageAt": SERVER_TIMESTAMP,
                "last_message_at": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
            },
        )

    async def get(self, conversation_id: str) -> Optional[RawRecord]:
        return await self._store.get(f"{COLLECTION}/{conversation_id}")

from typing import Optional

from threadsync.models import fields
from threadsync.models.user import UserDocument
from threadsync.repositories.document_store import (
    SERVER_TIMESTAMP,
    DocumentCallback,
    DocumentStore,
    ErrorCallback,
    RawRecord,
    SnapshotCallback,
    StoreError,
    StoreQuery,
    Subscription,
)


COLLECTION = "users"


class UserRepository:

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def document_path(self, user_id: str) -> str:
        return f"{COLLECTION}/{user_id}"

    def lookup_query(self, user_id: str) -> StoreQuery:
        return StoreQuery(path=COLLECTION, limit=1).where(fields.USER_LOOKUP, "==", user_id)

    def subscribe_profile(self, user_id: str, on_snapshot: DocumentCallback, on_error: ErrorCallback) -> Subscription:
        return self._store.subscribe_document(self.document_path(user_id), on_snapshot, on_error)

    def subscribe_lookup(self, user_id: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        return self._store.subscribe(self.lookup_query(user_id), on_snapshot, on_error)

    async def get_profile(self, user_id: str) -> Optional[RawRecord]:
        """Direct document first, then the ``uid`` lookup shape."""
        try:
            direct = await self._store.get(self.document_path(user_id))
            if direct is not None:
                return direct
            matches = await self._store.query(self.lookup_query(user_id))
        except StoreError:
            return None
        return matches[0] if matches else None

    async def touch_presence(self, user_id: str, online: bool) -> None:
        doc: UserDocument = {"isOnline": online, "lastSeenAt": SERVER_TIMESTAMP}
        await self._store.set(self.document_path(user_id), doc, merge=True)

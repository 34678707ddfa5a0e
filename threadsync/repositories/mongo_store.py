import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from bson import ObjectId
from bson.errors import BSONError
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from threadsync.repositories.document_store import (
    SERVER_TIMESTAMP,
    DocumentCallback,
    DocumentNotFound,
    DocumentStore,
    ErrorCallback,
    RawRecord,
    SnapshotCallback,
    StoreError,
    StoreQuery,
    Subscription,
    split_document_path,
)


logger = logging.getLogger(__name__)

PARENT_FIELD = "_parent"


def collection_location(collection_path: str) -> Tuple[str, Optional[str]]:
    """Map a slash path to (mongo collection name, parent document path).

    ``conversations`` -> (``conversations``, None)
    ``conversations/c1/messages`` -> (``conversations.messages``, ``conversations/c1``)
    """
    parts = [p for p in collection_path.split("/") if p]
    if not parts or len(parts) % 2 == 0:
        raise StoreError(f"not a collection path: {collection_path!r}")
    name = ".".join(parts[0::2])
    parent = "/".join(parts[:-1]) or None
    return name, parent


def build_filter(query: StoreQuery) -> Dict[str, Any]:
    _, parent = collection_location(query.path)
    clauses: List[Dict[str, Any]] = []
    if parent:
        clauses.append({PARENT_FIELD: parent})
    for f in query.filters:
        if f.op == "==":
            clauses.append({f.field: f.value})
        elif f.op == "array-contains":
            clauses.append({f.field: {"$elemMatch": {"$eq": f.value}}})
        else:
            raise StoreError(f"unsupported operator {f.op!r}")
    if query.order_by:
        # ordered queries only see documents that carry the order field
        clauses.append({query.order_by: {"$exists": True}})
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _resolve_sentinels(fields: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    resolved: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is SERVER_TIMESTAMP:
            resolved[key] = now
        elif isinstance(value, Mapping):
            resolved[key] = _resolve_sentinels(value, now)
        else:
            resolved[key] = value
    return resolved


def _to_record(doc: Dict[str, Any]) -> RawRecord:
    data = {k: v for k, v in doc.items() if k not in ("_id", PARENT_FIELD)}
    return RawRecord(id=str(doc.get("_id")), data=data)


@contextmanager
def _translate_errors():
    try:
        yield
    except (PyMongoError, BSONError) as exc:
        raise StoreError(str(exc)) from exc


class MongoDocumentStore(DocumentStore):

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db
        self._tasks: Set[asyncio.Task] = set()

    def _collection(self, collection_path: str):
        name, _ = collection_location(collection_path)
        return self._db[name]

    def _document_filter(self, path: str) -> Tuple[Any, Dict[str, Any], Optional[str]]:
        collection_path, doc_id = split_document_path(path)
        _, parent = collection_location(collection_path)
        key: Any = doc_id
        if ObjectId.is_valid(doc_id):
            # documents written by other clients may be keyed by a native ObjectId
            key = {"$in": [doc_id, ObjectId(doc_id)]}
        selector: Dict[str, Any] = {"_id": key}
        if parent:
            selector[PARENT_FIELD] = parent
        return self._collection(collection_path), selector, parent

    async def query(self, query: StoreQuery) -> List[RawRecord]:
        collection = self._collection(query.path)
        selector = build_filter(query)
        with _translate_errors():
            cursor = collection.find(selector)
            if query.order_by:
                cursor = cursor.sort(query.order_by, DESCENDING if query.descending else ASCENDING)
            if query.limit:
                cursor = cursor.limit(query.limit)
            items = await cursor.to_list(length=query.limit or None)
        return [_to_record(it) for it in items]

    async def get(self, path: str) -> Optional[RawRecord]:
        collection, selector, _ = self._document_filter(path)
        with _translate_errors():
            doc = await collection.find_one(selector)
        return _to_record(doc) if doc else None

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        collection, selector, _ = self._document_filter(path)
        payload = _resolve_sentinels(fields, datetime.now(timezone.utc))
        with _translate_errors():
            result = await collection.update_one(selector, {"$set": payload})
        if not result.matched_count:
            raise DocumentNotFound(path)

    async def set(self, path: str, fields: Mapping[str, Any], merge: bool = True) -> None:
        collection, selector, parent = self._document_filter(path)
        payload = _resolve_sentinels(fields, datetime.now(timezone.utc))
        with _translate_errors():
            if isinstance(selector["_id"], dict):
                # an upsert needs one concrete key
                existing = await collection.find_one(selector, {"_id": 1})
                selector["_id"] = existing["_id"] if existing else split_document_path(path)[1]
            if merge:
                update: Dict[str, Any] = {"$set": payload}
                if parent:
                    update["$setOnInsert"] = {PARENT_FIELD: parent}
                await collection.update_one(selector, update, upsert=True)
            else:
                doc = dict(payload)
                if parent:
                    doc[PARENT_FIELD] = parent
                await collection.replace_one(selector, doc, upsert=True)

    async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
        collection = self._collection(collection_path)
        _, parent = collection_location(collection_path)
        doc: Dict[str, Any] = {"_id": str(ObjectId())}
        if parent:
            doc[PARENT_FIELD] = parent
        doc.update(_resolve_sentinels(fields, datetime.now(timezone.utc)))
        with _translate_errors():
            await collection.insert_one(doc)
        return doc["_id"]

    def subscribe(self, query: StoreQuery, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        collection = self._collection(query.path)
        build_filter(query)  # reject unsupported shapes before watching

        async def deliver() -> None:
            on_snapshot(await self.query(query))

        return self._watch(collection, [], deliver, on_error)

    def subscribe_document(self, path: str, on_snapshot: DocumentCallback, on_error: ErrorCallback) -> Subscription:
        collection, selector, _ = self._document_filter(path)

        async def deliver() -> None:
            on_snapshot(await self.get(path))

        return self._watch(collection, [{"$match": {"documentKey._id": selector["_id"]}}], deliver, on_error)

    def _watch(self, collection, pipeline, deliver, on_error: ErrorCallback) -> Subscription:
        # Change streams only say "something changed"; every event re-reads
        # the whole query so listeners always receive full snapshots.
        async def run() -> None:
            try:
                await deliver()
                with _translate_errors():
                    async with collection.watch(pipeline) as stream:
                        async for _change in stream:
                            await deliver()
            except StoreError as exc:
                logger.warning("Live query on %s stopped: %s", collection.name, exc)
                on_error(exc)
            except Exception as exc:
                logger.exception("Live query on %s failed", collection.name)
                on_error(StoreError(str(exc)))

        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return Subscription(task.cancel)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

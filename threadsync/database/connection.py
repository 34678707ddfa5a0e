import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from threadsync.config import MONGODB_DB, MONGODB_URL
from threadsync.repositories.document_store import DocumentStore
from threadsync.repositories.mongo_store import PARENT_FIELD, MongoDocumentStore


logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_store: Optional[MongoDocumentStore] = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    conversations = db["conversations"]
    for name in ("participant1_id", "participant2_id", "participantIds", "participants"):
        await conversations.create_index([(name, ASCENDING)])
    thread_messages = db["conversations.messages"]
    for name in ("created_at", "createdAt"):
        await thread_messages.create_index([(PARENT_FIELD, ASCENDING), (name, DESCENDING)])
    legacy_messages = db["messages"]
    for name in ("conversation_id", "conversationId"):
        await legacy_messages.create_index([(name, ASCENDING)])
    await db["users"].create_index([("uid", ASCENDING)])


async def connect_to_mongo() -> None:
    global _client, _store
    _client = AsyncIOMotorClient(MONGODB_URL)
    db = _client[MONGODB_DB]
    await ensure_indexes(db)
    _store = MongoDocumentStore(db)
    logger.info("Connected to MongoDB database %s", MONGODB_DB)


async def close_mongo_connection() -> None:
    global _client, _store
    if _store is not None:
        await _store.close()
        _store = None
    if _client is not None:
        _client.close()
        _client = None


def get_database() -> AsyncIOMotorDatabase:
    if _client is None:
        raise RuntimeError("MongoDB is not connected")
    return _client[MONGODB_DB]


def get_store() -> DocumentStore:
    if _store is None:
        raise RuntimeError("MongoDB is not connected")
    return _store


async def store_dependency() -> DocumentStore:
    return get_store()

from fastapi import APIRouter, Depends, HTTPException, Query

from threadsync.config import CONVERSATION_PAGE_SIZE, THREAD_SEARCH_LIMIT
from threadsync.database.connection import store_dependency
from threadsync.repositories.conversation_repository import ConversationRepository
from threadsync.repositories.document_store import DocumentStore
from threadsync.repositories.message_repository import MessageRepository
from threadsync.services.conversation_deduplicator import filter_threads, group_threads
from threadsync.services.mappers import extract_participant_ids, map_conversation
from threadsync.services.message_merger import load_history


router = APIRouter(prefix="/conversations", tags=["chat"])


async def _threads_for(store: DocumentStore, user_id: str, limit: int):
    records = await ConversationRepository(store).list_for_user(user_id, limit)
    return group_threads([map_conversation(r.id, r.data) for r in records], user_id)


@router.get("")
async def list_conversations(
    user_id: str,
    q: str = "",
    unread_only: bool = False,
    limit: int = Query(CONVERSATION_PAGE_SIZE, ge=1, le=100),
    store: DocumentStore = Depends(store_dependency),
):
    threads = filter_threads(await _threads_for(store, user_id, limit), q, unread_only)
    return {"items": [t.model_dump() for t in threads]}


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, user_id: str, store: DocumentStore = Depends(store_dependency)):
    record = await ConversationRepository(store).get(conversation_id)
    if record is None or user_id not in extract_participant_ids(record.data):
        raise HTTPException(status_code=404, detail="Conversation not found")

    source_ids = [conversation_id]
    for thread in await _threads_for(store, user_id, THREAD_SEARCH_LIMIT):
        if conversation_id in thread.source_ids:
            source_ids = thread.source_ids
            break
    messages = await load_history(MessageRepository(store), source_ids)
    return {"source_ids": source_ids, "items": [m.model_dump() for m in messages]}

import logging
from typing import Iterable, Optional

from threadsync.config import THREAD_SEARCH_LIMIT
from threadsync.repositories.conversation_repository import ConversationRepository
from threadsync.repositories.document_store import StoreError
from threadsync.schemas.chat import LogicalThread
from threadsync.services.mappers import extract_participant_ids


logger = logging.getLogger(__name__)


class ThreadResolver:
    """Find the conversation for a peer before the first send, or create it.

    Two writers racing here can both create a record for the same pair; the
    deduplicator folds such duplicates into one thread on the next snapshot.
    """

    def __init__(self, conversation_repo: ConversationRepository, search_limit: int = THREAD_SEARCH_LIMIT) -> None:
        self._repo = conversation_repo
        self._search_limit = search_limit

    async def find_existing(self, viewer_id: str, peer_id: str) -> Optional[str]:
        for first, second in ((viewer_id, peer_id), (peer_id, viewer_id)):
            try:
                records = await self._repo.query(self._repo.pair_query(first, second))
            except StoreError as exc:
                logger.debug("Pair lookup %s/%s failed: %s", first, second, exc)
                continue
            if records:
                return records[0].id

        for query in self._repo.array_queries(viewer_id, self._search_limit):
            try:
                records = await self._repo.query(query)
            except StoreError as exc:
                logger.debug("Participant array lookup failed: %s", exc)
                continue
            for record in records:
                participant_ids = extract_participant_ids(record.data)
                if viewer_id in participant_ids and peer_id in participant_ids:
                    return record.id
        return None

    async def resolve(self, viewer_id: str, peer_id: str, threads: Iterable[LogicalThread] = ()) -> str:
        for thread in threads:
            if viewer_id in thread.participant_ids and peer_id in thread.participant_ids:
                return thread.id

        existing = await self.find_existing(viewer_id, peer_id)
        if existing is not None:
            return existing

        conversation_id = await self._repo.create_thread([viewer_id, peer_id])
        logger.info("Created conversation %s for %s and %s", conversation_id, viewer_id, peer_id)
        return conversation_id

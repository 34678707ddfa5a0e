import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from threadsync.repositories.document_store import StoreError
from threadsync.repositories.message_repository import MessageRepository
from threadsync.schemas.chat import CanonicalMessage


logger = logging.getLogger(__name__)

GuardKey = Tuple[str, str]


class ReadReceiptWriter:
    """Marks inbound messages of the open thread as read, at most once each.

    The guard lives only as long as the open thread; ``reset`` on switch.
    """

    def __init__(self, message_repo: MessageRepository, viewer_id: str) -> None:
        self._repo = message_repo
        self._viewer_id = viewer_id
        self._guard: Dict[GuardKey, str] = {}
        self._in_flight: Set[GuardKey] = set()
        self._generation = 0

    def reset(self) -> None:
        self._generation += 1
        self._guard.clear()
        self._in_flight.clear()

    def is_guarded(self, message: CanonicalMessage) -> bool:
        return self._guard.get((message.conversation_id, message.id)) == "read"

    def pending(self, messages: Iterable[CanonicalMessage]) -> List[CanonicalMessage]:
        candidates = []
        for message in messages:
            if not message.sender_id or message.sender_id == self._viewer_id:
                continue
            if message.is_read or message.status == "read":
                continue
            key = (message.conversation_id, message.id)
            if self._guard.get(key) == "read" or key in self._in_flight:
                continue
            candidates.append(message)
        return candidates

    def claim(self, messages: Iterable[CanonicalMessage]) -> Tuple[int, List[CanonicalMessage]]:
        """Reserve pending messages synchronously so a later snapshot can't queue them twice."""
        candidates = self.pending(messages)
        self._in_flight.update((m.conversation_id, m.id) for m in candidates)
        return self._generation, candidates

    async def mark_visible_read(self, messages: Iterable[CanonicalMessage], source_ids: Iterable[str]) -> int:
        generation, candidates = self.claim(messages)
        return await self.write_claimed(generation, candidates, source_ids)

    async def write_claimed(
        self, generation: int, candidates: List[CanonicalMessage], source_ids: Iterable[str]
    ) -> int:
        source_ids = list(source_ids)
        keys = [(m.conversation_id, m.id) for m in candidates]
        written = 0
        try:
            for message, key in zip(candidates, keys):
                if generation != self._generation:
                    break
                if await self._write(message, source_ids):
                    written += 1
                    if generation == self._generation:
                        self._guard[key] = "read"
        finally:
            if generation == self._generation:
                self._in_flight.difference_update(keys)
        return written

    async def _write(self, message: CanonicalMessage, source_ids: Iterable[str]) -> bool:
        # own source first, then the thread's other sources, then the flat collection
        candidates: List[Optional[str]] = list(
            dict.fromkeys(sid for sid in [message.conversation_id, *source_ids] if sid)
        )
        candidates.append(None)
        for conversation_id in candidates:
            try:
                await self._repo.mark_read(message.id, conversation_id)
                return True
            except StoreError:
                continue
        logger.warning(
            "Read receipt update failed for message %s (conversation %s)",
            message.id,
            message.conversation_id,
        )
        return False

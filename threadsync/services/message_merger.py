import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from threadsync.config import LEGACY_FALLBACK_LIMIT, MESSAGE_PAGE_LIMIT
from threadsync.repositories.document_store import RawRecord, StoreError, Subscription
from threadsync.repositories.message_repository import MessageRepository
from threadsync.schemas.chat import CanonicalMessage
from threadsync.services.mappers import map_message


logger = logging.getLogger(__name__)

MESSAGES_UNAVAILABLE = "Unable to load messages for this chat."

_STATUS_RANK = {"failed": 5, "read": 4, "delivered": 3, "sent": 2, None: 2, "sending": 1}


def status_rank(status: Optional[str]) -> int:
    return _STATUS_RANK.get(status, 0)


def _precedence(message: CanonicalMessage):
    return (
        message.created_at or 0,
        status_rank(message.status),
        message.is_read,
        message.conversation_id,
        message.sender_id,
        message.content,
        message.message_type,
    )


def merge_duplicate_message(a: CanonicalMessage, b: CanonicalMessage) -> CanonicalMessage:
    """Merge two copies of one message. Commutative and idempotent."""
    preferred, other = (b, a) if _precedence(b) >= _precedence(a) else (a, b)

    is_read = a.is_read or b.is_read
    if is_read:
        status = "read"
    else:
        rank_p, rank_o = status_rank(preferred.status), status_rank(other.status)
        if rank_p != rank_o:
            status = preferred.status if rank_p > rank_o else other.status
        else:
            status = preferred.status if preferred.status is not None else other.status

    created = [m.created_at for m in (a, b) if m.created_at is not None]
    return preferred.model_copy(
        update={
            "content": preferred.content if preferred.content.strip() else other.content,
            "message_type": preferred.message_type or other.message_type,
            "sender_id": preferred.sender_id or other.sender_id,
            "created_at": max(created) if created else None,
            "is_read": is_read,
            "status": status,
        }
    )


def merge_message_sets(snapshots: Mapping[str, Sequence[CanonicalMessage]]) -> List[CanonicalMessage]:
    """Flatten per-source snapshots into one deduplicated, time-ordered list."""
    copies: Dict[str, List[CanonicalMessage]] = {}
    for key in sorted(snapshots):
        for message in snapshots[key]:
            copies.setdefault(message.id, []).append(message)

    merged: List[CanonicalMessage] = []
    for group in copies.values():
        # fold in precedence order so the result never depends on arrival order
        group.sort(key=_precedence)
        result = group[0]
        for message in group[1:]:
            result = merge_duplicate_message(result, message)
        merged.append(result)

    merged.sort(key=lambda m: (m.created_at or 0, m.id))
    return merged


async def load_history(
    message_repo: MessageRepository,
    source_ids: Iterable[str],
    page_limit: int = MESSAGE_PAGE_LIMIT,
    legacy_limit: int = LEGACY_FALLBACK_LIMIT,
) -> List[CanonicalMessage]:
    """One-shot counterpart of MessageStreamMerger for request/response callers."""
    snapshots: Dict[str, List[CanonicalMessage]] = {}
    for source_id in dict.fromkeys(source_ids):
        for key, queries in (
            (f"sub:{source_id}", message_repo.live_queries(source_id, page_limit)),
            (f"legacy:{source_id}", message_repo.legacy_queries(source_id, legacy_limit)),
        ):
            for query in queries:
                try:
                    records = await message_repo.query(query)
                except StoreError:
                    continue
                if records:
                    snapshots[key] = [map_message(r.id, r.data, source_id) for r in records]
                    break
    return merge_message_sets(snapshots)


class MessageStreamMerger:
    """Live, merged message list for one logical thread.

    One instance per open thread; a thread switch closes it and opens a new one.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        on_change: Callable[[List[CanonicalMessage]], None],
        on_error: Optional[Callable[[str], None]] = None,
        page_limit: int = MESSAGE_PAGE_LIMIT,
        legacy_limit: int = LEGACY_FALLBACK_LIMIT,
    ) -> None:
        self._repo = message_repo
        self._on_change = on_change
        self._on_error = on_error
        self._page_limit = page_limit
        self._legacy_limit = legacy_limit
        self._snapshots: Dict[str, List[CanonicalMessage]] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._legacy_tasks: Dict[str, asyncio.Task] = {}
        self._closed = False
        self.messages: List[CanonicalMessage] = []
        self.error: Optional[str] = None

    @property
    def source_ids(self) -> Set[str]:
        return set(self._subscriptions) | set(self._legacy_tasks)

    def open(self, source_ids: Iterable[str]) -> None:
        self.update_sources(source_ids)

    def update_sources(self, source_ids: Iterable[str]) -> None:
        if self._closed:
            return
        wanted = list(dict.fromkeys(source_ids))
        for source_id in list(self.source_ids):
            if source_id not in wanted:
                self._drop_source(source_id)
        for source_id in wanted:
            if source_id not in self.source_ids:
                self._attach_live(source_id)
                self._legacy_tasks[source_id] = asyncio.create_task(self._load_legacy(source_id))
        self._emit()

    def close(self) -> None:
        self._closed = True
        for source_id in list(self.source_ids):
            self._drop_source(source_id)
        self._snapshots.clear()
        self.messages = []

    def _drop_source(self, source_id: str) -> None:
        subscription = self._subscriptions.pop(source_id, None)
        if subscription is not None:
            subscription.cancel()
        task = self._legacy_tasks.pop(source_id, None)
        if task is not None and not task.done():
            task.cancel()
        self._snapshots.pop(f"sub:{source_id}", None)
        self._snapshots.pop(f"legacy:{source_id}", None)

    def _attach_live(self, source_id: str) -> None:
        def on_snapshot(records: List[RawRecord]) -> None:
            if self._closed:
                return
            self._snapshots[f"sub:{source_id}"] = [map_message(r.id, r.data, source_id) for r in records]
            self._emit()

        def on_error(exc: Exception) -> None:
            logger.warning("Message listener for %s failed: %s", source_id, exc)
            self._fail()

        for query in self._repo.live_queries(source_id, self._page_limit):
            try:
                self._subscriptions[source_id] = self._repo.subscribe(query, on_snapshot, on_error)
                return
            except StoreError as exc:
                logger.debug("Query shape %s rejected for %s: %s", query.order_by, source_id, exc)
        logger.warning("No live query shape accepted for %s", source_id)
        self._fail()

    async def _load_legacy(self, source_id: str) -> None:
        # one-time read of the old flat collection; first non-empty shape wins
        for query in self._repo.legacy_queries(source_id, self._legacy_limit):
            try:
                records = await self._repo.query(query)
            except StoreError as exc:
                logger.debug("Legacy fallback for %s failed: %s", source_id, exc)
                return
            if self._closed or source_id not in self._legacy_tasks:
                return
            if records:
                self._snapshots[f"legacy:{source_id}"] = [map_message(r.id, r.data, source_id) for r in records]
                self._emit()
                return

    def _fail(self) -> None:
        if self._closed:
            return
        self.error = MESSAGES_UNAVAILABLE
        if self._on_error is not None:
            self._on_error(MESSAGES_UNAVAILABLE)

    def _emit(self) -> None:
        if self._closed:
            return
        self.messages = merge_message_sets(self._snapshots)
        self._on_change(self.messages)

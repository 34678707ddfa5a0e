import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from threadsync.config import CONVERSATION_PAGE_SIZE, PREVIEW_ENRICH_LIMIT
from threadsync.models import fields
from threadsync.repositories.conversation_repository import ConversationRepository
from threadsync.repositories.document_store import RawRecord, StoreError, Subscription
from threadsync.repositories.message_repository import MessageRepository
from threadsync.schemas.chat import ConversationRecord, LogicalThread
from threadsync.services.mappers import map_conversation, preview_text
from threadsync.utils.values import first_present, to_millis


logger = logging.getLogger(__name__)

CONVERSATIONS_UNAVAILABLE = "Unable to load conversations."

# one failing shape is normal schema variance; two means the list is broken
WATCH_FAILURE_THRESHOLD = 2


def participant_key(participant_ids: Iterable[str]) -> str:
    return "|".join(sorted(set(participant_ids)))


def thread_stamp(item) -> int:
    if item.updated_at is not None:
        return item.updated_at
    if item.last_message_at is not None:
        return item.last_message_at
    return 0


def group_threads(records: Iterable[ConversationRecord], viewer_id: str) -> List[LogicalThread]:
    """Collapse records with the same participant set into logical threads."""
    groups: Dict[str, List[ConversationRecord]] = {}
    for record in records:
        if not record.participant_ids:
            logger.debug("Skipping conversation %s without participants", record.id)
            continue
        groups.setdefault(participant_key(record.participant_ids), []).append(record)

    threads = []
    for key, members in groups.items():
        members.sort(key=lambda r: (thread_stamp(r), r.id), reverse=True)
        winner = members[0]

        def first_value(attr: str):
            for member in members:
                value = getattr(member, attr)
                if value:
                    return value
            return None

        threads.append(
            LogicalThread(
                key=key,
                id=winner.id,
                participant_ids=list(dict.fromkeys(winner.participant_ids)),
                source_ids=sorted({m.id for m in members}),
                last_message_text=first_value("last_message_text"),
                last_message_at=first_value("last_message_at"),
                updated_at=first_value("updated_at"),
                merged_unread_count=sum(m.unread_count_by_user.get(viewer_id, 0) for m in members),
            )
        )

    threads.sort(key=lambda t: (thread_stamp(t), t.key), reverse=True)
    return threads


def resolve_other_participant_id(participant_ids: List[str], viewer_id: Optional[str]) -> Optional[str]:
    if not participant_ids:
        return None
    for uid in participant_ids:
        if uid != viewer_id:
            return uid
    return participant_ids[0]


def filter_threads(
    threads: Iterable[LogicalThread],
    text: str = "",
    unread_only: bool = False,
    label_for: Optional[Callable[[LogicalThread], str]] = None,
) -> List[LogicalThread]:
    needle = text.strip().lower()
    result = []
    for thread in threads:
        if unread_only and thread.merged_unread_count <= 0:
            continue
        if needle:
            haystack = [thread.id, thread.last_message_text or ""]
            if label_for is not None:
                haystack.append(label_for(thread))
            if not any(needle in value.lower() for value in haystack):
                continue
        result.append(thread)
    return result


class ConversationDeduplicator:
    """Live logical-thread list for one viewer.

    Each participant query shape has its own listener delivering full
    snapshots of that shape. Caches are kept per shape and regrouped together,
    so a batch from one shape never drops records only another shape sees.
    """

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        viewer_id: str,
        on_change: Callable[[List[LogicalThread]], None],
        on_error: Optional[Callable[[str], None]] = None,
        page_size: int = CONVERSATION_PAGE_SIZE,
        enrich_limit: int = PREVIEW_ENRICH_LIMIT,
    ) -> None:
        self._conversations = conversation_repo
        self._messages = message_repo
        self._viewer_id = viewer_id
        self._on_change = on_change
        self._on_error = on_error
        self._page_size = page_size
        self._enrich_limit = enrich_limit
        self._by_shape: Dict[str, Dict[str, ConversationRecord]] = {}
        self._subscriptions: List[Subscription] = []
        self._failed_shapes: Set[str] = set()
        self._previews: Dict[str, Tuple[int, Optional[str], Optional[int]]] = {}
        self._enrich_task: Optional[asyncio.Task] = None
        self._enrich_run = 0
        self._closed = False
        self.threads: List[LogicalThread] = []
        self.error: Optional[str] = None

    def start(self) -> None:
        for shape, query in self._conversations.participant_queries(self._viewer_id, self._page_size):
            try:
                self._subscriptions.append(
                    self._conversations.subscribe(
                        query,
                        lambda records, shape=shape: self._on_snapshot(shape, records),
                        lambda exc, shape=shape: self._on_watch_error(shape, exc),
                    )
                )
            except StoreError as exc:
                self._on_watch_error(shape, exc)

    def close(self) -> None:
        self._closed = True
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        if self._enrich_task is not None and not self._enrich_task.done():
            self._enrich_task.cancel()

    def _on_snapshot(self, shape: str, records: List[RawRecord]) -> None:
        if self._closed:
            return
        self._by_shape[shape] = {r.id: map_conversation(r.id, r.data) for r in records}
        self._failed_shapes.discard(shape)
        if len(self._failed_shapes) < WATCH_FAILURE_THRESHOLD:
            self.error = None
        self._recompute()

    def _on_watch_error(self, shape: str, exc: Exception) -> None:
        logger.warning("Conversation listener %s failed: %s", shape, exc)
        self._failed_shapes.add(shape)
        if len(self._failed_shapes) >= WATCH_FAILURE_THRESHOLD and not self._closed:
            self.error = CONVERSATIONS_UNAVAILABLE
            if self._on_error is not None:
                self._on_error(CONVERSATIONS_UNAVAILABLE)

    def _recompute(self) -> None:
        records: Dict[str, ConversationRecord] = {}
        for shape_records in self._by_shape.values():
            records.update(shape_records)
        grouped = group_threads(records.values(), self._viewer_id)
        self.threads = [self._with_preview(t) for t in grouped]
        self._on_change(self.threads)
        self._schedule_enrichment(grouped)

    def _with_preview(self, thread: LogicalThread) -> LogicalThread:
        if thread.last_message_text:
            return thread
        cached = self._previews.get(thread.id)
        if cached is None or cached[0] != thread_stamp(thread) or not cached[1]:
            return thread
        _, text, at = cached
        return thread.model_copy(
            update={
                "last_message_text": text,
                "last_message_at": thread.last_message_at if thread.last_message_at is not None else at,
                "updated_at": thread.updated_at if thread.updated_at is not None else at,
            }
        )

    def _schedule_enrichment(self, grouped: List[LogicalThread]) -> None:
        missing = [
            t for t in grouped
            if not t.last_message_text and self._previews.get(t.id, (None,))[0] != thread_stamp(t)
        ][: self._enrich_limit]
        if not missing:
            return
        self._enrich_run += 1
        if self._enrich_task is not None and not self._enrich_task.done():
            self._enrich_task.cancel()
        self._enrich_task = asyncio.create_task(self._enrich(missing, self._enrich_run))

    async def _enrich(self, threads: List[LogicalThread], run: int) -> None:
        for thread in threads:
            text, at = await self._latest_preview(thread.id)
            self._previews[thread.id] = (thread_stamp(thread), text, at)
        if self._closed or run != self._enrich_run:
            return
        self._recompute()

    async def _latest_preview(self, conversation_id: str) -> Tuple[Optional[str], Optional[int]]:
        for query in self._messages.latest_queries(conversation_id):
            try:
                records = await self._messages.query(query)
            except StoreError:
                continue
            if records:
                data = records[0].data
                return preview_text(data), to_millis(first_present(data, fields.MESSAGE_CREATED_AT))
        return None, None

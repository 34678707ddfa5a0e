import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from threadsync.config import PRESENCE_TICK_SECONDS
from threadsync.repositories.conversation_repository import ConversationRepository
from threadsync.repositories.document_store import DocumentStore, StoreError
from threadsync.repositories.message_repository import MessageRepository
from threadsync.repositories.user_repository import UserRepository
from threadsync.schemas.chat import CanonicalMessage, LogicalThread
from threadsync.services.conversation_deduplicator import ConversationDeduplicator, resolve_other_participant_id
from threadsync.services.message_merger import MessageStreamMerger
from threadsync.services.presence_tracker import PresenceTracker
from threadsync.services.read_receipts import ReadReceiptWriter
from threadsync.services.thread_resolver import ThreadResolver
from threadsync.utils.clock import now_ms


logger = logging.getLogger(__name__)

SEND_FAILED = "Failed to send message."

EventCallback = Callable[[str, Dict[str, Any]], None]


class ChatService:
    """Everything one signed-in user sees: thread list, open thread, presence.

    Emits ``threads``, ``messages``, ``presence`` and ``error`` events.
    """

    def __init__(
        self,
        store: DocumentStore,
        viewer_id: str,
        on_event: EventCallback,
        now_func: Callable[[], int] = now_ms,
        tick_seconds: float = PRESENCE_TICK_SECONDS,
    ) -> None:
        self._viewer_id = viewer_id
        self._on_event = on_event
        self._conversation_repo = ConversationRepository(store)
        self._message_repo = MessageRepository(store)
        self._deduplicator = ConversationDeduplicator(
            self._conversation_repo,
            self._message_repo,
            viewer_id,
            on_change=self._on_threads,
            on_error=self._on_threads_error,
        )
        self._presence = PresenceTracker(
            UserRepository(store), on_change=self._on_presence, now_func=now_func, tick_seconds=tick_seconds
        )
        self._receipts = ReadReceiptWriter(self._message_repo, viewer_id)
        self._resolver = ThreadResolver(self._conversation_repo)
        self._merger: Optional[MessageStreamMerger] = None
        self._merger_key: Optional[str] = None
        self._selected_key: Optional[str] = None
        self._pending_peer_id: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()
        self.threads: List[LogicalThread] = []
        self.messages: List[CanonicalMessage] = []
        self.messages_error: Optional[str] = None

    @property
    def viewer_id(self) -> str:
        return self._viewer_id

    @property
    def presence(self) -> PresenceTracker:
        return self._presence

    @property
    def selected_thread(self) -> Optional[LogicalThread]:
        for thread in self.threads:
            if thread.key == self._selected_key:
                return thread
        return None

    def start(self) -> None:
        self._presence.start()
        self._deduplicator.start()

    async def close(self) -> None:
        self._deduplicator.close()
        self._close_merger()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._presence.close()

    def select_thread(self, thread_id: str) -> bool:
        """Select by logical id, any backing record id, or thread key."""
        for thread in self.threads:
            if thread_id in (thread.id, thread.key) or thread_id in thread.source_ids:
                self._pending_peer_id = None
                self._selected_key = thread.key
                self._sync_selection()
                self._emit_threads()
                return True
        return False

    def open_peer(self, peer_id: str) -> None:
        """Open the chat with a peer, even if no conversation exists yet."""
        if not peer_id or peer_id == self._viewer_id:
            return
        self._pending_peer_id = peer_id
        self._selected_key = None
        self._select_pending_peer()
        self._sync_selection()
        self._sync_presence()
        self._emit_threads()

    async def send_message(self, content: str, peer_id: Optional[str] = None) -> Optional[str]:
        text = (content or "").strip()
        if not text:
            raise ValueError("Message content cannot be empty")

        thread = self.selected_thread
        if peer_id is None and thread is None:
            peer_id = self._pending_peer_id
        if thread is None and not peer_id:
            raise ValueError("Missing recipient")

        try:
            if peer_id is not None and (thread is None or peer_id not in thread.participant_ids):
                self._pending_peer_id = peer_id
                conversation_id = await self._resolver.resolve(self._viewer_id, peer_id, self.threads)
            else:
                conversation_id = thread.id
            message_id = await self._message_repo.save_message(conversation_id, self._viewer_id, text)
            await self._conversation_repo.update_on_new_message(conversation_id, text[:200])
        except StoreError as exc:
            logger.warning("Sending message from %s failed: %s", self._viewer_id, exc)
            self.messages_error = SEND_FAILED
            self._emit_messages()
            return None
        if self.selected_thread is None:
            self.select_thread(conversation_id)
        return message_id

    def peer_label(self, thread: LogicalThread) -> str:
        return self._presence.display_name(resolve_other_participant_id(thread.participant_ids, self._viewer_id) or "")

    def _on_threads(self, threads: List[LogicalThread]) -> None:
        self.threads = threads
        self._select_pending_peer()
        if self.selected_thread is None and not self._pending_peer_id:
            self._selected_key = threads[0].key if threads else None
        self._sync_selection()
        self._sync_presence()
        self._emit_threads()

    def _on_threads_error(self, message: str) -> None:
        self._on_event("error", {"scope": "threads", "message": message})

    def _select_pending_peer(self) -> None:
        if not self._pending_peer_id:
            return
        for thread in self.threads:
            if self._pending_peer_id in thread.participant_ids:
                self._selected_key = thread.key
                self._pending_peer_id = None
                return

    def _sync_selection(self) -> None:
        thread = self.selected_thread
        if thread is not None and self._merger is not None and self._merger_key == thread.key:
            self._merger.update_sources(thread.source_ids)
            return

        self._close_merger()
        self._receipts.reset()
        self.messages = []
        self.messages_error = None
        if thread is None:
            self._emit_messages()
            return

        key = thread.key
        self._merger_key = key
        self._merger = MessageStreamMerger(
            self._message_repo,
            on_change=lambda messages: self._on_messages(key, messages),
            on_error=lambda message: self._on_messages_error(key, message),
        )
        self._merger.open(thread.source_ids)

    def _close_merger(self) -> None:
        if self._merger is not None:
            self._merger.close()
        self._merger = None
        self._merger_key = None

    def _on_messages(self, key: str, messages: List[CanonicalMessage]) -> None:
        if key != self._merger_key:
            return
        self.messages = messages
        self._emit_messages()
        thread = self.selected_thread
        if thread is None:
            return
        generation, claimed = self._receipts.claim(messages)
        if claimed:
            self._spawn(self._receipts.write_claimed(generation, claimed, thread.source_ids))

    def _on_messages_error(self, key: str, message: str) -> None:
        if key != self._merger_key:
            return
        self.messages_error = message
        self._emit_messages()

    def _on_presence(self) -> None:
        self._on_event("presence", {"peers": self._presence.snapshot()})

    def _sync_presence(self) -> None:
        peers = [resolve_other_participant_id(t.participant_ids, self._viewer_id) for t in self.threads]
        if self._pending_peer_id:
            peers.append(self._pending_peer_id)
        self._presence.sync(uid for uid in peers if uid)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _emit_threads(self) -> None:
        items = []
        for thread in self.threads:
            peer_id = resolve_other_participant_id(thread.participant_ids, self._viewer_id)
            item = thread.model_dump()
            item["peer_id"] = peer_id
            item["peer_label"] = self._presence.display_name(peer_id) if peer_id else "Unknown user"
            item["presence"] = self._presence.label(peer_id)
            items.append(item)
        self._on_event(
            "threads",
            {
                "items": items,
                "selected": self.selected_thread.id if self.selected_thread else None,
                "pending_peer_id": self._pending_peer_id,
                "error": self._deduplicator.error,
            },
        )

    def _emit_messages(self) -> None:
        thread = self.selected_thread
        self._on_event(
            "messages",
            {
                "thread_id": thread.id if thread else None,
                "items": [m.model_dump() for m in self.messages],
                "error": self.messages_error,
            },
        )

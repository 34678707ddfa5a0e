import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from threadsync.config import PRESENCE_TICK_SECONDS
from threadsync.repositories.document_store import RawRecord, StoreError, Subscription
from threadsync.repositories.user_repository import UserRepository
from threadsync.schemas.chat import PeerPresence
from threadsync.services.mappers import fallback_label, map_user_profile
from threadsync.utils.clock import now_ms


logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000


def presence_label(presence: Optional[PeerPresence], now: int) -> str:
    if presence is None:
        return "Offline"
    if presence.is_online:
        return "Online"
    if presence.last_seen_at:
        mins = max(0, now - presence.last_seen_at) // MINUTE_MS
        if mins < 1:
            return "Last seen just now"
        if mins < 60:
            return f"Last seen {mins}m ago"
        hrs = mins // 60
        if hrs < 24:
            return f"Last seen {hrs}h ago"
        return f"Last seen {hrs // 24}d ago"
    return "Offline"


class _PeerListeners:

    def __init__(self, subscriptions: List[Subscription]) -> None:
        self.subscriptions = subscriptions

    def cancel(self) -> None:
        for subscription in self.subscriptions:
            subscription.cancel()


class PresenceTracker:
    """One listener pair per visible peer, diffed on every peer-set change."""

    def __init__(
        self,
        user_repo: UserRepository,
        on_change: Callable[[], None],
        now_func: Callable[[], int] = now_ms,
        tick_seconds: float = PRESENCE_TICK_SECONDS,
    ) -> None:
        self._users = user_repo
        self._on_change = on_change
        self._now = now_func
        self._tick_seconds = tick_seconds
        self._listeners: Dict[str, _PeerListeners] = {}
        self._presence: Dict[str, PeerPresence] = {}
        self._tick_task: Optional[asyncio.Task] = None

    @property
    def peer_ids(self) -> List[str]:
        return list(self._listeners)

    def start(self) -> None:
        if self._tick_task is None:
            self._tick_task = asyncio.create_task(self._tick())

    async def _tick(self) -> None:
        # labels are relative to now, so refresh them even without new data
        try:
            while True:
                await asyncio.sleep(self._tick_seconds)
                self._on_change()
        except asyncio.CancelledError:
            return

    def sync(self, peer_ids: Iterable[str]) -> None:
        wanted = list(dict.fromkeys(uid for uid in peer_ids if uid))
        for uid in list(self._listeners):
            if uid not in wanted:
                self._listeners.pop(uid).cancel()
                self._presence.pop(uid, None)
        for uid in wanted:
            if uid not in self._listeners:
                self._listeners[uid] = self._listen(uid)

    def _listen(self, uid: str) -> _PeerListeners:
        def on_document(record: Optional[RawRecord]) -> None:
            if record is not None:
                self._apply(uid, record)

        def on_lookup(records: List[RawRecord]) -> None:
            if records:
                self._apply(uid, records[0])

        def on_error(exc: Exception) -> None:
            # the other shape may still deliver
            logger.debug("Presence listener for %s failed: %s", uid, exc)

        subscriptions = []
        for subscribe in (
            lambda: self._users.subscribe_profile(uid, on_document, on_error),
            lambda: self._users.subscribe_lookup(uid, on_lookup, on_error),
        ):
            try:
                subscriptions.append(subscribe())
            except StoreError as exc:
                on_error(exc)
        return _PeerListeners(subscriptions)

    def _apply(self, uid: str, record: RawRecord) -> None:
        mapped = map_user_profile(uid, record.data)
        previous = self._presence.get(uid)
        if previous is not None:
            mapped = previous.model_copy(update=mapped.model_dump(exclude_none=True))
        self._presence[uid] = mapped
        self._on_change()

    def get(self, uid: str) -> Optional[PeerPresence]:
        return self._presence.get(uid)

    def label(self, uid: Optional[str]) -> str:
        if not uid:
            return "Offline"
        return presence_label(self._presence.get(uid), self._now())

    def display_name(self, uid: str) -> str:
        presence = self._presence.get(uid)
        if presence is not None and presence.display_name:
            return presence.display_name
        return fallback_label(uid)

    def snapshot(self) -> Dict[str, dict]:
        now = self._now()
        return {
            uid: {
                "display_name": self.display_name(uid),
                "avatar_url": self._presence[uid].avatar_url if uid in self._presence else None,
                "label": presence_label(self._presence.get(uid), now),
            }
            for uid in self._listeners
        }

    async def close(self) -> None:
        for listeners in self._listeners.values():
            listeners.cancel()
        self._listeners.clear()
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

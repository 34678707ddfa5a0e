"""Contract between the chat engine and the backing document store.

The store is a source of unordered, possibly delayed, possibly duplicated
change notifications. Live subscriptions deliver the *full* result of their
query on every change; the engine never relies on incremental batches.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


class StoreError(Exception):
    pass


class DocumentNotFound(StoreError):
    pass


class _ServerTimestamp:

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Placeholder resolved by the store to its own clock at write time.
SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class RawRecord:
    id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class Filter:
    field: str
    op: str  # "==" | "array-contains"
    value: Any


@dataclass(frozen=True)
class StoreQuery:
    path: str
    filters: Tuple[Filter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, field_name: str, op: str, value: Any) -> "StoreQuery":
        return StoreQuery(
            path=self.path,
            filters=self.filters + (Filter(field_name, op, value),),
            order_by=self.order_by,
            descending=self.descending,
            limit=self.limit,
        )


@dataclass
class Subscription:
    """Handle for one live listener. ``cancel`` is idempotent."""

    _cancel: Callable[[], None]
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._cancel()


SnapshotCallback = Callable[[List[RawRecord]], None]
DocumentCallback = Callable[[Optional[RawRecord]], None]
ErrorCallback = Callable[[Exception], None]


class DocumentStore(ABC):

    @abstractmethod
    def subscribe(self, query: StoreQuery, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        """Listen to a query. May raise StoreError if the shape is unsupported."""

    @abstractmethod
    def subscribe_document(self, path: str, on_snapshot: DocumentCallback, on_error: ErrorCallback) -> Subscription:
        ...

    @abstractmethod
    async def query(self, query: StoreQuery) -> List[RawRecord]:
        ...

    @abstractmethod
    async def get(self, path: str) -> Optional[RawRecord]:
        ...

    @abstractmethod
    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        """Update an existing document; raises DocumentNotFound if missing."""

    @abstractmethod
    async def set(self, path: str, fields: Mapping[str, Any], merge: bool = True) -> None:
        ...

    @abstractmethod
    async def create(self, collection_path: str, fields: Mapping[str, Any]) -> str:
        ...


def split_document_path(path: str) -> Tuple[str, str]:
    """``conversations/c1/messages/m1`` -> (``conversations/c1/messages``, ``m1``)."""
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise StoreError(f"not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]

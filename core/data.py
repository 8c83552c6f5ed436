"""
Data Layer Base Classes.

The order lifecycle core never reads or writes a store. Orders, the
cancellation ledger and the return ledger reach it through these
repository interfaces, and whatever new records the core returns go back
through save(). Backends (in-memory for tests, a document store in
production) are injected, never imported by domain code.

Repositories do storage only: no refund rules, no status checks.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class QueryOptions:
    """
    Paging and equality filters for Repository.find().

    filters maps record attribute names to required values, e.g.
    {"order_id": "ORD-1"} for one order's ledger entries.
    """
    limit: int = 100
    offset: int = 0
    order_by: Optional[str] = None
    order_desc: bool = False
    filters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryResult(Generic[T]):
    """One page of records plus where the next page starts."""
    data: List[T]
    total_count: int
    has_more: bool
    next_offset: Optional[int] = None


class Repository(ABC, Generic[T]):
    """
    Storage for one kind of lifecycle record (orders, cancellation
    requests, return requests).

    Example:
        class ReturnRepository(Repository[ReturnRequest]):
            def get_by_id(self, id: str) -> Optional[ReturnRequest]:
                doc = self._collection.find_one({"_id": id})
                return ReturnRequest.from_dict(doc) if doc else None
    """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        """The record with this id, or None."""
        pass

    @abstractmethod
    def find(self, options: Optional[QueryOptions] = None) -> QueryResult[T]:
        pass

    @abstractmethod
    def save(self, entity: T) -> T:
        """Insert or replace the record and return it."""
        pass

    @abstractmethod
    def delete(self, id: str) -> bool:
        """True if a record was removed."""
        pass


class ReadOnlyRepository(ABC, Generic[T]):
    """Reference data the core only reads, such as the product catalog."""

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        pass

    @abstractmethod
    def get_all(self) -> List[T]:
        pass


def _default_key(entity: Any) -> Optional[str]:
    if isinstance(entity, dict):
        return entity.get("id")
    return getattr(entity, "id", None)


class CachingRepository(ReadOnlyRepository[T]):
    """
    Keeps a snapshot of a read-only repository for ttl_seconds.

    Lookups by id use an index built when the snapshot is taken. Catalog
    prices change rarely, and orders carry the price actually charged, so a
    short-lived stale snapshot only affects lines priced from the catalog.
    """

    def __init__(
        self,
        inner: ReadOnlyRepository[T],
        ttl_seconds: int = 300,
        key: Callable[[T], Optional[str]] = _default_key,
    ):
        self._inner = inner
        self._ttl_seconds = ttl_seconds
        self._key = key
        self._items: List[T] = []
        self._index: Dict[str, T] = {}
        self._loaded_at: Optional[float] = None

    def _is_fresh(self) -> bool:
        return self._loaded_at is not None and time.monotonic() - self._loaded_at < self._ttl_seconds

    def _load(self):
        self._items = list(self._inner.get_all())
        self._index = {}
        for item in self._items:
            item_key = self._key(item)
            if item_key is not None:
                self._index.setdefault(str(item_key), item)
        self._loaded_at = time.monotonic()

    def get_all(self) -> List[T]:
        if not self._is_fresh():
            self._load()
        return list(self._items)

    def get_by_id(self, id: str) -> Optional[T]:
        if not self._is_fresh():
            self._load()
        return self._index.get(id)

    def invalidate(self):
        """Force the next lookup to reload from the inner repository."""
        self._items = []
        self._index = {}
        self._loaded_at = None

"""
Order Lifecycle Repositories.

In-memory implementations of the core/data.py repository interfaces, used by
OrderLedgerService and the tests. A persistent backend implements the same
interfaces and is injected in their place.

The catalog lookup keeps products and bundles in separate read-only
repositories, each wrapped in a CachingRepository since catalog data
rarely changes.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from core.data import (
    CachingRepository,
    QueryOptions,
    QueryResult,
    ReadOnlyRepository,
    Repository,
    T,
)

from .domain.models import BundleReference, ItemType, LineReference, ProductReference

logger = logging.getLogger(__name__)


class InMemoryRepository(Repository[T]):
    """
    Dict-backed repository keyed by an attribute of the entity.

    Filters in QueryOptions match entity attributes by equality.
    """

    def __init__(self, id_attribute: str, entities: Optional[Iterable[T]] = None):
        self._id_attribute = id_attribute
        self._entities: Dict[str, T] = {}
        self._lock = threading.Lock()
        for entity in entities or []:
            self.save(entity)

    def _key(self, entity: T) -> str:
        return str(getattr(entity, self._id_attribute))

    def get_by_id(self, id: str) -> Optional[T]:
        return self._entities.get(id)

    def find(self, options: Optional[QueryOptions] = None) -> QueryResult[T]:
        options = options or QueryOptions()
        matches = [
            entity
            for entity in list(self._entities.values())
            if all(getattr(entity, name, None) == value for name, value in options.filters.items())
        ]
        if options.order_by:
            matches.sort(
                key=lambda entity: (getattr(entity, options.order_by, None) is None,
                                    getattr(entity, options.order_by, None)),
                reverse=options.order_desc,
            )

        page = matches[options.offset:options.offset + options.limit]
        has_more = options.offset + len(page) < len(matches)
        return QueryResult(
            data=page,
            total_count=len(matches),
            has_more=has_more,
            next_offset=options.offset + len(page) if has_more else None,
        )

    def find_by(self, **filters: Any) -> List[T]:
        """Every entity whose attributes equal the given values."""
        return self.find(QueryOptions(limit=len(self._entities) or 1, filters=filters)).data

    def save(self, entity: T) -> T:
        with self._lock:
            self._entities[self._key(entity)] = entity
        return entity

    def delete(self, id: str) -> bool:
        with self._lock:
            return self._entities.pop(id, None) is not None


class InMemoryCatalog(ReadOnlyRepository[LineReference]):
    """Read-only catalog of product or bundle references."""

    def __init__(self, references: Iterable[LineReference]):
        self._references = {ref.id: ref for ref in references}

    @classmethod
    def from_documents(cls, documents: Iterable[Dict[str, Any]], item_type: ItemType) -> "InMemoryCatalog":
        loader = BundleReference.from_dict if item_type == ItemType.BUNDLE else ProductReference.from_dict
        return cls(loader(doc) for doc in documents)

    def get_by_id(self, id: str) -> Optional[LineReference]:
        return self._references.get(id)

    def get_all(self) -> List[LineReference]:
        return list(self._references.values())


class CatalogResolver:
    """
    Resolves a catalog id to its reference for Order.from_dict.

    Usable wherever a CatalogLookup is expected.
    """

    def __init__(
        self,
        products: ReadOnlyRepository[LineReference],
        bundles: Optional[ReadOnlyRepository[LineReference]] = None,
        ttl_seconds: int = 300,
    ):
        self._repositories = {
            ItemType.PRODUCT: CachingRepository(products, ttl_seconds),
            ItemType.BUNDLE: CachingRepository(bundles or InMemoryCatalog([]), ttl_seconds),
        }

    def __call__(self, ref_id: str, item_type: ItemType) -> Optional[LineReference]:
        reference = self._repositories[item_type].get_by_id(ref_id)
        if reference is None:
            logger.warning(f"No {item_type.value} found in catalog for id {ref_id}")
        return reference

    def invalidate(self):
        """Drop cached catalog data, e.g. after a price update."""
        for repository in self._repositories.values():
            repository.invalidate()

"""Composable product query builder.

Predicates, sort keys, cursor, offset and limit may be registered in any
order; ``build()`` always applies them as filters -> sorts -> start_after ->
offset -> limit, which is the order the stores require.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from storefront.db import ASCENDING, DocumentSnapshot

__all__ = ["QueryBuilder", "snapshot_to_row"]

T = TypeVar("T")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, set, frozenset)) and len(value) == 0:
        return True
    return False


def snapshot_to_row(snapshot: DocumentSnapshot) -> Dict[str, Any]:
    """Merge the store-assigned id into the document fields."""
    return {**(snapshot.to_dict() or {}), "id": snapshot.id}


class QueryBuilder:
    """Accumulates query intent for one collection of a document store."""

    def __init__(self, store, collection: str):
        self.store = store
        self.collection = collection
        self._predicates: List[Tuple[str, str, Any]] = []
        self._sorts: List[Tuple[str, str]] = []
        self._cursor: Optional[DocumentSnapshot] = None
        self._offset: Optional[int] = None
        self._limit: Optional[int] = None

    def where(self, field_path: str, op: str, value: Any) -> "QueryBuilder":
        """Add a predicate; None and empty lists mean "no filter"."""
        if not _is_empty(value):
            self._predicates.append((field_path, op, list(value) if isinstance(value, (set, frozenset, tuple)) else value))
        return self

    def where_any(self, field_path: str, values: Optional[Iterable[Any]]) -> "QueryBuilder":
        """Equality for one value, "in" for several."""
        items = list(dict.fromkeys(values or []))
        if len(items) == 1:
            return self.where(field_path, "==", items[0])
        return self.where(field_path, "in", items)

    def order_by(self, field_path: str, direction: str = ASCENDING) -> "QueryBuilder":
        self._sorts.append((field_path, direction))
        return self

    def start_after(self, snapshot: Optional[DocumentSnapshot]) -> "QueryBuilder":
        self._cursor = snapshot if snapshot is not None and snapshot.exists else None
        return self

    def offset(self, count: Optional[int]) -> "QueryBuilder":
        self._offset = count if count and count > 0 else None
        return self

    def limit(self, count: Optional[int]) -> "QueryBuilder":
        self._limit = count if count and count > 0 else None
        return self

    @property
    def predicates(self) -> List[Tuple[str, str, Any]]:
        return list(self._predicates)

    @property
    def sorts(self) -> List[Tuple[str, str]]:
        return list(self._sorts)

    def build_filtered(self):
        """Query with predicates only (used for counting)."""
        query = self.store.collection(self.collection)
        for field_path, op, value in self._predicates:
            query = query.where(field_path, op, value)
        return query

    def build(self):
        query = self.build_filtered()
        for field_path, direction in self._sorts:
            query = query.order_by(field_path, direction)
        if self._cursor is not None:
            query = query.start_after(self._cursor)
        if self._offset is not None:
            query = query.offset(self._offset)
        if self._limit is not None:
            query = query.limit(self._limit)
        return query

    def execute(self, mapper: Optional[Callable[[Dict[str, Any]], T]] = None) -> List[Any]:
        """Run the built query, returning rows (or ``mapper(row)`` for each)."""
        rows = [snapshot_to_row(snapshot) for snapshot in self.build().get()]
        if mapper is None:
            return rows
        return [mapper(row) for row in rows]

    def count(self) -> int:
        """Server-side count over the predicates; may raise AggregationUnsupported."""
        return self.build_filtered().count()

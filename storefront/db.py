"""SQLite-backed document store used for local development and tests.

Documents are JSON blobs in a single ``documents`` table keyed by
(collection, id). Queries expose the same primitives as the Firestore
wrapper in ``storefront.firestore``: where / order_by / start_after /
offset / limit / get / count. Ordering semantics follow Firestore:

- documents missing an ordered field are excluded from the result
- ties are broken by document id, in the direction of the last sort key
- ``start_after`` resumes strictly after the cursor document's position
"""

import json
import re
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple

from storefront.config import DB_PATH
from storefront.errors import AggregationUnsupported, NotFoundError, StoreError
from storefront.logging_config import get_logger

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "OPERATORS",
    "DocumentSnapshot",
    "SQLiteQuery",
    "SQLiteDocumentStore",
    "get_connection",
    "init_db",
    "new_document_id",
]

logger = get_logger("db")

ASCENDING = "ASCENDING"
DESCENDING = "DESCENDING"

OPERATORS = {"==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains"}

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


def new_document_id() -> str:
    """Random 20-character id, same shape as Firestore auto ids."""
    return uuid.uuid4().hex[:20]


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _field_expr(field_path: str) -> str:
    # Field names end up inside SQL text, so only plain dotted identifiers pass
    if not _FIELD_RE.match(field_path):
        raise StoreError(f"Invalid field path: {field_path!r}", code="invalid-argument")
    return f"json_extract(data, '$.{field_path}')"


def _bind(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


@dataclass(frozen=True)
class DocumentSnapshot:
    """A document read from the store; ``exists`` is False for misses."""

    id: str
    data: Optional[Dict[str, Any]] = None
    exists: bool = True
    # Backend-native snapshot, kept so Firestore cursors can reuse it
    raw: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return dict(self.data) if self.data is not None else None

    def get(self, field_path: str) -> Any:
        value: Any = self.data or {}
        for part in field_path.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return value


@contextmanager
def get_connection(db_path: str = DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DB_PATH) -> None:
    """Initialize the document table."""
    with get_connection(db_path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")
        conn.commit()


@dataclass(frozen=True)
class SQLiteQuery:
    """Immutable query over one collection; every method returns a new query."""

    store: "SQLiteDocumentStore"
    collection: str
    filters: Tuple[Tuple[str, str, Any], ...] = ()
    orders: Tuple[Tuple[str, str], ...] = ()
    cursor: Optional[DocumentSnapshot] = None
    offset_rows: int = 0
    limit_rows: Optional[int] = None

    def where(self, field_path: str, op: str, value: Any) -> "SQLiteQuery":
        if op not in OPERATORS:
            raise StoreError(f"Unsupported operator: {op!r}", code="invalid-argument")
        if op in ("in", "not-in") and not isinstance(value, (list, tuple, set)):
            raise StoreError(f"Operator {op!r} needs a list value", code="invalid-argument")
        return replace(self, filters=self.filters + ((field_path, op, value),))

    def order_by(self, field_path: str, direction: str = ASCENDING) -> "SQLiteQuery":
        if direction not in (ASCENDING, DESCENDING):
            raise StoreError(f"Unknown direction: {direction!r}", code="invalid-argument")
        return replace(self, orders=self.orders + ((field_path, direction),))

    def start_after(self, snapshot: DocumentSnapshot) -> "SQLiteQuery":
        return replace(self, cursor=snapshot)

    def offset(self, count: int) -> "SQLiteQuery":
        return replace(self, offset_rows=count)

    def limit(self, count: int) -> "SQLiteQuery":
        return replace(self, limit_rows=count)

    def _where_sql(self) -> Tuple[List[str], List[Any]]:
        clauses = ["collection = ?"]
        params: List[Any] = [self.collection]

        for field_path, op, value in self.filters:
            expr = _field_expr(field_path)
            if op == "==":
                clauses.append(f"{expr} = ?")
                params.append(_bind(value))
            elif op == "!=":
                clauses.append(f"({expr} IS NOT NULL AND {expr} != ?)")
                params.append(_bind(value))
            elif op in ("<", "<=", ">", ">="):
                clauses.append(f"{expr} {op} ?")
                params.append(_bind(value))
            elif op in ("in", "not-in"):
                values = list(value)
                if not values:
                    # Firestore rejects empty membership lists
                    raise StoreError(f"Operator {op!r} needs a non-empty list", code="invalid-argument")
                marks = ", ".join("?" for _ in values)
                if op == "in":
                    clauses.append(f"{expr} IN ({marks})")
                else:
                    clauses.append(f"({expr} IS NOT NULL AND {expr} NOT IN ({marks}))")
                params.extend(_bind(v) for v in values)
            else:  # array-contains
                clauses.append(
                    f"EXISTS (SELECT 1 FROM json_each(data, '$.{field_path}') WHERE value = ?)"
                )
                params.append(_bind(value))

        for field_path, _direction in self.orders:
            clauses.append(f"{_field_expr(field_path)} IS NOT NULL")

        if self.cursor is not None:
            clause, cursor_params = self._cursor_sql()
            clauses.append(clause)
            params.extend(cursor_params)

        return clauses, params

    def _sort_keys(self) -> List[Tuple[str, str]]:
        """Ordered (sql expression, direction) pairs, id tie-break last."""
        keys = [(_field_expr(f), d) for f, d in self.orders]
        id_direction = self.orders[-1][1] if self.orders else ASCENDING
        keys.append(("id", id_direction))
        return keys

    def _cursor_sql(self) -> Tuple[str, List[Any]]:
        values = [self.cursor.get(f) for f, _ in self.orders] + [self.cursor.id]
        keys = self._sort_keys()

        # Row comparison expanded: (a > x) OR (a = x AND b > y) OR ...
        branches = []
        params: List[Any] = []
        for i, (expr, direction) in enumerate(keys):
            parts = []
            for prev_expr, _ in keys[:i]:
                parts.append(f"{prev_expr} = ?")
            cmp = ">" if direction == ASCENDING else "<"
            parts.append(f"{expr} {cmp} ?")
            branches.append("(" + " AND ".join(parts) + ")")
            params.extend(_bind(v) for v in values[:i])
            params.append(_bind(values[i]))
        return "(" + " OR ".join(branches) + ")", params

    def _select_sql(self, columns: str) -> Tuple[str, List[Any]]:
        clauses, params = self._where_sql()
        order_sql = ", ".join(
            f"{expr} {'ASC' if d == ASCENDING else 'DESC'}" for expr, d in self._sort_keys()
        )
        sql = f"SELECT {columns} FROM documents WHERE {' AND '.join(clauses)} ORDER BY {order_sql}"
        if self.limit_rows is not None or self.offset_rows:
            sql += " LIMIT ? OFFSET ?"
            params.append(self.limit_rows if self.limit_rows is not None else -1)
            params.append(max(self.offset_rows, 0))
        return sql, params

    def get(self) -> List[DocumentSnapshot]:
        sql, params = self._select_sql("id, data")
        try:
            with get_connection(self.store.db_path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Query on {self.collection} failed: {e}", code="internal") from e
        return [DocumentSnapshot(id=row["id"], data=json.loads(row["data"])) for row in rows]

    def stream(self) -> Iterable[DocumentSnapshot]:
        return iter(self.get())

    def count(self) -> int:
        """Server-side count of matching documents."""
        if not self.store.supports_aggregation:
            raise AggregationUnsupported(
                "Aggregation queries are not supported by this store", code="unimplemented"
            )
        inner, params = self._select_sql("id")
        try:
            with get_connection(self.store.db_path) as conn:
                row = conn.execute(f"SELECT COUNT(*) FROM ({inner})", params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Count on {self.collection} failed: {e}", code="internal") from e
        return int(row[0])


class SQLiteDocumentStore:
    """Document store over a single SQLite file.

    Args:
        db_path: Path to the SQLite file (created on first use)
        supports_aggregation: When False, ``count()`` raises
            ``AggregationUnsupported`` like a backend without aggregation
    """

    def __init__(self, db_path: str = DB_PATH, supports_aggregation: bool = True):
        self.db_path = str(db_path)
        self.supports_aggregation = supports_aggregation
        init_db(self.db_path)

    def collection(self, name: str) -> SQLiteQuery:
        return SQLiteQuery(store=self, collection=name)

    def get_document(self, collection: str, doc_id: str) -> DocumentSnapshot:
        try:
            with get_connection(self.db_path) as conn:
                row = conn.execute(
                    "SELECT data FROM documents WHERE collection = ? AND id = ?",
                    (collection, doc_id),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Read of {collection}/{doc_id} failed: {e}", code="internal") from e
        if row is None:
            return DocumentSnapshot(id=doc_id, data=None, exists=False)
        return DocumentSnapshot(id=doc_id, data=json.loads(row["data"]))

    def add_document(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert a document under a new id and return the id."""
        doc_id = new_document_id()
        self.set_document(collection, doc_id, data)
        return doc_id

    def set_document(
        self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False
    ) -> None:
        if merge:
            existing = self.get_document(collection, doc_id)
            if existing.exists:
                data = {**existing.data, **data}
        payload = json.dumps(data, ensure_ascii=False, default=_json_default)
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO documents (collection, id, data)
                    VALUES (?, ?, ?)
                    ON CONFLICT(collection, id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (collection, doc_id, payload),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Write of {collection}/{doc_id} failed: {e}", code="internal") from e

    def update_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge fields into an existing document; the document must exist."""
        existing = self.get_document(collection, doc_id)
        if not existing.exists:
            raise NotFoundError(f"Document {collection}/{doc_id} not found")
        self.set_document(collection, doc_id, {**existing.data, **data})

    def delete_document(self, collection: str, doc_id: str) -> None:
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Delete of {collection}/{doc_id} failed: {e}", code="internal") from e
        logger.debug(f"Deleted {collection}/{doc_id}")

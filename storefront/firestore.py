"""Firestore-backed document store and backend selection.

Wraps ``firebase_admin.firestore`` behind the same narrow interface as
``storefront.db.SQLiteDocumentStore`` so the repository never touches
SDK types directly.
"""

from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from storefront.config import DB_PATH, FIREBASE_CREDENTIALS, FIREBASE_STORAGE_BUCKET, STORE_BACKEND
from storefront.db import ASCENDING, DocumentSnapshot, SQLiteDocumentStore
from storefront.errors import AggregationUnsupported, NotFoundError, StoreError
from storefront.logging_config import get_logger

__all__ = ["FirestoreQuery", "FirestoreDocumentStore", "get_firebase_app", "create_store"]

logger = get_logger("firestore")

_firebase_app: Optional[firebase_admin.App] = None


def get_firebase_app(
    credentials_path: Optional[str] = FIREBASE_CREDENTIALS,
    storage_bucket: Optional[str] = FIREBASE_STORAGE_BUCKET,
) -> firebase_admin.App:
    """Initialise the default firebase_admin app once and return it."""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    options: Dict[str, Any] = {}
    if storage_bucket:
        options["storageBucket"] = storage_bucket
    cred = credentials.Certificate(credentials_path) if credentials_path else None
    _firebase_app = firebase_admin.initialize_app(cred, options or None)
    logger.info("Firebase app initialised")
    return _firebase_app


def _wrap(snapshot: Any) -> DocumentSnapshot:
    return DocumentSnapshot(
        id=snapshot.id,
        data=snapshot.to_dict() if snapshot.exists else None,
        exists=snapshot.exists,
        raw=snapshot,
    )


def _translate(error: google_exceptions.GoogleAPICallError) -> StoreError:
    # Keep the HTTP status so retry classification sees 503 vs 403
    return StoreError(str(error), code=getattr(error, "code", None))


class FirestoreQuery:
    """Thin query wrapper; Firestore queries are already immutable."""

    def __init__(self, query: Any, collection_ref: Any):
        self._query = query
        self._collection_ref = collection_ref

    def _derive(self, query: Any) -> "FirestoreQuery":
        return FirestoreQuery(query, self._collection_ref)

    def where(self, field_path: str, op: str, value: Any) -> "FirestoreQuery":
        return self._derive(self._query.where(filter=FieldFilter(field_path, op, value)))

    def order_by(self, field_path: str, direction: str = ASCENDING) -> "FirestoreQuery":
        return self._derive(self._query.order_by(field_path, direction=direction))

    def start_after(self, snapshot: DocumentSnapshot) -> "FirestoreQuery":
        raw = snapshot.raw
        if raw is None:
            raw = self._collection_ref.document(snapshot.id).get()
        return self._derive(self._query.start_after(raw))

    def offset(self, count: int) -> "FirestoreQuery":
        return self._derive(self._query.offset(count))

    def limit(self, count: int) -> "FirestoreQuery":
        return self._derive(self._query.limit(count))

    def get(self) -> List[DocumentSnapshot]:
        try:
            return [_wrap(doc) for doc in self._query.stream()]
        except google_exceptions.GoogleAPICallError as e:
            raise _translate(e) from e

    def count(self) -> int:
        try:
            aggregate = self._query.count(alias="total")
        except AttributeError as e:
            raise AggregationUnsupported("Installed Firestore SDK has no count()", code="unimplemented") from e
        try:
            results = aggregate.get()
        except (google_exceptions.MethodNotImplemented, google_exceptions.FailedPrecondition) as e:
            raise AggregationUnsupported(str(e), code="unimplemented") from e
        except google_exceptions.GoogleAPICallError as e:
            raise _translate(e) from e
        return int(results[0][0].value)


class FirestoreDocumentStore:
    """Document store over a Firestore client."""

    supports_aggregation = True

    def __init__(self, client: Any = None):
        self.client = client or firestore.client(app=get_firebase_app())

    def collection(self, name: str) -> FirestoreQuery:
        ref = self.client.collection(name)
        return FirestoreQuery(ref, ref)

    def get_document(self, collection: str, doc_id: str) -> DocumentSnapshot:
        try:
            return _wrap(self.client.collection(collection).document(doc_id).get())
        except google_exceptions.GoogleAPICallError as e:
            raise _translate(e) from e

    def add_document(self, collection: str, data: Dict[str, Any]) -> str:
        try:
            _update_time, ref = self.client.collection(collection).add(data)
        except google_exceptions.GoogleAPICallError as e:
            raise _translate(e) from e
        return ref.id

    def set_document(
        self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False
    ) -> None:
        try:
            self.client.collection(collection).document(doc_id).set(data, merge=merge)
        except google_exceptions.GoogleAPICallError as e:
            raise _translate(e) from e

    def update_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            self.client.collection(collection).document(doc_id).update(data)
        except google_exceptions.NotFound as e:
            raise NotFoundError(f"Document {collection}/{doc_id} not found") from e
        except google_exceptions.GoogleAPICallError as e:
            raise _translate(e) from e

    def delete_document(self, collection: str, doc_id: str) -> None:
        try:
            self.client.collection(collection).document(doc_id).delete()
        except google_exceptions.GoogleAPICallError as e:
            raise _translate(e) from e


def create_store(backend: str = STORE_BACKEND, db_path: str = DB_PATH):
    """Build the configured document store ("sqlite" or "firestore")."""
    if backend == "firestore":
        logger.info("Using Firestore document store")
        return FirestoreDocumentStore()
    if backend != "sqlite":
        raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")
    logger.info(f"Using SQLite document store at {db_path}")
    return SQLiteDocumentStore(db_path)

"""Remote document store client.

`DocumentStore` is the narrow surface the managers use: equality-filtered
and ordered reads, live subscriptions, full-replace or merge writes and
deletes against slash-separated collection paths (`questions`,
`users/{uid}/sessions`).

Two implementations:
- `MemoryDocumentStore`: in-process store, used for local runs and tests.
- `FirestoreDocumentStore`: Cloud Firestore through firebase_admin.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as gexc
from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import NotFoundError, StoreError

log = logging.getLogger("tarologist.store")

CATEGORIES_COLLECTION = "questionCategories"
QUESTIONS_COLLECTION = "questions"
SPREADS_COLLECTION = "spreads"
USERS_COLLECTION = "users"


def sessions_collection(user_id: str) -> str:
    return f"{USERS_COLLECTION}/{user_id}/sessions"


@dataclass
class Document:
    id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class Query:
    collection: str
    filters: Tuple[Tuple[str, Any], ...] = ()
    order_by: Optional[str] = None
    descending: bool = False

    def where(self, field_name: str, value: Any) -> "Query":
        return Query(self.collection, self.filters + ((field_name, value),), self.order_by, self.descending)

    def order(self, field_name: str, descending: bool = False) -> "Query":
        return Query(self.collection, self.filters, field_name, descending)

    def matches(self, data: Dict[str, Any]) -> bool:
        return all(k in data and data[k] == v for k, v in self.filters)


# Called with (documents, None) on every snapshot, or (None, error).
SnapshotCallback = Callable[[Optional[List[Document]], Optional[Exception]], None]


class ListenerRegistration:
    """Handle returned by `DocumentStore.listen`; the caller owns `remove()`."""

    def __init__(self, remove: Callable[[], None]) -> None:
        self._remove = remove
        self._lock = threading.Lock()
        self.active = True

    def remove(self) -> None:
        with self._lock:
            if not self.active:
                return
            self.active = False
        self._remove()


class DocumentStore:
    def get_documents(self, query: Query) -> List[Document]:
        raise NotImplementedError

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    def set_document(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    def update_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Patch fields of an existing document; NotFoundError if it is absent."""
        raise NotImplementedError

    def delete_document(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def listen(self, query: Query, callback: SnapshotCallback) -> ListenerRegistration:
        raise NotImplementedError


# -------------------------------------------------------------------
# In-memory
# -------------------------------------------------------------------

@dataclass
class _Listener:
    query: Query
    callback: SnapshotCallback
    registration: Optional[ListenerRegistration] = field(default=None, repr=False)


def _sort_key(value: Any) -> Tuple[int, Any]:
    # missing fields sort first, as in Firestore they would be excluded
    return (0, 0) if value is None else (1, value)


class MemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: List[_Listener] = []

    def _run(self, query: Query) -> List[Document]:
        docs = self._collections.get(query.collection, {})
        out = [Document(doc_id, copy.deepcopy(data)) for doc_id, data in docs.items() if query.matches(data)]
        if query.order_by:
            out.sort(key=lambda d: _sort_key(d.data.get(query.order_by)), reverse=query.descending)
        return out

    def get_documents(self, query: Query) -> List[Document]:
        with self._lock:
            return self._run(query)

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            return Document(doc_id, copy.deepcopy(data)) if data is not None else None

    def set_document(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            if merge and doc_id in docs:
                docs[doc_id].update(copy.deepcopy(data))
            else:
                docs[doc_id] = copy.deepcopy(data)
        self._notify(collection)

    def update_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            docs = self._collections.get(collection, {})
            if doc_id not in docs:
                raise NotFoundError(f"No document {collection}/{doc_id}")
            docs[doc_id].update(copy.deepcopy(fields))
        self._notify(collection)

    def delete_document(self, collection: str, doc_id: str) -> None:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None)
        if removed is not None:
            self._notify(collection)

    def listen(self, query: Query, callback: SnapshotCallback) -> ListenerRegistration:
        listener = _Listener(query, callback)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        listener.registration = ListenerRegistration(_remove)
        with self._lock:
            self._listeners.append(listener)
            snapshot = self._run(query)
        callback(snapshot, None)
        return listener.registration

    def listeners_for(self, collection: str) -> List[_Listener]:
        with self._lock:
            return [l for l in self._listeners if l.query.collection == collection]

    def _notify(self, collection: str) -> None:
        pending = []
        with self._lock:
            for l in self._listeners:
                if l.query.collection == collection:
                    pending.append((l, self._run(l.query)))
        for l, snapshot in pending:
            if l.registration is not None and l.registration.active:
                l.callback(snapshot, None)


# -------------------------------------------------------------------
# Cloud Firestore
# -------------------------------------------------------------------

def firestore_client(project_id: Optional[str] = None, credentials_path: Optional[str] = None):
    try:
        app = firebase_admin.get_app()
    except ValueError:
        cred = credentials.Certificate(credentials_path) if credentials_path else credentials.ApplicationDefault()
        options = {"projectId": project_id} if project_id else None
        app = firebase_admin.initialize_app(cred, options)
    return firestore.client(app)


class FirestoreDocumentStore(DocumentStore):
    def __init__(self, client: Any = None, project_id: Optional[str] = None,
                 credentials_path: Optional[str] = None) -> None:
        self._db = client if client is not None else firestore_client(project_id, credentials_path)

    def _ref(self, query: Query):
        ref = self._db.collection(query.collection)
        for field_name, value in query.filters:
            ref = ref.where(filter=FieldFilter(field_name, "==", value))
        if query.order_by:
            direction = firestore.Query.DESCENDING if query.descending else firestore.Query.ASCENDING
            ref = ref.order_by(query.order_by, direction=direction)
        return ref

    def get_documents(self, query: Query) -> List[Document]:
        try:
            return [Document(s.id, s.to_dict() or {}) for s in self._ref(query).stream()]
        except gexc.GoogleAPIError as e:
            raise StoreError(f"Query on {query.collection} failed: {e}") from e

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            snap = self._db.collection(collection).document(doc_id).get()
        except gexc.GoogleAPIError as e:
            raise StoreError(f"Read of {collection}/{doc_id} failed: {e}") from e
        return Document(snap.id, snap.to_dict() or {}) if snap.exists else None

    def set_document(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        try:
            self._db.collection(collection).document(doc_id).set(data, merge=merge)
        except gexc.GoogleAPIError as e:
            raise StoreError(f"Write of {collection}/{doc_id} failed: {e}") from e

    def update_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        try:
            self._db.collection(collection).document(doc_id).update(fields)
        except gexc.NotFound as e:
            raise NotFoundError(f"No document {collection}/{doc_id}") from e
        except gexc.GoogleAPIError as e:
            raise StoreError(f"Update of {collection}/{doc_id} failed: {e}") from e

    def delete_document(self, collection: str, doc_id: str) -> None:
        try:
            self._db.collection(collection).document(doc_id).delete()
        except gexc.GoogleAPIError as e:
            raise StoreError(f"Delete of {collection}/{doc_id} failed: {e}") from e

    def listen(self, query: Query, callback: SnapshotCallback) -> ListenerRegistration:
        def _on_snapshot(snapshots, changes, read_time) -> None:
            try:
                docs = [Document(s.id, s.to_dict() or {}) for s in snapshots]
            except Exception as e:
                log.warning("snapshot on %s could not be read: %s", query.collection, e)
                callback(None, e)
                return
            callback(docs, None)

        watch = self._ref(query).on_snapshot(_on_snapshot)
        return ListenerRegistration(watch.unsubscribe)

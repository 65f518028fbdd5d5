"""
Document store used by the repository and the notification feed.

Every method returns a tuple whose first element is a success flag and whose
last element is an error string (or None), matching how the services consume
it. Two backends share the contract:

- ``InMemoryDatabaseService``: process-local dictionaries (tests, dev)
- ``FirestoreDatabaseService``: Cloud Firestore through ``firebase_admin``
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)

VERSION_CONFLICT = "version_conflict"
NOT_FOUND = "not_found"

Filter = Tuple[str, str, Any]


def _matches(doc: Dict[str, Any], filters: Optional[List[Filter]]) -> bool:
    for field, op, value in filters or []:
        current = doc.get(field)
        if op == "==":
            ok = current == value
        elif op == "!=":
            ok = current != value
        elif op == "in":
            ok = current in value
        elif op == ">=":
            ok = current is not None and current >= value
        elif op == "<=":
            ok = current is not None and current <= value
        elif op == ">":
            ok = current is not None and current > value
        elif op == "<":
            ok = current is not None and current < value
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
        if not ok:
            return False
    return True


class DatabaseService:
    """Backend-agnostic contract; subclasses implement the storage calls."""

    async def create_document(
        self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None
    ) -> Tuple[bool, Optional[str], Optional[str]]:
        raise NotImplementedError

    async def get_document(
        self, collection: str, document_id: str
    ) -> Tuple[bool, Optional[Dict[str, Any]], Optional[str]]:
        raise NotImplementedError

    async def update_document(
        self, collection: str, document_id: str, data: Dict[str, Any]
    ) -> Tuple[bool, Optional[str]]:
        raise NotImplementedError

    async def replace_document(
        self,
        collection: str,
        document_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Tuple[bool, Optional[str]]:
        """Overwrite a document, optionally only if its stored `version` matches."""
        raise NotImplementedError

    async def query_documents(
        self,
        collection: str,
        filters: Optional[List[Filter]] = None,
        order_by: Optional[List[Tuple[str, str]]] = None,
        limit: Optional[int] = None,
    ) -> Tuple[bool, List[Dict[str, Any]], Optional[str]]:
        raise NotImplementedError

    async def increment_counter(self, collection: str, counter_id: str) -> Tuple[bool, Optional[int], Optional[str]]:
        """Atomically bump a counter document and return the new value."""
        raise NotImplementedError


class InMemoryDatabaseService(DatabaseService):
    def __init__(self):
        self.storage: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def create_document(self, collection, data, document_id=None):
        coll = self.storage.setdefault(collection, {})
        doc_id = document_id or data.get("id") or f"doc_{len(coll) + 1}"
        if doc_id in coll:
            return False, None, f"Document {doc_id} already exists in {collection}"
        coll[doc_id] = copy.deepcopy(data)
        return True, doc_id, None

    async def get_document(self, collection, document_id):
        doc = self.storage.get(collection, {}).get(document_id)
        if doc is None:
            return False, None, NOT_FOUND
        return True, copy.deepcopy(doc), None

    async def update_document(self, collection, document_id, data):
        coll = self.storage.get(collection, {})
        if document_id not in coll:
            return False, NOT_FOUND
        coll[document_id].update(copy.deepcopy(data))
        return True, None

    async def replace_document(self, collection, document_id, data, expected_version=None):
        coll = self.storage.get(collection, {})
        if document_id not in coll:
            return False, NOT_FOUND
        if expected_version is not None and coll[document_id].get("version") != expected_version:
            return False, VERSION_CONFLICT
        coll[document_id] = copy.deepcopy(data)
        return True, None

    async def query_documents(self, collection, filters=None, order_by=None, limit=None):
        try:
            docs = [
                copy.deepcopy(doc)
                for doc in self.storage.get(collection, {}).values()
                if _matches(doc, filters)
            ]
        except ValueError as e:
            return False, [], str(e)

        # Apply sort keys last-to-first so the first key wins
        for field, direction in reversed(order_by or []):
            docs.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=direction == "desc")

        if limit is not None:
            docs = docs[:limit]
        return True, docs, None

    async def increment_counter(self, collection, counter_id):
        coll = self.storage.setdefault(collection, {})
        doc = coll.setdefault(counter_id, {"counter": 0})
        doc["counter"] = doc.get("counter", 0) + 1
        doc["last_updated"] = datetime.now(timezone.utc).isoformat()
        return True, doc["counter"], None


class FirestoreDatabaseService(DatabaseService):
    def __init__(self, client=None):
        self._client = client

    def _raw_firestore(self):
        if self._client is None:
            from firebase_admin import firestore
            from app.core.firebase_init import initialize_firebase

            if not initialize_firebase():
                raise RuntimeError("Firebase is not available - cannot use Firestore backend")
            self._client = firestore.client()
        return self._client

    async def create_document(self, collection, data, document_id=None):
        try:
            coll = self._raw_firestore().collection(collection)
            ref = coll.document(document_id) if document_id else coll.document()
            ref.create(data)
            return True, ref.id, None
        except Exception as e:
            logger.error(f"Failed to create document in {collection}: {str(e)}")
            return False, None, str(e)

    async def get_document(self, collection, document_id):
        try:
            snap = self._raw_firestore().collection(collection).document(document_id).get()
            if not snap.exists:
                return False, None, NOT_FOUND
            doc = snap.to_dict() or {}
            doc["_doc_id"] = snap.id
            return True, doc, None
        except Exception as e:
            logger.error(f"Failed to get {collection}/{document_id}: {str(e)}")
            return False, None, str(e)

    async def update_document(self, collection, document_id, data):
        try:
            self._raw_firestore().collection(collection).document(document_id).update(data)
            return True, None
        except Exception as e:
            logger.error(f"Failed to update {collection}/{document_id}: {str(e)}")
            return False, str(e)

    async def replace_document(self, collection, document_id, data, expected_version=None):
        from firebase_admin import firestore as admin_firestore

        raw = self._raw_firestore()
        ref = raw.collection(collection).document(document_id)

        @admin_firestore.transactional
        def _txn(transaction):
            snap = ref.get(transaction=transaction)
            if not snap.exists:
                return NOT_FOUND
            current = snap.to_dict() or {}
            if expected_version is not None and current.get("version") != expected_version:
                return VERSION_CONFLICT
            transaction.set(ref, data)
            return None

        try:
            error = _txn(raw.transaction())
            return error is None, error
        except Exception as e:
            logger.error(f"Failed to replace {collection}/{document_id}: {str(e)}")
            return False, str(e)

    async def query_documents(self, collection, filters=None, order_by=None, limit=None):
        try:
            from google.cloud.firestore_v1 import FieldFilter, Query

            query = self._raw_firestore().collection(collection)
            for field, op, value in filters or []:
                query = query.where(filter=FieldFilter(field, op, value))
            for field, direction in order_by or []:
                query = query.order_by(
                    field,
                    direction=Query.DESCENDING if direction == "desc" else Query.ASCENDING,
                )
            if limit is not None:
                query = query.limit(limit)
            docs = []
            for snap in query.stream():
                doc = snap.to_dict() or {}
                doc["_doc_id"] = snap.id
                docs.append(doc)
            return True, docs, None
        except Exception as e:
            logger.error(f"Failed to query {collection}: {str(e)}")
            return False, [], str(e)

    async def increment_counter(self, collection, counter_id):
        from firebase_admin import firestore as admin_firestore

        raw = self._raw_firestore()
        ref = raw.collection(collection).document(counter_id)

        @admin_firestore.transactional
        def _txn(transaction):
            snap = ref.get(transaction=transaction)
            value = ((snap.to_dict() or {}).get("counter", 0) if snap.exists else 0) + 1
            transaction.set(ref, {"counter": value, "last_updated": datetime.now(timezone.utc)})
            return value

        try:
            return True, _txn(raw.transaction()), None
        except Exception as e:
            logger.error(f"Failed to increment counter {counter_id}: {str(e)}")
            return False, None, str(e)


def create_database_service(backend: Optional[str] = None) -> DatabaseService:
    backend = (backend or settings.DATABASE_BACKEND).lower()
    if backend == "firestore":
        return FirestoreDatabaseService()
    if backend != "memory":
        logger.warning("Unknown DATABASE_BACKEND %r, falling back to in-memory store", backend)
    return InMemoryDatabaseService()


database_service = create_database_service()

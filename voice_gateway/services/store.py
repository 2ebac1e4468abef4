"""
Key-document store with transactional read-modify-write.

``FirestoreDocumentStore`` is the production backend (firebase-admin's
async Firestore client). ``InMemoryDocumentStore`` serves local runs with
``STORE_BACKEND=memory`` and the test suite.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable, Optional, Protocol

from google.cloud import firestore

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Mutator = Callable[[Optional[Document]], Document]


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[Document]: ...

    async def set(self, collection: str, doc_id: str, data: Document, merge: bool = False) -> None: ...

    async def create_if_absent(self, collection: str, doc_id: str, data: Document) -> bool: ...

    async def transact(self, collection: str, doc_id: str, mutate: Mutator) -> Document: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...


class FirestoreDocumentStore:
    """Firestore-backed store. Expects firebase_admin to be initialized."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            from firebase_admin import firestore_async

            client = firestore_async.client()
        self._client = client

    def _ref(self, collection: str, doc_id: str) -> Any:
        return self._client.collection(collection).document(doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        snapshot = await self._ref(collection, doc_id).get()
        return snapshot.to_dict() if snapshot.exists else None

    async def set(self, collection: str, doc_id: str, data: Document, merge: bool = False) -> None:
        await self._ref(collection, doc_id).set(data, merge=merge)

    async def create_if_absent(self, collection: str, doc_id: str, data: Document) -> bool:
        ref = self._ref(collection, doc_id)

        @firestore.async_transactional
        async def _create(transaction: Any) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if snapshot.exists:
                return False
            transaction.set(ref, data)
            return True

        return await _create(self._client.transaction())

    async def transact(self, collection: str, doc_id: str, mutate: Mutator) -> Document:
        ref = self._ref(collection, doc_id)

        @firestore.async_transactional
        async def _update(transaction: Any) -> Document:
            snapshot = await ref.get(transaction=transaction)
            updated = mutate(snapshot.to_dict() if snapshot.exists else None)
            transaction.set(ref, updated)
            return updated

        return await _update(self._client.transaction())

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._ref(collection, doc_id).delete()


class InMemoryDocumentStore:
    """Process-local store with the same transactional guarantees."""

    def __init__(self, seed: Optional[dict[str, dict[str, Document]]] = None) -> None:
        self._data: dict[str, dict[str, Document]] = copy.deepcopy(seed) if seed else {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._data.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, data: Document, merge: bool = False) -> None:
        async with self._lock:
            docs = self._data.setdefault(collection, {})
            if merge and doc_id in docs:
                docs[doc_id].update(copy.deepcopy(data))
            else:
                docs[doc_id] = copy.deepcopy(data)

    async def create_if_absent(self, collection: str, doc_id: str, data: Document) -> bool:
        async with self._lock:
            docs = self._data.setdefault(collection, {})
            if doc_id in docs:
                return False
            docs[doc_id] = copy.deepcopy(data)
            return True

    async def transact(self, collection: str, doc_id: str, mutate: Mutator) -> Document:
        async with self._lock:
            docs = self._data.setdefault(collection, {})
            current = copy.deepcopy(docs.get(doc_id))
            updated = mutate(current)
            docs[doc_id] = copy.deepcopy(updated)
            return updated

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._lock:
            self._data.get(collection, {}).pop(doc_id, None)

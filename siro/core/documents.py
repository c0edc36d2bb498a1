"""
Document store used by the chat core.

Every entity (users, friend requests, conversations) lives in a collection of
JSON documents addressed by ``id``. The store offers exactly what the core
relies on:

- ``get`` / ``find`` reads (equality filters, plus "array contains" filters)
- ``insert`` honouring per-collection unique keys (raises ``DuplicateKeyError``)
- ``update`` as an atomic read-modify-write of a single document
- ``delete``

No operation spans more than one document.

Two backends exist: ``InMemoryDocumentStore`` (development and tests) and
``SupabaseDocumentStore`` in ``siro.core.supabase_store``.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import DuplicateKeyError


logger = logging.getLogger(__name__)

USERS = "users"
FRIEND_REQUESTS = "friend_requests"
CONVERSATIONS = "conversations"

# collection -> fields that must be unique across the collection
UNIQUE_KEYS: Dict[str, Tuple[str, ...]] = {
    USERS: ("username",),
    FRIEND_REQUESTS: ("pair_key",),
    CONVERSATIONS: ("pair_key",),
}

documents_table_sql = """
create table {collection} (
  id text primary key,
  data jsonb not null,
  version integer not null default 1,

  -- unique field of the collection (pair_key, username), null when unused
  unique_key text unique
);
"""

# Receives a private copy of the document. Return the document to write, or
# None to leave the stored one untouched.
Mutator = Callable[[dict], Optional[dict]]


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def find(
        self,
        collection: str,
        where: Optional[dict] = None,
        contains: Optional[dict] = None,
    ) -> List[dict]:
        """Documents whose fields equal every ``where`` item and whose list
        fields include every ``contains`` value."""

    @abstractmethod
    async def insert(self, collection: str, document: dict) -> dict:
        ...

    @abstractmethod
    async def update(
        self, collection: str, doc_id: str, mutate: Mutator
    ) -> Optional[dict]:
        """Atomically apply ``mutate``. Returns the stored document after the
        call (changed or not), None when it does not exist."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        ...

    async def close(self):
        pass


def matches(document: dict, where: Optional[dict], contains: Optional[dict]) -> bool:
    for field, value in (where or {}).items():
        if document.get(field) != value:
            return False
    for field, value in (contains or {}).items():
        if value not in (document.get(field) or []):
            return False
    return True


class InMemoryDocumentStore(DocumentStore):
    """Process-local store.

    Every call yields to the event loop once before touching data so that
    concurrent handlers interleave the way they do against a networked store.
    """

    def __init__(self, unique_keys: Optional[Dict[str, Tuple[str, ...]]] = None):
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._unique_keys = UNIQUE_KEYS if unique_keys is None else unique_keys

    def _collection(self, name: str) -> Dict[str, dict]:
        return self._collections.setdefault(name, {})

    def _lock(self, collection: str, doc_id: str) -> asyncio.Lock:
        key = (collection, doc_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _check_unique(self, collection: str, document: dict):
        for field in self._unique_keys.get(collection, ()):
            value = document.get(field)
            if value is None:
                continue
            for other in self._collection(collection).values():
                if other["id"] != document["id"] and other.get(field) == value:
                    raise DuplicateKeyError(collection, field, value)

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        await asyncio.sleep(0)
        document = self._collection(collection).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def find(
        self,
        collection: str,
        where: Optional[dict] = None,
        contains: Optional[dict] = None,
    ) -> List[dict]:
        await asyncio.sleep(0)
        return [
            copy.deepcopy(document)
            for document in self._collection(collection).values()
            if matches(document, where, contains)
        ]

    async def insert(self, collection: str, document: dict) -> dict:
        await asyncio.sleep(0)
        if "id" not in document:
            raise ValueError("documents need an id")

        docs = self._collection(collection)
        if document["id"] in docs:
            raise DuplicateKeyError(collection, "id", document["id"])
        self._check_unique(collection, document)

        docs[document["id"]] = copy.deepcopy(document)
        logger.debug(f"document_inserted collection={collection} id={document['id']}")
        return copy.deepcopy(document)

    async def update(
        self, collection: str, doc_id: str, mutate: Mutator
    ) -> Optional[dict]:
        async with self._lock(collection, doc_id):
            await asyncio.sleep(0)
            docs = self._collection(collection)
            current = docs.get(doc_id)
            if current is None:
                return None

            updated = mutate(copy.deepcopy(current))
            if updated is None:
                return copy.deepcopy(current)

            updated["id"] = doc_id
            self._check_unique(collection, updated)
            docs[doc_id] = copy.deepcopy(updated)
            return copy.deepcopy(updated)

    async def delete(self, collection: str, doc_id: str) -> bool:
        await asyncio.sleep(0)
        removed = self._collection(collection).pop(doc_id, None)
        self._locks.pop((collection, doc_id), None)
        return removed is not None

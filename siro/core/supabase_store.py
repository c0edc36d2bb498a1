"""
Supabase (PostgREST) backend for the document store.

Each collection is a table shaped like ``documents_table_sql`` in
``siro/core/documents.py``: ``id``, ``data jsonb``, ``version`` and a nullable
``unique_key`` column carrying the collection's unique field.

Updates are optimistic: read the row with its version, apply the mutator,
write back only where the version is unchanged, retry on a lost race.
"""

import copy
import json
import logging
from typing import Dict, List, Optional, Tuple

import httpx
from fastapi.concurrency import run_in_threadpool
from postgrest.exceptions import APIError
from supabase import Client

from .documents import DocumentStore, Mutator, UNIQUE_KEYS, matches
from .exceptions import DuplicateKeyError, StoreError


logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
MAX_UPDATE_ATTEMPTS = 5


def _as_text(value) -> str:
    # data->>field compares as text
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SupabaseDocumentStore(DocumentStore):
    def __init__(
        self,
        client: Client,
        unique_keys: Optional[Dict[str, Tuple[str, ...]]] = None,
        max_update_attempts: int = MAX_UPDATE_ATTEMPTS,
    ):
        self._client = client
        self._unique_keys = UNIQUE_KEYS if unique_keys is None else unique_keys
        self._max_update_attempts = max_update_attempts

    def _unique_field(self, collection: str) -> Optional[str]:
        fields = self._unique_keys.get(collection, ())
        return fields[0] if fields else None

    def _unique_value(self, collection: str, document: dict) -> Optional[str]:
        field = self._unique_field(collection)
        if field is None or document.get(field) is None:
            return None
        return _as_text(document[field])

    async def _execute(self, query, collection: str, document: Optional[dict] = None):
        try:
            return await run_in_threadpool(query.execute)
        except APIError as error:
            if error.code == UNIQUE_VIOLATION and document is not None:
                field = self._unique_field(collection) or "id"
                raise DuplicateKeyError(collection, field, document.get(field)) from error
            logger.error(f"supabase_error collection={collection} code={error.code} message={error.message}")
            raise StoreError(f"{collection}: {error.message}") from error
        except httpx.HTTPError as error:
            logger.error(f"supabase_unreachable collection={collection} error={error}")
            raise StoreError(f"{collection}: {error}") from error

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        res = await self._execute(
            self._client.table(collection).select("data").eq("id", doc_id).limit(1),
            collection,
        )
        return res.data[0]["data"] if res.data else None

    async def find(
        self,
        collection: str,
        where: Optional[dict] = None,
        contains: Optional[dict] = None,
    ) -> List[dict]:
        query = self._client.table(collection).select("data")

        for field, value in (where or {}).items():
            query = query.eq(f"data->>{field}", _as_text(value))

        for field, value in (contains or {}).items():
            query = query.filter(f"data->{field}", "cs", json.dumps([value]))

        res = await self._execute(query, collection)

        # text comparison above is lossy for non-string values
        return [row["data"] for row in res.data or [] if matches(row["data"], where, contains)]

    async def insert(self, collection: str, document: dict) -> dict:
        if "id" not in document:
            raise ValueError("documents need an id")

        await self._execute(
            self._client.table(collection).insert(
                {
                    "id": document["id"],
                    "data": document,
                    "version": 1,
                    "unique_key": self._unique_value(collection, document),
                }
            ),
            collection,
            document,
        )
        return copy.deepcopy(document)

    async def update(
        self, collection: str, doc_id: str, mutate: Mutator
    ) -> Optional[dict]:
        for attempt in range(1, self._max_update_attempts + 1):
            res = await self._execute(
                self._client.table(collection)
                .select("data, version")
                .eq("id", doc_id)
                .limit(1),
                collection,
            )
            if not res.data:
                return None

            row = res.data[0]
            updated = mutate(copy.deepcopy(row["data"]))
            if updated is None:
                return row["data"]

            updated["id"] = doc_id
            written = await self._execute(
                self._client.table(collection)
                .update(
                    {
                        "data": updated,
                        "version": row["version"] + 1,
                        "unique_key": self._unique_value(collection, updated),
                    }
                )
                .eq("id", doc_id)
                .eq("version", row["version"]),
                collection,
                updated,
            )
            if written.data:
                return updated

            logger.debug(
                f"document_update_conflict collection={collection} id={doc_id} attempt={attempt}"
            )

        raise StoreError(
            f"{collection}/{doc_id}: gave up after {self._max_update_attempts} conflicting updates"
        )

    async def delete(self, collection: str, doc_id: str) -> bool:
        res = await self._execute(
            self._client.table(collection).delete().eq("id", doc_id),
            collection,
        )
        return bool(res.data)

from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError

from siro.chat.models import conversations_sql
from siro.core.documents import CONVERSATIONS, USERS
from siro.core.exceptions import DuplicateKeyError, StoreError
from siro.core.supabase_store import SupabaseDocumentStore
from siro.friendship.models import friend_requests_sql
from siro.users.models import users_sql


class FakeQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = []

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append((name, args))
            return self

        return record

    def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.data)


class FakeClient:
    def __init__(self, *queries):
        self.queries = list(queries)
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return self.queries.pop(0)


@pytest.mark.asyncio
async def test_unique_violation_becomes_duplicate_key():
    error = APIError({"code": "23505", "message": "duplicate key value", "hint": None, "details": None})
    store = SupabaseDocumentStore(FakeClient(FakeQuery(error=error)))

    with pytest.raises(DuplicateKeyError) as exc:
        await store.insert(USERS, {"id": "u1", "username": "alice"})

    assert exc.value.key == "username"
    assert exc.value.value == "alice"


@pytest.mark.asyncio
async def test_other_api_errors_become_store_errors():
    error = APIError({"code": "42P01", "message": "relation does not exist", "hint": None, "details": None})
    store = SupabaseDocumentStore(FakeClient(FakeQuery(error=error)))

    with pytest.raises(StoreError):
        await store.get(USERS, "u1")


@pytest.mark.asyncio
async def test_network_errors_become_store_errors():
    store = SupabaseDocumentStore(FakeClient(FakeQuery(error=httpx.ConnectError("refused"))))

    with pytest.raises(StoreError):
        await store.find(USERS)


@pytest.mark.asyncio
async def test_insert_writes_unique_key_column():
    query = FakeQuery(data=[{}])
    store = SupabaseDocumentStore(FakeClient(query))

    await store.insert(CONVERSATIONS, {"id": "c1", "pair_key": "a:b", "participants": ["a", "b"]})

    name, args = query.calls[0]
    assert name == "insert"
    assert args[0]["unique_key"] == "a:b"
    assert args[0]["version"] == 1


@pytest.mark.asyncio
async def test_find_filters_and_rechecks_rows():
    rows = [
        {"data": {"id": "c1", "participants": ["a", "b"]}},
        {"data": {"id": "c2", "participants": ["b", "c"]}},
    ]
    query = FakeQuery(data=rows)
    store = SupabaseDocumentStore(FakeClient(query))

    found = await store.find(CONVERSATIONS, contains={"participants": "a"})

    assert [doc["id"] for doc in found] == ["c1"]
    assert ("filter", ("data->participants", "cs", '["a"]')) in query.calls


@pytest.mark.asyncio
async def test_update_retries_on_version_conflict():
    client = FakeClient(
        FakeQuery(data=[{"data": {"id": "u1", "n": 0}, "version": 1}]),
        FakeQuery(data=[]),  # lost the race
        FakeQuery(data=[{"data": {"id": "u1", "n": 5}, "version": 2}]),
        FakeQuery(data=[{"id": "u1"}]),
    )
    store = SupabaseDocumentStore(client, unique_keys={})

    def increment(doc):
        doc["n"] += 1
        return doc

    assert await store.update("counters", "u1", increment) == {"id": "u1", "n": 6}


@pytest.mark.asyncio
async def test_update_gives_up_after_repeated_conflicts():
    queries = []
    for _ in range(2):
        queries.append(FakeQuery(data=[{"data": {"id": "u1"}, "version": 1}]))
        queries.append(FakeQuery(data=[]))
    store = SupabaseDocumentStore(FakeClient(*queries), unique_keys={}, max_update_attempts=2)

    with pytest.raises(StoreError):
        await store.update("counters", "u1", lambda doc: doc)


@pytest.mark.asyncio
async def test_update_noop_skips_write():
    client = FakeClient(FakeQuery(data=[{"data": {"id": "u1"}, "version": 3}]))
    store = SupabaseDocumentStore(client)

    assert await store.update(USERS, "u1", lambda doc: None) == {"id": "u1"}
    assert client.tables == [USERS]


@pytest.mark.parametrize("ddl", [users_sql, friend_requests_sql, conversations_sql])
def test_table_ddl_matches_store_columns(ddl):
    for column in ("id text primary key", "data jsonb", "version integer", "unique_key text unique"):
        assert column in ddl

"""
Unit Tests for Persistence Stores

Tests the in-memory and Supabase stores, value decoding and bounded calls.
"""

import base64
import time
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_form_engine", "src"))

from adaptive_form_engine.errors import PersistenceError
from adaptive_form_engine.persistence import (
    InMemoryPersistenceStore,
    SupabasePersistenceStore,
    bounded_get,
    bounded_set,
    decode_json,
    encode_json,
    session_key,
    user_key,
)


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable stand-in for a Supabase table query."""

    def __init__(self, client):
        self.client = client

    def select(self, *args):
        return self

    def eq(self, column, value):
        self.client.filters.append((column, value))
        return self

    def limit(self, count):
        return self

    def upsert(self, row, on_conflict=None):
        self.client.upserts.append((row, on_conflict))
        return self

    def execute(self):
        if self.client.fail:
            raise ConnectionError("supabase unreachable")
        return FakeResult(self.client.rows)


class FakeSupabase:
    def __init__(self, rows=None, fail=False):
        self.rows = rows or []
        self.fail = fail
        self.filters = []
        self.upserts = []
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return FakeQuery(self)


class TestKeysAndEncoding:
    """Test suite for keys and value encoding."""

    def test_keys(self):
        assert session_key("abc") == "session:abc"
        assert user_key("u1") == "user:u1"

    def test_decode_round_trip(self):
        assert decode_json(encode_json({"a": 1, "b": [1, 2]})) == {"a": 1, "b": [1, 2]}

    def test_decode_absent(self):
        assert decode_json(None) is None

    def test_decode_corrupt_is_absent(self):
        assert decode_json(b"\xff\xfe{") is None
        assert decode_json(b"{not json") is None

    def test_decode_non_object_is_absent(self):
        assert decode_json(b"[1, 2, 3]") is None


class TestInMemoryStore:
    """Test suite for InMemoryPersistenceStore."""

    def test_get_set(self):
        store = InMemoryPersistenceStore()
        assert store.get("session:1") is None

        store.set("session:1", b"value")

        assert store.get("session:1") == b"value"
        assert store.keys() == ["session:1"]

    @pytest.mark.asyncio
    async def test_bounded_calls(self):
        store = InMemoryPersistenceStore()
        await bounded_set(store, "k", b"v", timeout=1.0)
        assert await bounded_get(store, "k", timeout=1.0) == b"v"

    @pytest.mark.asyncio
    async def test_bounded_get_timeout(self):
        class SlowStore(InMemoryPersistenceStore):
            def get(self, key):
                time.sleep(0.3)
                return None

        with pytest.raises(PersistenceError) as exc_info:
            await bounded_get(SlowStore(), "k", timeout=0.05)
        assert exc_info.value.context["timeout"] == 0.05

    @pytest.mark.asyncio
    async def test_bounded_set_wraps_errors(self):
        class BrokenStore(InMemoryPersistenceStore):
            def set(self, key, value):
                raise OSError("disk full")

        with pytest.raises(PersistenceError):
            await bounded_set(BrokenStore(), "k", b"v", timeout=1.0)


class TestSupabaseStore:
    """Test suite for SupabasePersistenceStore."""

    def test_get_decodes_base64(self):
        client = FakeSupabase(rows=[{"value": base64.b64encode(b'{"a":1}').decode("ascii")}])
        store = SupabasePersistenceStore(client, table="adapt_kv")

        assert store.get("session:1") == b'{"a":1}'
        assert client.tables == ["adapt_kv"]
        assert client.filters == [("key", "session:1")]

    def test_get_missing_row(self):
        assert SupabasePersistenceStore(FakeSupabase(rows=[])).get("session:1") is None

    def test_get_undecodable_value_is_absent(self):
        client = FakeSupabase(rows=[{"value": "***not base64***"}])
        assert SupabasePersistenceStore(client).get("session:1") is None

    def test_set_upserts_on_key(self):
        client = FakeSupabase()
        SupabasePersistenceStore(client).set("user:u1", b"data")

        row, on_conflict = client.upserts[0]
        assert on_conflict == "key"
        assert row["key"] == "user:u1"
        assert base64.b64decode(row["value"]) == b"data"

    def test_errors_raise_persistence_error(self):
        store = SupabasePersistenceStore(FakeSupabase(fail=True))

        with pytest.raises(PersistenceError):
            store.get("session:1")
        with pytest.raises(PersistenceError):
            store.set("session:1", b"x")

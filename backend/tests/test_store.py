"""Versioned document store tests: in-memory and SQLite-backed."""
import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from store import InMemoryDocumentStore, SqlDocumentStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryDocumentStore()
    return SqlDocumentStore(f"sqlite:///{tmp_path / 'rooms.db'}")


# ---------------------------------------------------------------------------
# Insert / Fetch
# ---------------------------------------------------------------------------

class TestInsertFetch:
    @pytest.mark.asyncio
    async def test_fetch_unknown_key(self, store):
        assert await store.fetch("NOPE1") is None

    @pytest.mark.asyncio
    async def test_insert_then_fetch(self, store):
        version = await store.insert("ABCDE", {"code": "ABCDE", "phase": "HUB"})
        assert version
        stored = await store.fetch("ABCDE")
        assert stored.document["phase"] == "HUB"
        assert stored.version == version

    @pytest.mark.asyncio
    async def test_insert_existing_key_is_rejected(self, store):
        await store.insert("ABCDE", {"n": 1})
        assert await store.insert("ABCDE", {"n": 2}) is None
        stored = await store.fetch("ABCDE")
        assert stored.document["n"] == 1


# ---------------------------------------------------------------------------
# Conditional update
# ---------------------------------------------------------------------------

class TestConditionalUpdate:
    @pytest.mark.asyncio
    async def test_update_with_current_version(self, store):
        v1 = await store.insert("ABCDE", {"n": 1})
        v2 = await store.conditional_update("ABCDE", v1, {"n": 2})
        assert v2 and v2 != v1
        stored = await store.fetch("ABCDE")
        assert stored.document["n"] == 2
        assert stored.version == v2

    @pytest.mark.asyncio
    async def test_same_version_commits_only_once(self, store):
        v1 = await store.insert("ABCDE", {"n": 1})
        first = await store.conditional_update("ABCDE", v1, {"n": 2})
        second = await store.conditional_update("ABCDE", v1, {"n": 3})
        assert first is not None
        assert second is None
        assert (await store.fetch("ABCDE")).document["n"] == 2

    @pytest.mark.asyncio
    async def test_update_unknown_key(self, store):
        assert await store.conditional_update("NOPE1", "v", {"n": 1}) is None


class TestMemoryIsolation:
    @pytest.mark.asyncio
    async def test_fetched_document_is_a_copy(self):
        store = InMemoryDocumentStore()
        await store.insert("ABCDE", {"players": []})
        stored = await store.fetch("ABCDE")
        stored.document["players"].append("intruder")
        assert (await store.fetch("ABCDE")).document["players"] == []

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemoryDocumentStore()
        await store.insert("ABCDE", {})
        assert "ABCDE" in store
        store.clear()
        assert "ABCDE" not in store

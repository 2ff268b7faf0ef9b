"""Tests for the SQL-backed record store and its live subscriptions."""

import asyncio

import pytest

from taleweave.db.record_store import VERSION_KEY, Where, get_record_store
from taleweave.errors import WriteConflictError


class TestWhere:
    def test_equality(self):
        assert Where("isPublic", "==", True).matches({"isPublic": True})
        assert not Where("isPublic", "==", True).matches({})

    def test_array_contains(self):
        where = Where("memberIds", "array-contains", "bob")
        assert where.matches({"memberIds": ["alice", "bob"]})
        assert not where.matches({"memberIds": "bob"})

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            Where("x", ">", 1).matches({"x": 2})


class TestWrites:
    def test_merge_creates_then_merges(self, store):
        async def run():
            await store.set_merge("stories", "s1", {"name": "One", "plot": "p"})
            await store.set_merge("stories", "s1", {"plot": "q"})
            return await store.get("stories", "s1")

        doc = asyncio.run(run())
        assert doc["name"] == "One"
        assert doc["plot"] == "q"
        assert doc["id"] == "s1"

    def test_versions_increase_across_documents(self, store):
        async def run():
            v1 = await store.set_merge("stories", "a", {"n": 1})
            v2 = await store.set_merge("other", "b", {"n": 1})
            v3 = await store.set_merge("stories", "a", {"n": 2})
            return v1, v2, v3, (await store.get("stories", "a"))[VERSION_KEY]

        v1, v2, v3, stored = asyncio.run(run())
        assert v1 < v2 < v3
        assert stored == v3

    def test_reserved_keys_not_stored_as_data(self, store):
        async def run():
            await store.set_merge("stories", "s1", {"id": "spoof", VERSION_KEY: 999, "n": 1})
            return await store.get("stories", "s1")

        doc = asyncio.run(run())
        assert doc["id"] == "s1"
        assert doc[VERSION_KEY] != 999

    def test_expect_guards_write(self, store):
        async def run():
            await store.set_merge("stories", "s1", {"turnCharacterId": "a"})
            await store.set_merge("stories", "s1", {"turnCharacterId": "b"}, expect={"turnCharacterId": "a"})
            with pytest.raises(WriteConflictError) as exc:
                await store.set_merge("stories", "s1", {"turnCharacterId": "c"}, expect={"turnCharacterId": "a"})
            return exc.value, await store.get("stories", "s1")

        error, doc = asyncio.run(run())
        assert error.field == "turnCharacterId"
        assert error.actual == "b"
        assert doc["turnCharacterId"] == "b"

    def test_add_and_delete(self, store):
        async def run():
            doc_id = await store.add("stories", {"n": 1})
            deleted = await store.delete("stories", doc_id)
            missing = await store.delete("stories", doc_id)
            return deleted, missing, await store.get("stories", doc_id)

        assert asyncio.run(run()) == (True, False, None)

    def test_query_filters(self, store):
        async def run():
            await store.set_merge("stories", "pub", {"isPublic": True})
            await store.set_merge("stories", "priv", {"isPublic": False})
            return await store.query("stories", [Where("isPublic", "==", True)])

        assert [d["id"] for d in asyncio.run(run())] == ["pub"]


class TestSubscriptions:
    def test_initial_snapshot_then_updates(self, store):
        async def run():
            await store.set_merge("stories", "s1", {"isPublic": True})
            feed = await store.subscribe("stories", [Where("isPublic", "==", True)])
            first = await anext(feed)
            await store.set_merge("stories", "s2", {"isPublic": True})
            second = await anext(feed)
            feed.close()
            rest = [snapshot async for snapshot in feed]
            return first, second, rest

        first, second, rest = asyncio.run(run())
        assert [d["id"] for d in first] == ["s1"]
        assert [d["id"] for d in second] == ["s1", "s2"]
        assert rest == []

    def test_other_collections_do_not_publish(self, store):
        async def run():
            feed = await store.subscribe("users/alice/stories")
            await anext(feed)
            await store.set_merge("stories", "s1", {"n": 1})
            return feed._queue.empty()

        assert asyncio.run(run()) is True


def test_singleton():
    assert get_record_store() is get_record_store()

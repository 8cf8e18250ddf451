"""
Tests for ttl_store.py

Expiry is driven by the injected clock, so nothing here sleeps.
"""
import pytest

from errors import StoreError, StoreErrorKind
from ttl_store import TTLStore


class TestGetSet:
    """Reads and writes within and past the deadline."""

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, ttl_store):
        assert await ttl_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_value_visible_before_deadline(self, ttl_store, clock):
        await ttl_store.set("k", "v", 60)
        clock.advance(59)
        assert await ttl_store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_value_absent_at_deadline_and_record_removed(self, ttl_store, doc_store, clock):
        await ttl_store.set("k", "v", 60)
        clock.advance(60)

        assert await ttl_store.get("k") is None
        assert doc_store.raw("k") is None

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, ttl_store, doc_store, clock):
        await ttl_store.set("k", "v")
        clock.advance(10 * 365 * 24 * 3600)

        assert await ttl_store.get("k") == "v"
        assert "expires_at" not in doc_store.raw("k")

    @pytest.mark.asyncio
    async def test_stored_document_carries_absolute_deadline(self, ttl_store, doc_store, clock):
        await ttl_store.set("k", "v", 30)
        assert doc_store.raw("k") == {"value": "v", "expires_at": clock.now + 30}

    @pytest.mark.asyncio
    async def test_first_set_creates_then_later_set_updates(self, ttl_store, doc_store):
        await ttl_store.set("k", "one")
        await ttl_store.set("k", "two")

        ops = [op for op, key in doc_store.calls if key == "k"]
        assert ops == ["update", "create", "update"]
        assert await ttl_store.get("k") == "two"

    @pytest.mark.asyncio
    async def test_set_refreshes_deadline(self, ttl_store, clock):
        await ttl_store.set("k", "v", 10)
        clock.advance(8)
        await ttl_store.set("k", "v", 10)
        clock.advance(8)
        assert await ttl_store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_overwrite_without_ttl_drops_old_deadline(self, ttl_store, clock):
        await ttl_store.set("k", "v", 10)
        await ttl_store.set("k", "v")
        clock.advance(100)
        assert await ttl_store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_failed_lazy_delete_is_not_surfaced(self, ttl_store, doc_store, clock):
        await ttl_store.set("k", "v", 1)
        clock.advance(5)
        doc_store.fail_deletes = True

        assert await ttl_store.get("k") is None
        assert doc_store.raw("k") is not None

    @pytest.mark.asyncio
    async def test_transient_read_error_propagates(self, ttl_store, doc_store):
        async def broken_get(collection, key):
            raise StoreError(StoreErrorKind.TRANSIENT, "timeout")

        doc_store.get_item = broken_get
        with pytest.raises(StoreError) as exc:
            await ttl_store.get("k")
        assert exc.value.kind is StoreErrorKind.TRANSIENT


class TestCreateRace:
    """Two first writers for the same key."""

    @pytest.mark.asyncio
    async def test_conflict_on_create_falls_back_to_update(self, ttl_store, doc_store):
        real_create = doc_store.create_item

        async def racing_create(collection, key, data):
            # another writer slips in between our update and create
            collection[key] = {"value": "theirs"}
            await real_create(collection, key, data)

        doc_store.create_item = racing_create
        await ttl_store.set("k", "ours")

        assert doc_store.raw("k") == {"value": "ours"}

    @pytest.mark.asyncio
    async def test_other_create_errors_propagate(self, ttl_store, doc_store):
        async def broken_create(collection, key, data):
            raise StoreError(StoreErrorKind.OTHER, "bad document")

        doc_store.create_item = broken_create
        with pytest.raises(StoreError):
            await ttl_store.set("k", "v")


class TestDelete:
    """Deletes are idempotent."""

    @pytest.mark.asyncio
    async def test_delete_twice_never_raises(self, ttl_store):
        await ttl_store.set("k", "v")
        await ttl_store.delete("k")
        await ttl_store.delete("k")
        assert await ttl_store.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_unknown_key(self, ttl_store):
        await ttl_store.delete("never-existed")

    @pytest.mark.asyncio
    async def test_delete_transient_error_propagates(self, ttl_store, doc_store):
        await ttl_store.set("k", "v")
        doc_store.fail_deletes = True
        with pytest.raises(StoreError):
            await ttl_store.delete("k")


class TestProvisioning:
    """The backing collection is resolved lazily, once."""

    @pytest.mark.asyncio
    async def test_collection_resolved_once(self, doc_store, clock):
        store = TTLStore(doc_store, "aivr", "aivr_storage", clock=clock)
        await store.get("a")
        await store.set("b", "1")
        await store.delete("b")

        assert doc_store.calls.count(("container", "aivr")) == 1
        assert doc_store.calls.count(("collection", "aivr_storage")) == 1

    @pytest.mark.asyncio
    async def test_nothing_resolved_before_first_use(self, doc_store, clock):
        TTLStore(doc_store, "aivr", "aivr_storage", clock=clock)
        assert doc_store.calls == []

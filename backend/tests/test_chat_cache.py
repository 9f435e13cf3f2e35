"""Tests for the capped room cache, offline queues and last-seen keys."""
import pytest

from app.chat.cache import RoomMessageCache
from app.chat.offline import LastSeenTracker, OfflineQueue
from app.kv import InMemoryKeyValueStore


def snap(i, **extra):
    return {"id": f"{i:032x}", "content": f"m{i}", **extra}


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def cache(kv):
    return RoomMessageCache(kv, capacity=100)


class TestRoomMessageCache:

    @pytest.mark.asyncio
    async def test_unknown_room_is_empty(self, cache):
        assert await cache.read_all("nowhere") == []

    @pytest.mark.asyncio
    async def test_append_keeps_order(self, cache):
        await cache.append("global", [snap(1), snap(2)])
        await cache.append("global", [snap(3)])
        assert [e["content"] for e in await cache.read_all("global")] == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_append_trims_to_capacity(self, cache):
        for i in range(1, 106):
            await cache.append("global", [snap(i)])

        entries = await cache.read_all("global")
        assert len(entries) == 100
        assert entries[0]["content"] == "m6"
        assert entries[-1]["content"] == "m105"

    @pytest.mark.asyncio
    async def test_rooms_are_independent(self, cache):
        await cache.append("a", [snap(1)])
        await cache.append("b", [snap(2)])
        assert [e["content"] for e in await cache.read_all("a")] == ["m1"]

    @pytest.mark.asyncio
    async def test_key_uses_prefix(self, kv):
        cache = RoomMessageCache(kv, prefix="chat")
        await cache.append("global", [snap(1)])
        assert len(await kv.list_range("chat:global")) == 1

    @pytest.mark.asyncio
    async def test_backfill_only_fills_empty_room(self, cache):
        assert await cache.backfill("global", [snap(1), snap(2)]) is True
        assert await cache.backfill("global", [snap(9)]) is False
        assert [e["content"] for e in await cache.read_all("global")] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_backfill_respects_capacity(self, kv):
        cache = RoomMessageCache(kv, capacity=3)
        await cache.backfill("global", [snap(i) for i in range(1, 6)])
        assert [e["content"] for e in await cache.read_all("global")] == ["m3", "m4", "m5"]

    @pytest.mark.asyncio
    async def test_update_at_merges_fields(self, cache):
        await cache.append("global", [snap(1), snap(2)])

        assert await cache.update_at("global", snap(2)["id"], {"deleted": True}) is True

        entries = await cache.read_all("global")
        assert entries[1] == {**snap(2), "deleted": True}
        assert "deleted" not in entries[0]

    @pytest.mark.asyncio
    async def test_update_at_missing_message(self, cache):
        await cache.append("global", [snap(1)])
        assert await cache.update_at("global", "f" * 32, {"deleted": True}) is False

    @pytest.mark.asyncio
    async def test_unreadable_entries_are_skipped(self, kv, cache):
        await cache.append("global", [snap(1)])
        await kv.list_push(cache.key("global"), "{not json")
        await cache.append("global", [snap(2)])

        assert [e["content"] for e in await cache.read_all("global")] == ["m1", "m2"]
        assert await cache.update_at("global", snap(2)["id"], {"edited": True}) is True


class TestOfflineQueue:

    @pytest.mark.asyncio
    async def test_drain_returns_in_order_and_clears(self, kv):
        queue = OfflineQueue(kv)
        for i in range(3):
            assert await queue.enqueue("bob", snap(i)) == i + 1

        drained = await queue.drain_and_clear("bob")
        assert [e["content"] for e in drained] == ["m0", "m1", "m2"]
        assert await queue.drain_and_clear("bob") == []
        assert len(await kv.list_range(queue.key("bob"))) == 0

    @pytest.mark.asyncio
    async def test_queues_are_per_user(self, kv):
        queue = OfflineQueue(kv)
        await queue.enqueue("bob", snap(1))
        await queue.enqueue("carol", snap(2))

        assert len(await kv.list_range(queue.key("bob"))) == 1
        assert [e["content"] for e in await queue.drain_and_clear("carol")] == ["m2"]
        assert len(await kv.list_range(queue.key("bob"))) == 1

    @pytest.mark.asyncio
    async def test_unreadable_entry_skipped(self, kv):
        queue = OfflineQueue(kv)
        await queue.enqueue("bob", snap(1))
        await kv.list_push(queue.key("bob"), "garbage")
        await queue.enqueue("bob", snap(2))

        assert [e["content"] for e in await queue.drain_and_clear("bob")] == ["m1", "m2"]


class TestLastSeenTracker:

    @pytest.mark.asyncio
    async def test_record_and_get(self, kv):
        tracker = LastSeenTracker(kv)
        assert await tracker.get("bob") is None

        await tracker.record("bob", "a" * 32)
        await tracker.record("bob", "b" * 32)

        assert await tracker.get("bob") == "b" * 32
        assert await kv.get("lastSeen:bob") == "b" * 32

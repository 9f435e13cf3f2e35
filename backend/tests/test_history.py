"""Tests for history reads: cache-first latest page and cursor pagination."""
from datetime import datetime, timedelta

import pytest

from app.chat.cache import RoomMessageCache
from app.chat.errors import CacheUnavailableError, InvalidCursorError
from app.chat.history import HistoryService, parse_timestamp_cursor
from app.chat.store import MessageStore
from app.kv import InMemoryKeyValueStore


@pytest.fixture
def store():
    store = MessageStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def cache():
    return RoomMessageCache(InMemoryKeyValueStore(), capacity=100)


@pytest.fixture
def history(store, cache):
    return HistoryService(store, cache, latest_limit=100, default_page_size=50, max_page_size=100)


def seed(store, count, room="global"):
    return [store.create(room, "alice", f"msg {i}") for i in range(1, count + 1)]


class BrokenKeyValueStore(InMemoryKeyValueStore):
    async def list_range(self, key):
        raise CacheUnavailableError("down")

    async def fill_if_empty(self, key, values, max_len):
        raise CacheUnavailableError("down")


class TestParseTimestampCursor:

    def test_iso_with_z(self):
        assert parse_timestamp_cursor("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, 0, 0)

    def test_iso_with_offset_is_converted_to_utc(self):
        assert parse_timestamp_cursor("2024-03-01T14:00:00+02:00") == datetime(2024, 3, 1, 12, 0, 0)

    def test_naive_iso_is_taken_as_utc(self):
        assert parse_timestamp_cursor("2024-03-01T12:00:00") == datetime(2024, 3, 1, 12, 0, 0)

    def test_epoch_millis(self):
        assert parse_timestamp_cursor("1709294400000") == datetime(2024, 3, 1, 12, 0, 0)

    def test_four_digit_year(self):
        assert parse_timestamp_cursor("2024") == datetime(2024, 1, 1)

    @pytest.mark.parametrize("value", ["yesterday", "2024-13-45", "12:00", "not-a-date"])
    def test_invalid(self, value):
        with pytest.raises(InvalidCursorError) as exc_info:
            parse_timestamp_cursor(value)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid before parameter"


class TestLatestPage:

    @pytest.mark.asyncio
    async def test_empty_room(self, history):
        assert await history.get_history("global") == []
        assert history.background.pending == 0

    @pytest.mark.asyncio
    async def test_cold_cache_reads_log_and_backfills(self, history, store, cache):
        seed(store, 5)

        page = await history.get_history("global")
        assert [m["content"] for m in page] == [f"msg {i}" for i in range(1, 6)]

        await history.background.wait()
        assert [m["content"] for m in await cache.read_all("global")] == [m["content"] for m in page]

    @pytest.mark.asyncio
    async def test_cold_cache_caps_at_latest_limit(self, history, store):
        seed(store, 120)

        page = await history.get_history("global")
        assert len(page) == 100
        assert page[0]["content"] == "msg 21"
        assert page[-1]["content"] == "msg 120"

    @pytest.mark.asyncio
    async def test_warm_cache_is_returned_as_is(self, history, store, cache):
        seed(store, 3)
        await cache.append("global", [{"id": "c" * 32, "content": "cached only"}])

        page = await history.get_history("global")
        assert page == [{"id": "c" * 32, "content": "cached only"}]

    @pytest.mark.asyncio
    async def test_limit_does_not_shrink_latest_page(self, history, store):
        seed(store, 30)
        assert len(await history.get_history("global", limit=5)) == 30

    @pytest.mark.asyncio
    async def test_backfill_does_not_clobber_live_append(self, history, store, cache):
        seed(store, 3)
        page = await history.get_history("global")

        # A live send lands before the detached refill runs.
        await cache.append("global", [{"id": "d" * 32, "content": "live"}])
        await history.background.wait()

        assert [m["content"] for m in await cache.read_all("global")] == ["live"]
        assert len(page) == 3

    @pytest.mark.asyncio
    async def test_backfill_picks_up_changes_after_cold_read(self, history, store, cache):
        messages = seed(store, 3)
        page = await history.get_history("global")

        store.mark_deleted(messages[0].id, "alice")
        store.edit(messages[1].id, "msg 2 (edited)")
        await history.background.wait()

        cached = await cache.read_all("global")
        assert [m["deleted"] for m in cached] == [True, False, False]
        assert cached[1]["content"] == "msg 2 (edited)"
        assert page[0]["deleted"] is False

    @pytest.mark.asyncio
    async def test_cache_outage_falls_back_to_log(self, store):
        history = HistoryService(store, RoomMessageCache(BrokenKeyValueStore()))
        seed(store, 2)

        page = await history.get_history("global")
        assert [m["content"] for m in page] == ["msg 1", "msg 2"]

        # The failed refill is logged by the task set, not raised.
        await history.background.wait()


class TestCursorPages:

    @pytest.mark.asyncio
    async def test_before_message_id(self, history, store):
        messages = seed(store, 105)

        page = await history.get_history("global", before=messages[49].id, limit=10)
        assert [m["content"] for m in page] == [f"msg {i}" for i in range(40, 50)]

    @pytest.mark.asyncio
    async def test_before_message_id_any_case(self, history, store):
        messages = seed(store, 5)

        page = await history.get_history("global", before=messages[2].id.upper())
        assert [m["content"] for m in page] == ["msg 1", "msg 2"]

    @pytest.mark.asyncio
    async def test_before_uses_default_page_size(self, history, store):
        messages = seed(store, 105)

        page = await history.get_history("global", before=messages[-1].id)
        assert len(page) == 50
        assert page[-1]["content"] == "msg 104"

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, store, cache):
        history = HistoryService(store, cache, max_page_size=20)
        messages = seed(store, 50)

        page = await history.get_history("global", before=messages[-1].id, limit=500)
        assert len(page) == 20

    @pytest.mark.asyncio
    async def test_before_first_message_is_empty(self, history, store):
        messages = seed(store, 3)
        assert await history.get_history("global", before=messages[0].id) == []

    @pytest.mark.asyncio
    async def test_unknown_message_id_is_empty(self, history, store):
        seed(store, 3)
        assert await history.get_history("global", before="0123456789abcdef0123456789abcdef") == []

    @pytest.mark.asyncio
    async def test_before_iso_timestamp(self, history, store):
        messages = seed(store, 5)
        cursor = (messages[2].createdAt).isoformat() + "Z"

        page = await history.get_history("global", before=cursor)
        assert [m["content"] for m in page] == ["msg 1", "msg 2"]

    @pytest.mark.asyncio
    async def test_before_epoch_millis_in_future(self, history, store):
        seed(store, 3)
        future = datetime(2100, 1, 1)
        millis = str(int((future - datetime(1970, 1, 1)) / timedelta(milliseconds=1)))

        page = await history.get_history("global", before=millis, limit=2)
        assert [m["content"] for m in page] == ["msg 2", "msg 3"]

    @pytest.mark.asyncio
    async def test_before_year(self, history, store):
        seed(store, 3)

        assert await history.get_history("global", before="2000") == []
        page = await history.get_history("global", before="2100", limit=2)
        assert [m["content"] for m in page] == ["msg 2", "msg 3"]

    @pytest.mark.asyncio
    async def test_cursor_pages_skip_cache(self, history, store, cache):
        messages = seed(store, 3)
        await cache.append("global", [{"id": "c" * 32, "content": "cached only"}])

        page = await history.get_history("global", before=messages[-1].id)
        assert [m["content"] for m in page] == ["msg 1", "msg 2"]

    @pytest.mark.asyncio
    async def test_invalid_cursor(self, history):
        with pytest.raises(InvalidCursorError):
            await history.get_history("global", before="not-a-cursor")

    @pytest.mark.asyncio
    async def test_cursor_scoped_to_room(self, history, store):
        seed(store, 3, room="other")
        messages = seed(store, 2)

        page = await history.get_history("global", before=messages[-1].id)
        assert [m["content"] for m in page] == ["msg 1"]

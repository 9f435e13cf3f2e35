"""Unit tests for the DuckDB message log."""
from datetime import timedelta

import pytest

from app.chat.errors import StoreUnavailableError
from app.chat.schemas import MessageStatus, SenderProfile
from app.chat.store import MessageStore


@pytest.fixture
def store():
    store = MessageStore(db_path=":memory:")
    yield store
    store.close()


class TestCreate:

    def test_create_and_get(self, store):
        sender = SenderProfile(id="alice", username="alice", fullname="Alice A")
        message = store.create("global", "alice", "hello", sender=sender)

        fetched = store.get(message.id)
        assert fetched is not None
        assert fetched.id == message.id
        assert len(fetched.id) == 32
        assert fetched.roomId == "global"
        assert fetched.senderId == "alice"
        assert fetched.sender.username == "alice"
        assert fetched.content == "hello"
        assert fetched.status == MessageStatus.SENT
        assert fetched.deleted is False
        assert fetched.createdAt == message.createdAt

    def test_create_without_profile(self, store):
        message = store.create("global", "ghost", "boo")
        assert store.get(message.id).sender is None

    def test_get_unknown_returns_none(self, store):
        assert store.get("0" * 32) is None

    def test_timestamps_strictly_increase(self, store):
        messages = [store.create("global", "alice", f"m{i}") for i in range(50)]
        stamps = [m.createdAt for m in messages]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_snapshot_is_json_ready(self, store):
        snapshot = store.create("global", "alice", "hi").snapshot()
        assert isinstance(snapshot["createdAt"], str)
        assert snapshot["status"] == "sent"
        assert snapshot["editHistory"] == []


class TestReads:

    def test_latest_returns_newest_oldest_first(self, store):
        for i in range(10):
            store.create("global", "alice", f"m{i}")

        latest = store.latest("global", 3)
        assert [m.content for m in latest] == ["m7", "m8", "m9"]

    def test_latest_is_scoped_to_room(self, store):
        store.create("global", "alice", "in global")
        store.create("other", "alice", "in other")

        assert [m.content for m in store.latest("other", 10)] == ["in other"]
        assert store.latest("missing", 10) == []

    def test_before_is_strictly_older(self, store):
        messages = [store.create("global", "alice", f"m{i}") for i in range(10)]

        page = store.before("global", messages[5].createdAt, 3)
        assert [m.content for m in page] == ["m2", "m3", "m4"]

    def test_before_first_message_is_empty(self, store):
        first = store.create("global", "alice", "first")
        store.create("global", "alice", "second")
        assert store.before("global", first.createdAt, 10) == []

    def test_before_far_future_returns_newest(self, store):
        for i in range(5):
            store.create("global", "alice", f"m{i}")
        future = store.latest("global", 1)[0].createdAt + timedelta(days=1)
        assert [m.content for m in store.before("global", future, 2)] == ["m3", "m4"]


class TestMutations:

    def test_mark_deleted_keeps_content(self, store):
        message = store.create("global", "alice", "oops")
        deleted = store.mark_deleted(message.id, "alice")

        assert deleted.deleted is True
        assert deleted.deletedBy == "alice"
        assert deleted.content == "oops"
        assert deleted.updatedAt >= message.updatedAt
        assert len(store.latest("global", 10)) == 1

    def test_edit_keeps_history(self, store):
        message = store.create("global", "alice", "v1")
        store.edit(message.id, "v2")
        edited = store.edit(message.id, "v3")

        assert edited.content == "v3"
        assert edited.edited is True
        assert [r.text for r in edited.editHistory] == ["v1", "v2"]

    def test_edit_unknown_returns_none(self, store):
        assert store.edit("f" * 32, "text") is None

    def test_status_only_moves_forward(self, store):
        message = store.create("dm:a:b", "a", "hi", recipient_id="b")

        assert store.advance_status(message.id, MessageStatus.READ).status == MessageStatus.READ
        assert store.advance_status(message.id, MessageStatus.DELIVERED).status == MessageStatus.READ

    def test_closed_store_raises(self, store):
        store.close()
        with pytest.raises(StoreUnavailableError):
            store.get("0" * 32)

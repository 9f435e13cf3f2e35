"""Tests for user profiles: store and HTTP endpoints."""
import pytest

from app.chat.errors import UsernameTakenError
from app.users.service import UserStore


@pytest.fixture
def users():
    store = UserStore(db_path=":memory:")
    yield store
    store.close()


class TestUserStore:

    def test_create_and_get(self, users):
        created = users.create_user("alice", "Alice Smith")

        fetched = users.get_user(created.id)
        assert fetched.username == "alice"
        assert fetched.fullname == "Alice Smith"
        assert fetched.badges == []
        assert set(fetched.counters.values()) == {0}

    def test_duplicate_username(self, users):
        users.create_user("alice", "Alice Smith")
        with pytest.raises(UsernameTakenError) as exc_info:
            users.create_user("alice", "Another Alice")
        assert exc_info.value.status_code == 409

    def test_public_profile(self, users):
        created = users.create_user("alice", "Alice Smith")
        profile = users.get_public_profile(created.id)
        assert profile.model_dump() == {"id": created.id, "username": "alice", "fullname": "Alice Smith"}
        assert users.get_public_profile("nobody") is None

    def test_award_badges_skips_held(self, users):
        created = users.create_user("alice", "Alice Smith")
        assert users.award_badges(created.id, ["STREAK_10"]) == ["STREAK_10"]
        assert users.award_badges(created.id, ["STREAK_10", "STREAK_50"]) == ["STREAK_50"]
        assert users.get_badges(created.id) == ["STREAK_10", "STREAK_50"]


class TestUsersApi:

    def test_create_user(self, api_client):
        response = api_client.post("/users", json={"username": "alice", "fullname": "Alice Smith"})
        assert response.status_code == 201
        body = response.json()
        assert body["username"] == "alice"
        assert len(body["id"]) == 32

        fetched = api_client.get(f"/users/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["counters"]["communityEngagementStreak"] == 0

    def test_duplicate_username(self, api_client):
        payload = {"username": "alice", "fullname": "Alice Smith"}
        api_client.post("/users", json=payload)
        response = api_client.post("/users", json=payload)
        assert response.status_code == 409

    @pytest.mark.parametrize("payload", [
        {"username": "al", "fullname": "Alice Smith"},
        {"username": "9alice", "fullname": "Alice Smith"},
        {"username": "alice", "fullname": ""},
        {"username": "alice"},
    ])
    def test_invalid_payload(self, api_client, payload):
        assert api_client.post("/users", json=payload).status_code == 422

    def test_unknown_user(self, api_client):
        response = api_client.get("/users/nobody")
        assert response.status_code == 404
        assert response.json() == {"detail": "User not found"}

    def test_sender_profile_in_chat_history(self, api_client):
        user = api_client.post("/users", json={"username": "alice", "fullname": "Alice Smith"}).json()

        with api_client.websocket_connect(f"/ws/chat?userId={user['id']}") as ws:
            ws.send_json({"event": "chat message", "data": {"content": "hello"}})
            ws.receive_json()

        message = api_client.get("/chat").json()[0]
        assert message["sender"] == {"id": user["id"], "username": "alice", "fullname": "Alice Smith"}

# Redis mirror of pipeline records
from datetime import datetime, timezone

import redis

import redis_state


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttl = {}

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttl[key] = ex

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        self.data.pop(key, None)

    def scan_iter(self, match=None):
        prefix = match.rstrip("*")
        return [key for key in list(self.data) if key.startswith(prefix)]


class BrokenRedis(FakeRedis):
    def set(self, key, value, ex=None):
        raise redis.ConnectionError("down")


def test_serialize_restores_created_at():
    created = datetime(2026, 10, 18, 14, 5, tzinfo=timezone.utc)
    data = redis_state.deserialize_record(redis_state.serialize_record({"message_id": 5, "created_at": created}))
    assert data == {"message_id": 5, "created_at": created}


def test_is_enabled(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    assert not redis_state.is_enabled()
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    assert redis_state.is_enabled()


def test_save_load_delete(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_state, "get_redis_client", lambda: fake)

    assert redis_state.redis_save_record("approval", "1001", {"message_id": 1001, "quantity": 2})
    assert redis_state.redis_save_record("poll", "p-1", {"poll_id": "p-1"})
    assert fake.ttl["orderbot:approval:1001"] == redis_state.RECORD_TTL

    assert redis_state.redis_load_records("approval") == {"1001": {"message_id": 1001, "quantity": 2}}

    redis_state.redis_delete_record("approval", "1001")
    assert redis_state.redis_load_records("approval") == {}
    assert list(redis_state.redis_load_records("poll")) == ["p-1"]


def test_without_client_nothing_happens(monkeypatch):
    monkeypatch.setattr(redis_state, "get_redis_client", lambda: None)
    assert redis_state.redis_save_record("approval", "1", {}) is False
    assert redis_state.redis_load_records("approval") == {}


def test_redis_errors_are_logged_not_raised(monkeypatch):
    monkeypatch.setattr(redis_state, "get_redis_client", lambda: BrokenRedis())
    assert redis_state.redis_save_record("approval", "1", {"message_id": 1}) is False

"""
Tests for the Redis-backed stores: checkout idempotency and download token use.
"""
import json
from unittest.mock import MagicMock

import pytest
import redis

from src.services.idempotency import IdempotencyService
from src.services.token_store import TokenStore

USER_ID = "user-1"


@pytest.fixture
def service(fake_redis):
    return IdempotencyService(fake_redis)


def broken_redis():
    client = MagicMock()
    error = redis.ConnectionError("connection refused")
    client.get.side_effect = error
    client.setex.side_effect = error
    client.set.side_effect = error
    client.ping.side_effect = error
    return client


class TestIdempotencyService:

    def test_key_format(self):
        key = IdempotencyService.generate_idempotency_key(USER_ID, "abc")
        assert key == "idem:user-1:abc"

    def test_key_parts_are_truncated(self):
        key = IdempotencyService.generate_idempotency_key("u" * 100, "k" * 100)
        assert key == f"idem:{'u' * 64}:{'k' * 64}"

    def test_first_request_proceeds(self, service):
        assert service.process_request_idempotency(USER_ID, "hash-1", "key-1") == (True, None, None)

    def test_no_key_proceeds(self, service):
        assert service.process_request_idempotency(USER_ID, "hash-1", None) == (True, None, None)

    def test_replay_same_body(self, service, fake_redis):
        key = service.generate_idempotency_key(USER_ID, "key-1")
        service.store_response(key, "hash-1", {"paymentIntentId": "pi_1"}, 200)

        proceed, body, status = service.process_request_idempotency(USER_ID, "hash-1", "key-1")
        assert proceed is False
        assert body == {"paymentIntentId": "pi_1"}
        assert status == 200
        assert fake_redis.ttls[key] == 24 * 3600

    def test_conflict_different_body(self, service):
        key = service.generate_idempotency_key(USER_ID, "key-1")
        service.store_response(key, "hash-1", {"paymentIntentId": "pi_1"})

        proceed, body, status = service.process_request_idempotency(USER_ID, "hash-2", "key-1")
        assert proceed is False
        assert status == 409
        assert body["error"] == "idempotency_conflict"

    def test_keys_are_per_user(self, service):
        key = service.generate_idempotency_key(USER_ID, "key-1")
        service.store_response(key, "hash-1", {"ok": True})
        assert service.process_request_idempotency("user-2", "hash-1", "key-1")[0] is True

    def test_corrupt_record_is_ignored(self, service, fake_redis):
        fake_redis.data["idem:user-1:key-1"] = "{not json"
        assert service.get_record("idem:user-1:key-1") is None

    def test_stored_record_shape(self, service, fake_redis):
        key = service.generate_idempotency_key(USER_ID, "key-1")
        service.store_response(key, "hash-1", {"ok": True}, 200)

        record = json.loads(fake_redis.data[key])
        assert record["body_hash"] == "hash-1"
        assert record["status_code"] == 200
        assert "created_at" in record

    def test_redis_down_lets_requests_through(self):
        service = IdempotencyService(broken_redis())
        assert service.process_request_idempotency(USER_ID, "hash-1", "key-1") == (True, None, None)
        assert service.store_response("idem:user-1:key-1", "hash-1", {}) is False
        assert service.health_check()["status"] == "unhealthy"

    def test_health_check(self, service):
        assert service.health_check()["status"] == "healthy"


class TestTokenStore:

    def test_single_use(self, fake_redis):
        store = TokenStore(fake_redis)
        assert store.mark_used("jti-1", 300) is True
        assert store.mark_used("jti-1", 300) is False
        assert fake_redis.ttls["dl:used:jti-1"] == 300

    def test_ttl_is_at_least_one_second(self, fake_redis):
        TokenStore(fake_redis).mark_used("jti-2", 0)
        assert fake_redis.ttls["dl:used:jti-2"] == 1

    def test_fails_open(self):
        store = TokenStore(broken_redis())
        assert store.mark_used("jti-1", 300) is True

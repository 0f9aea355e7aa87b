"""Tests for the HTTP admission middleware."""

import hashlib
from unittest.mock import MagicMock, Mock

import pytest
import redis
from fastapi import FastAPI
from fastapi.testclient import TestClient

from flowlimiter.core.store import InMemoryStore
from flowlimiter.middleware import SlidingWindowMiddleware


def make_app(store, **kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        SlidingWindowMiddleware,
        store=store,
        window_seconds=60,
        max_in_window=2,
        **kwargs,
    )

    @app.get("/ping")
    def ping():
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


class TestSlidingWindowMiddleware:
    """Requests through a FastAPI app."""

    @pytest.fixture
    def client(self):
        return TestClient(make_app(InMemoryStore()))

    def test_allows_under_limit_with_headers(self, client):
        response = client.get("/ping")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_blocks_over_limit(self, client):
        client.get("/ping")
        client.get("/ping")
        response = client.get("/ping")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_api_keys_limited_independently(self, client):
        for _ in range(2):
            client.get("/ping", headers={"Authorization": "Bearer key-one"})
        blocked = client.get("/ping", headers={"Authorization": "Bearer key-one"})
        other = client.get("/ping", headers={"Authorization": "Bearer key-two"})

        assert blocked.status_code == 429
        assert other.status_code == 200

    def test_exempt_path_not_limited(self, client):
        for _ in range(5):
            assert client.get("/health").status_code == 200

    def test_rejects_overlong_api_key(self, client):
        response = client.get("/ping", headers={"Authorization": "Bearer " + "x" * 600})
        assert response.status_code == 400


class TestStoreFailurePolicy:
    """Fail closed by default, fail open when configured."""

    @pytest.fixture
    def broken_store(self):
        store = MagicMock()
        store.ordered_set_count.side_effect = redis.ConnectionError("Connection refused")
        return store

    def test_fail_closed_by_default(self, broken_store):
        client = TestClient(make_app(broken_store, fail_open=False))
        response = client.get("/ping")
        assert response.status_code == 429
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_fail_open(self, broken_store):
        client = TestClient(make_app(broken_store, fail_open=True))
        assert client.get("/ping").status_code == 200


class TestClientKey:
    """Action identity derivation."""

    @pytest.fixture
    def middleware(self):
        return SlidingWindowMiddleware(Mock(), store=InMemoryStore())

    def test_key_from_api_key(self, middleware):
        request = Mock()
        request.headers = {"Authorization": "Bearer test_api_key_123"}
        request.client.host = "127.0.0.1"

        key = middleware._get_client_key(request)
        assert key.startswith("http:apikey:")
        assert "test_api_key_123" not in key

    def test_key_from_ip(self, middleware):
        request = Mock()
        request.headers = {}
        request.client.host = "192.168.1.1"

        expected_hash = hashlib.sha256("192.168.1.1".encode()).hexdigest()[:32]
        assert middleware._get_client_key(request) == f"http:ip:{expected_hash}"

    def test_key_from_x_forwarded_for(self, middleware):
        request = Mock()
        request.headers = {"X-Forwarded-For": "10.0.0.1, 192.168.1.1"}
        request.client.host = "127.0.0.1"

        expected_hash = hashlib.sha256("10.0.0.1".encode()).hexdigest()[:32]
        assert middleware._get_client_key(request) == f"http:ip:{expected_hash}"

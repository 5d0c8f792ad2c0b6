"""
Tests for the security middleware: bearer auth, rate tiers and body limits.

Uses a minimal FastAPI app so the database and LLM layers are never imported.
"""

import importlib
import os
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Module-level constants are read from the environment at import time,
# so every app is built after reloading the middleware module.


def _make_app(env_overrides: dict = None):
    env = {
        "AUTH_TOKEN": "",
        "MAX_JSON_BYTES": str(1024),
        "MAX_BODY_BYTES": str(2048),
        "RATE_LIMIT_EXPENSIVE": "3",
        "RATE_LIMIT_MUTATE": "5",
        "RATE_LIMIT_READ": "10",
    }
    if env_overrides:
        env.update(env_overrides)

    with patch.dict(os.environ, env, clear=False):
        import intake_backend.middleware as mw
        importlib.reload(mw)

        app = FastAPI()

        @app.get("/health")
        async def health():
            return {"status": "ok"}

        @app.get("/api/conversation/health")
        async def conversation_health():
            return {"status": "healthy"}

        @app.get("/api/profile/u1")
        async def profile():
            return {"user_id": "u1"}

        @app.post("/api/conversation/start")
        async def start():
            return {"conversation_id": "c1"}

        @app.post("/api/conversation/c1/answer")
        async def answer():
            return {"message": "ok"}

        @app.get("/api/conversation/c1/answer")
        async def answer_get():
            return {"message": "read"}

        @app.post("/api/profile/u1/reaggregate")
        async def reaggregate():
            return {"status": "ok"}

        mw.configure_security(app)
        return app


class TestAuthMiddleware:
    def test_health_bypasses_auth(self):
        client = TestClient(_make_app({"AUTH_TOKEN": "secret123"}))
        assert client.get("/health").status_code == 200
        assert client.get("/api/conversation/health").status_code == 200

    def test_auth_required_when_token_set(self):
        client = TestClient(_make_app({"AUTH_TOKEN": "secret123"}))
        resp = client.get("/api/profile/u1")
        assert resp.status_code == 401
        assert "authorization" in resp.json()["detail"].lower()
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_auth_passes_with_valid_token(self):
        client = TestClient(_make_app({"AUTH_TOKEN": "secret123"}))
        resp = client.get("/api/profile/u1", headers={"Authorization": "Bearer secret123"})
        assert resp.status_code == 200

    def test_auth_rejects_wrong_token(self):
        client = TestClient(_make_app({"AUTH_TOKEN": "secret123"}))
        resp = client.post("/api/conversation/start", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_auth_rejects_malformed_header(self):
        client = TestClient(_make_app({"AUTH_TOKEN": "secret123"}))
        resp = client.get("/api/profile/u1", headers={"Authorization": "Basic abc123"})
        assert resp.status_code == 401

    def test_no_auth_when_token_unset(self):
        client = TestClient(_make_app({"AUTH_TOKEN": ""}))
        assert client.get("/api/profile/u1").status_code == 200


class TestBodySizeLimits:
    def test_json_body_within_limit(self):
        client = TestClient(_make_app())
        resp = client.post("/api/conversation/start", json={"user_id": "u1"})
        assert resp.status_code == 200

    def test_json_body_exceeds_limit(self):
        client = TestClient(_make_app({"MAX_JSON_BYTES": "50"}))
        resp = client.post("/api/conversation/c1/answer", json={"message": "x" * 100})
        assert resp.status_code == 413
        assert "50 bytes" in resp.json()["detail"]

    def test_non_json_body_uses_larger_limit(self):
        client = TestClient(_make_app({"MAX_BODY_BYTES": "10240", "MAX_JSON_BYTES": "50"}))
        resp = client.post(
            "/api/conversation/start",
            content=b"x" * 100,
            headers={"Content-Type": "application/octet-stream"},
        )
        assert resp.status_code != 413

    def test_invalid_content_length(self):
        client = TestClient(_make_app())
        resp = client.post(
            "/api/conversation/start",
            content=b"{}",
            headers={"Content-Type": "application/json", "Content-Length": "abc"},
        )
        assert resp.status_code == 400


class TestRateLimiting:
    def test_answer_endpoint_uses_expensive_tier(self):
        client = TestClient(_make_app({"RATE_LIMIT_EXPENSIVE": "2"}))

        for _ in range(2):
            assert client.post("/api/conversation/c1/answer").status_code == 200

        resp = client.post("/api/conversation/c1/answer")
        assert resp.status_code == 429
        assert "expensive tier" in resp.json()["detail"]
        assert resp.headers["retry-after"] == "60"

    def test_reaggregate_shares_expensive_budget(self):
        client = TestClient(_make_app({"RATE_LIMIT_EXPENSIVE": "1"}))

        assert client.post("/api/conversation/c1/answer").status_code == 200
        assert client.post("/api/profile/u1/reaggregate").status_code == 429

    def test_expensive_budget_does_not_consume_mutate_tier(self):
        client = TestClient(_make_app({"RATE_LIMIT_EXPENSIVE": "1", "RATE_LIMIT_MUTATE": "1"}))

        assert client.post("/api/conversation/c1/answer").status_code == 200
        assert client.post("/api/conversation/start").status_code == 200
        resp = client.post("/api/conversation/start")
        assert resp.status_code == 429
        assert "mutate tier" in resp.json()["detail"]

    def test_reads_of_expensive_paths_count_as_reads(self):
        client = TestClient(_make_app({"RATE_LIMIT_EXPENSIVE": "1", "RATE_LIMIT_READ": "3"}))

        for _ in range(3):
            assert client.get("/api/conversation/c1/answer").status_code == 200
        assert client.get("/api/conversation/c1/answer").status_code == 429

    def test_health_not_rate_limited(self):
        client = TestClient(_make_app({"RATE_LIMIT_READ": "1"}))

        for _ in range(10):
            assert client.get("/health").status_code == 200


@pytest.mark.parametrize("path,method,expected", [
    ("/api/conversation/c1/answer", "POST", ("expensive", 3)),
    ("/api/profile/u1/reaggregate", "POST", ("expensive", 3)),
    ("/api/conversation/start", "POST", ("mutate", 5)),
    ("/api/conversation/c1/answer", "GET", ("read", 10)),
    ("/api/safety/u1", "GET", ("read", 10)),
])
def test_classify_request(path, method, expected):
    _make_app()
    import intake_backend.middleware as mw

    assert mw.classify_request(path, method) == expected

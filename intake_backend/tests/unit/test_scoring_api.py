import importlib
import sys
import types

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tests.conftest import MockRecordStore

MID_PARTNER = {
    "practice_owner": True,
    "multi_state_practice": True,
    "content_creator": True,
    "dynasty_trust_specialist": True,
    "asset_protection_specialist": True,
}


def _load_scoring_api_with_stubs(monkeypatch):
    async def dummy_get_async_session():
        yield object()

    dummy_db_session = types.ModuleType("intake_backend.db_session")
    dummy_db_session.get_async_session = dummy_get_async_session
    dummy_db_session.get_async_session_context = lambda: None

    monkeypatch.setitem(sys.modules, "intake_backend.db_session", dummy_db_session)
    sys.modules.pop("intake_backend.api_deps", None)
    sys.modules.pop("intake_backend.scoring_api", None)
    api_deps = importlib.import_module("intake_backend.api_deps")
    scoring_api = importlib.import_module("intake_backend.scoring_api")
    return api_deps, scoring_api


@pytest.fixture
def api(monkeypatch):
    api_deps, scoring_api = _load_scoring_api_with_stubs(monkeypatch)
    store = MockRecordStore()

    app = FastAPI()
    app.include_router(scoring_api.router)
    app.dependency_overrides[api_deps.get_record_store] = lambda: store
    return TestClient(app), store


def test_list_scorers(api):
    client, _ = api

    response = client.get("/api/scoring/scorers")

    assert response.status_code == 200
    scorers = {s["name"]: s for s in response.json()["scorers"]}
    assert set(scorers) == {"lead", "partner"}
    assert scorers["lead"]["max_total"] == 100
    assert scorers["lead"]["sub_scorers"]["relationship_intent"] == 25
    assert "spam_keyword" in scorers["lead"]["disqualifiers"]
    assert scorers["partner"]["disqualifiers"] == ["unsubscribed"]


def test_score_persists_and_rescoring_replaces(api):
    client, store = api

    first = client.post("/api/scoring/partner", json={"entity_id": "p-1", "record": MID_PARTNER})
    assert first.status_code == 200
    body = first.json()
    assert body["entity_id"] == "p-1"
    assert body["total"] == 13
    assert body["breakdown"] == {"business_builder": 7, "expertise": 6}
    assert body["priority"] == "medium"
    row_id = store.scored[("p-1", "partner")].id

    second = client.post(
        "/api/scoring/partner",
        json={"entity_id": "p-1", "record": {**MID_PARTNER, "email_unsubscribed": True}},
    )
    assert second.json()["disqualified_by"] == "unsubscribed"
    assert second.json()["total"] == 0
    assert list(store.scored) == [("p-1", "partner")]
    assert store.scored[("p-1", "partner")].id == row_id


def test_entity_id_falls_back_to_record_id(api):
    client, store = api

    response = client.post("/api/scoring/partner", json={"record": {"id": 42, **MID_PARTNER}})

    assert response.json()["entity_id"] == "42"
    assert ("42", "partner") in store.scored


def test_score_without_persist(api):
    client, store = api

    response = client.post(
        "/api/scoring/partner", json={"entity_id": "p-2", "record": MID_PARTNER, "persist": False}
    )

    assert response.status_code == 200
    assert response.json()["total"] == 13
    assert store.scored == {}


def test_unknown_scorer_is_404(api):
    client, _ = api

    assert client.post("/api/scoring/horoscope", json={"record": {}}).status_code == 404
    assert client.post("/api/scoring/horoscope/batch", json={"records": []}).status_code == 404


def test_batch_scores_without_persisting(api):
    client, store = api
    records = [
        {"id": "lead-1", "relationship_goal": "casual", "trigger_content": "x" * 80},
        {"id": "lead-2", "trigger_content": "too short"},
    ]

    response = client.post("/api/scoring/lead/batch", json={"records": records})

    assert response.status_code == 200
    body = response.json()
    assert body["scorer"] == "lead"
    assert body["count"] == 2
    assert [r["entity_id"] for r in body["results"]] == ["lead-1", "lead-2"]
    assert [r["disqualified_by"] for r in body["results"]] == ["casual_intent", "content_too_short"]
    assert store.scored == {}

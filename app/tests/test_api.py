import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from symptra.api import create_app
from symptra.config import Settings
from symptra.identity import Identity, InvalidToken
from symptra.schemas import TokenRecord, WearableSummary
from symptra.storage import RecordStore
from symptra.wearables import WearableUnavailable

PAYLOAD = {
    "summary": "Likely a viral upper respiratory infection.",
    "inconclusive": False,
    "possibleConditions": [
        {
            "condition": "Common cold",
            "probability": "High",
            "urgency": "Routine",
            "probableSpecialty": "General Practitioner",
            "commonSymptoms": ["Cough"],
            "nextSteps": ["Rest."],
            "otcSuggestions": ["Paracetamol"],
            "pharmacyLinks": [],
        }
    ],
}

USERS = {
    "alice-token": Identity(uid="alice", email="alice@example.com"),
    "bob-token": Identity(uid="bob", email="bob@example.com"),
    "admin-token": Identity(uid="root", email="admin@example.com"),
}


class StubVerifier:
    async def verify(self, token: str) -> Identity:
        if token not in USERS:
            raise InvalidToken("unknown token")
        return USERS[token]


class StubGemini:
    def __init__(self):
        self.calls = 0

    async def generate_json(self, model_name: str, prompt: str):
        self.calls += 1
        return json.dumps(PAYLOAD), PAYLOAD


class StubWearables:
    def __init__(self, error: Exception | None = None, *, refreshed: TokenRecord | None = None):
        self.error = error
        self.refreshed = refreshed
        self.used_tokens: list[str] = []

    async def refresh_if_expired(self, token: TokenRecord) -> TokenRecord:
        return self.refreshed or token

    async def weekly_summary(self, token: TokenRecord) -> WearableSummary:
        self.used_tokens.append(token.access_token)
        if self.error is not None:
            raise self.error
        return WearableSummary(avg_steps=8000, avg_heart_rate=None, sleep_hours=7.25)


@pytest.fixture
def harness(tmp_path: Path):
    settings = Settings(db_path=str(tmp_path / "api.db"), admin_emails=("admin@example.com",))
    store = RecordStore(settings.db_path)
    gemini = StubGemini()
    app = create_app(
        settings,
        store=store,
        gemini=gemini,
        verifier=StubVerifier(),
        wearables=StubWearables(),
    )
    with TestClient(app) as client:
        yield client, store, gemini


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_health(harness):
    client, _, _ = harness
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert "baseline_model" in body


def test_diagnose_returns_camel_case_payload_and_caches(harness):
    client, store, gemini = harness

    first = client.post("/api/diagnose", json={"symptoms": ["Fever", "Cough"]})
    second = client.post("/api/diagnose", json={"symptoms": ["Cough", "Fever"]})

    assert first.status_code == 200
    assert first.content == second.content
    body = first.json()
    assert body["possibleConditions"][0]["probableSpecialty"] == "General Practitioner"
    assert body["possibleConditions"][0]["otcSuggestions"] == ["Paracetamol"]
    assert body["disclaimer"]
    assert body["overallUrgency"] == "Routine"
    assert gemini.calls == 1
    assert store.list_audit()[0].user_uid == "anonymous"


def test_diagnose_attributes_verified_caller_and_ignores_bad_token(harness):
    client, store, _ = harness

    client.post("/api/diagnose", json={"symptoms": ["Fever"]}, headers=_auth("alice-token"))
    client.post(
        "/api/diagnose",
        json={"symptoms": ["Rash"], "additionalInfo": "itchy"},
        headers=_auth("forged-token"),
    )

    assert {record.user_uid for record in store.list_audit()} == {"alice", "anonymous"}


def test_diagnose_error_contract(harness):
    client, _, gemini = harness

    vitals = client.post("/api/diagnose", json={"symptoms": ["Fever"], "vitals": {"temperature": "46"}})
    empty = client.post("/api/diagnose", json={"symptoms": []})

    assert vitals.status_code == 422
    assert vitals.json()["code"] == "CONFLICTING_VITALS"
    assert set(vitals.json()) == {"code", "error", "suggestion"}
    assert empty.status_code == 400
    assert empty.json()["code"] == "INCONCLUSIVE_SYMPTOMS"
    assert empty.json()["suggestion"]
    assert gemini.calls == 0


def test_history_requires_identity_and_is_owner_scoped(harness):
    client, _, _ = harness
    entry = {"symptoms": ["Fever"], "summary": "s", "conditions": [], "urgency": "Routine"}

    assert client.post("/api/history", json=entry).status_code == 401
    assert client.get("/api/history", headers=_auth("forged-token")).status_code == 401

    created = client.post("/api/history", json=entry, headers=_auth("alice-token"))
    entry_id = created.json()["id"]

    listed = client.get("/api/history", headers=_auth("alice-token")).json()
    assert [row["id"] for row in listed] == [entry_id]
    assert listed[0]["symptoms"] == ["Fever"]
    assert client.get("/api/history", headers=_auth("bob-token")).json() == []

    assert client.delete(f"/api/history/{entry_id}", headers=_auth("bob-token")).status_code == 404
    assert client.delete(f"/api/history/{entry_id}", headers=_auth("alice-token")).json() == {"success": True}


def test_wearable_status_data_and_revoke(harness):
    client, store, _ = harness
    headers = _auth("alice-token")

    assert client.get("/api/wearable/status", headers=headers).json() == {"connected": False}
    assert client.get("/api/wearable/data", headers=headers).status_code == 404

    store.upsert_token(TokenRecord(user_uid="alice", access_token="a"))
    assert client.get("/api/wearable/status", headers=headers).json() == {"connected": True}
    data = client.get("/api/wearable/data", headers=headers).json()
    assert data == {"avgSteps": 8000.0, "avgHeartRate": None, "sleepHours": 7.25}

    assert client.post("/api/wearable/revoke", headers=headers).json() == {"success": True}
    assert client.get("/api/wearable/status", headers=headers).json() == {"connected": False}


def test_wearable_provider_refusal_is_bad_gateway(tmp_path: Path):
    settings = Settings(db_path=str(tmp_path / "w.db"))
    store = RecordStore(settings.db_path)
    store.upsert_token(TokenRecord(user_uid="alice", access_token="a"))
    app = create_app(
        settings,
        store=store,
        gemini=StubGemini(),
        verifier=StubVerifier(),
        wearables=StubWearables(error=WearableUnavailable("revoked")),
    )

    with TestClient(app) as client:
        response = client.get("/api/wearable/data", headers=_auth("alice-token"))

    assert response.status_code == 502


def test_admin_routes_require_admin_email(harness):
    client, _, _ = harness
    client.post("/api/diagnose", json={"symptoms": ["Fever"]}, headers=_auth("alice-token"))
    client.post("/api/diagnose", json={"symptoms": ["Fever"]}, headers=_auth("alice-token"))

    assert client.get("/api/admin/stats").status_code == 401
    assert client.get("/api/admin/stats", headers=_auth("alice-token")).status_code == 403

    stats = client.get("/api/admin/stats", headers=_auth("admin-token")).json()
    assert stats["totalRequests"] == 1
    assert stats["uniqueUsers"] == 1
    assert stats["cache"]["hits"] == 1
    assert stats["cache"]["misses"] == 1

    logs = client.get("/api/admin/audit-logs", headers=_auth("admin-token")).json()
    assert len(logs) == 1
    assert logs[0]["userUid"] == "alice"
    assert len(logs[0]["inputHash"]) == 64


@pytest.mark.parametrize(
    "body",
    [
        {"symptoms": ["Fever"], "vitals": "38.5"},
        {"symptoms": ["Fever"], "demographics": ["30"]},
    ],
)
def test_malformed_diagnose_body_uses_error_triple(harness, body):
    client, store, gemini = harness

    response = client.post("/api/diagnose", json=body)

    assert response.status_code == 422
    assert set(response.json()) == {"code", "error", "suggestion"}
    assert response.json()["code"] == "INVALID_REQUEST"
    assert "loc" not in response.text
    assert "body" not in response.text
    assert gemini.calls == 0
    assert store.list_audit() == []


def test_malformed_history_body_keeps_standard_validation_error(harness):
    client, _, _ = harness

    response = client.post("/api/history", json={"symptoms": "x", "conditions": "y"}, headers=_auth("alice-token"))

    assert response.status_code == 422
    assert "detail" in response.json()


def test_api_routes_are_rate_limited_per_client(tmp_path: Path):
    settings = Settings(db_path=str(tmp_path / "rl.db"), rate_limit_max=2, rate_limit_window_sec=60)
    gemini = StubGemini()
    app = create_app(
        settings,
        store=RecordStore(settings.db_path),
        gemini=gemini,
        verifier=StubVerifier(),
        wearables=StubWearables(),
    )

    with TestClient(app) as client:
        codes = [client.post("/api/diagnose", json={"symptoms": ["Fever"]}).status_code for _ in range(3)]
        limited = client.get("/api/history", headers=_auth("alice-token"))
        health = client.get("/health")

    assert codes == [200, 200, 429]
    assert limited.status_code == 429
    assert limited.json()["code"] == "RATE_LIMITED"
    assert limited.json()["suggestion"]
    assert health.status_code == 200
    assert gemini.calls == 1


def test_refreshed_wearable_token_is_persisted(tmp_path: Path):
    settings = Settings(db_path=str(tmp_path / "refresh.db"))
    store = RecordStore(settings.db_path)
    store.upsert_token(TokenRecord(user_uid="alice", access_token="stale", refresh_token="r", expiry_date=1))
    wearables = StubWearables(
        refreshed=TokenRecord(user_uid="alice", access_token="renewed", refresh_token="r", expiry_date=10**13)
    )
    app = create_app(settings, store=store, gemini=StubGemini(), verifier=StubVerifier(), wearables=wearables)

    with TestClient(app) as client:
        response = client.get("/api/wearable/data", headers=_auth("alice-token"))

    assert response.status_code == 200
    assert wearables.used_tokens == ["renewed"]
    stored = store.get_token("alice")
    assert stored.access_token == "renewed"
    assert stored.expiry_date == 10**13

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

import app.db as app_db
from app.models import AuditLog, Risk

HEADERS = {"X-Organization-Id": "org-api", "X-User-Id": "u-grc", "X-User-Email": "grc@api.test"}
BASE = "/api/risks/workflow"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("RUNTIME_DIR", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{(tmp_path / 'api.db').as_posix()}")

    from app.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client
    if app_db.engine is not None:
        app_db.engine.dispose()


def _as(user_id: str) -> dict:
    return {**HEADERS, "X-User-Id": user_id}


def _intake(client) -> dict:
    response = client.post(
        f"{BASE}/intake",
        headers=_as("u-reporter"),
        json={
            "title": "Exposed S3 bucket",
            "description": "Bucket with build artifacts is world-readable.",
            "source": "external_security_reviews",
            "initial_severity": "high",
            "tags": ["cloud", "aws"],
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoints(client) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["version"] == "0.1.0"


def test_identity_headers_are_required(client) -> None:
    response = client.post(f"{BASE}/intake", json={})
    assert response.status_code == 400
    response = client.get(f"{BASE}/summary", headers={"X-Organization-Id": "org-api", "X-User-Id": ""})
    assert response.status_code == 400


def test_full_mitigation_lifecycle_over_http(client) -> None:
    risk = _intake(client)
    rid = risk["id"]
    assert risk["code"] == "RISK-0001"
    assert risk["tags"] == ["cloud", "aws"]

    steps = [
        (f"{BASE}/{rid}/validate", "u-grc", {"approved": True, "assessor_id": "u-assessor"}),
        (f"{BASE}/{rid}/assessment/start", "u-grc", {}),
        (
            f"{BASE}/{rid}/assessment/submit",
            "u-assessor",
            {
                "threat_description": "Artifacts leak internal hostnames",
                "likelihood": "likely",
                "impact": "moderate",
                "recommended_owner_id": "u-owner",
                "impact_categories": {"reputational": "Press exposure"},
            },
        ),
        (f"{BASE}/{rid}/assessment/review", "u-grc", {"approved": True}),
        (
            f"{BASE}/{rid}/treatment/decision",
            "u-owner",
            {"decision": "mitigate", "justification": "Cheap fix", "mitigation_description": "Block public ACLs"},
        ),
        (f"{BASE}/{rid}/treatment/mitigation-update", "u-owner", {"status": "on_track", "progress": 50}),
        (
            f"{BASE}/{rid}/treatment/mitigation-update",
            "u-owner",
            {"status": "done", "residual_likelihood": "rare", "residual_impact": "moderate"},
        ),
    ]
    for url, user, body in steps:
        response = client.post(url, headers=_as(user), json=body)
        assert response.status_code == 200, (url, response.text)

    state = client.get(f"{BASE}/{rid}", headers=HEADERS).json()
    assert state["current_stage"] == "completed"
    assert state["inherent_risk"] == "high"
    assert state["residual_risk"] == "low"
    assert state["assessment"]["impact_categories"] == {"reputational": "Press exposure"}
    assert state["treatment"]["status"] == "risk_mitigation_complete"

    history = client.get(f"{BASE}/{rid}/history", headers=HEADERS).json()["items"]
    assert [h["action"] for h in reversed(history)] == [
        "risk_submitted",
        "risk_validated",
        "risk_assessor_assigned",
        "assessment_submitted",
        "assessment_approved",
        "treatment_decision_submitted",
        "mitigation_update",
        "mitigation_update",
    ]

    limited = client.get(f"{BASE}/{rid}/history", headers=HEADERS, params={"limit": 2}).json()["items"]
    assert len(limited) == 2


def test_error_taxonomy_maps_to_status_codes(client) -> None:
    rid = _intake(client)["id"]

    response = client.post(f"{BASE}/{rid}/validate", headers=HEADERS, json={"approved": False})
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"
    assert response.json()["field"] == "reason"

    response = client.post(f"{BASE}/{rid}/assessment/start", headers=HEADERS, json={"assessor_id": "u-a"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "invalid_state_transition"
    assert body["current"] == "risk_identified"
    assert body["required"] == ["actual_risk"]

    response = client.get(f"{BASE}/does-not-exist", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    response = client.get(f"{BASE}/{rid}", headers={**HEADERS, "X-Organization-Id": "org-other"})
    assert response.status_code == 404

    response = client.post(f"{BASE}/{rid}/validate", headers=HEADERS, json={"approved": "maybe"})
    assert response.status_code == 422


def test_missing_assessment_is_an_integrity_fault(client) -> None:
    rid = _intake(client)["id"]
    with app_db.SessionLocal() as db:
        risk = db.get(Risk, rid)
        risk.status = "risk_analysis_in_progress"
        db.commit()

    response = client.post(
        f"{BASE}/{rid}/assessment/submit",
        headers=HEADERS,
        json={"threat_description": "t", "likelihood": "rare", "impact": "minor"},
    )
    assert response.status_code == 500
    assert response.json()["error"] == "integrity_fault"


def test_missing_treatment_is_not_found(client) -> None:
    rid = _intake(client)["id"]
    with app_db.SessionLocal() as db:
        risk = db.get(Risk, rid)
        risk.status = "risk_analyzed"
        risk.inherent_risk = "medium"
        db.commit()

    response = client.post(
        f"{BASE}/{rid}/treatment/decision",
        headers=HEADERS,
        json={"decision": "accept", "justification": "fine"},
    )
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_soft_delete_hides_risk(client) -> None:
    rid = _intake(client)["id"]
    response = client.delete(f"{BASE}/{rid}", headers=HEADERS, params={"reason": "duplicate"})
    assert response.status_code == 200
    assert client.get(f"{BASE}/{rid}", headers=HEADERS).status_code == 404
    assert client.delete(f"{BASE}/{rid}", headers=HEADERS).status_code == 404

    with app_db.SessionLocal() as db:
        stored = db.get(Risk, rid)
        assert stored is not None
        assert stored.deleted_by == "u-grc"

    assert _intake(client)["code"] == "RISK-0002"


def _to_treatment(client, likelihood: str, impact: str) -> str:
    rid = _intake(client)["id"]
    steps = [
        (f"{BASE}/{rid}/validate", "u-grc", {"approved": True, "assessor_id": "u-assessor"}),
        (f"{BASE}/{rid}/assessment/start", "u-grc", {}),
        (
            f"{BASE}/{rid}/assessment/submit",
            "u-assessor",
            {"threat_description": "t", "likelihood": likelihood, "impact": impact, "recommended_owner_id": "u-owner"},
        ),
        (f"{BASE}/{rid}/assessment/review", "u-grc", {"approved": True}),
    ]
    for url, user, body in steps:
        response = client.post(url, headers=_as(user), json=body)
        assert response.status_code == 200, (url, response.text)
    return rid


def test_patch_updates_descriptive_fields_only(client) -> None:
    rid = _to_treatment(client, "likely", "major")

    response = client.patch(f"{BASE}/{rid}", headers=HEADERS, json={"title": "Public S3 bucket", "tags": ["aws"]})
    assert response.status_code == 200, response.text
    assert response.json()["title"] == "Public S3 bucket"
    assert response.json()["tags"] == ["aws"]

    response = client.patch(f"{BASE}/{rid}", headers=HEADERS, json={"status": "risk_identified"})
    assert response.status_code == 422
    response = client.patch(f"{BASE}/{rid}", headers=HEADERS, json={"inherent_risk": "low", "title": "x"})
    assert response.status_code == 422

    state = client.get(f"{BASE}/{rid}", headers=HEADERS).json()
    assert state["status"] == "risk_analyzed"
    assert state["inherent_risk"] == "very_high"
    assert state["title"] == "Public S3 bucket"

    history = client.get(f"{BASE}/{rid}/history", headers=HEADERS, params={"limit": 1}).json()["items"]
    assert history[0]["action"] == "risk_updated"
    with app_db.SessionLocal() as db:
        actions = [row.action for row in db.query(AuditLog).filter(AuditLog.entity_id == rid).all()]
    assert actions.count("risk_updated") == 1


def test_list_accepts_filters_and_paging(client) -> None:
    first = _intake(client)
    second = _intake(client)
    client.patch(f"{BASE}/{second['id']}", headers=HEADERS, json={"category": "cloud", "tags": ["gcp"]})

    body = client.get(BASE, headers=HEADERS, params={"category": "cloud"}).json()
    assert [i["id"] for i in body["items"]] == [second["id"]]
    assert body["total"] == 1

    body = client.get(BASE, headers=HEADERS, params={"tag": "aws", "limit": 1}).json()
    assert [i["id"] for i in body["items"]] == [first["id"]]

    body = client.get(BASE, headers=HEADERS, params={"limit": 1, "page": 2}).json()
    assert [i["id"] for i in body["items"]] == [second["id"]]
    assert body["total"] == 2

    assert client.get(BASE, headers=HEADERS, params={"risk_level": "extreme"}).status_code == 422
    assert client.get(BASE, headers=HEADERS, params={"page": 0}).status_code == 422


def test_non_finite_transfer_cost_is_rejected_before_any_change(client) -> None:
    rid = _to_treatment(client, "possible", "moderate")
    before = len(client.get(f"{BASE}/{rid}/history", headers=HEADERS).json()["items"])

    raw = '{"decision": "transfer", "justification": "Insure it", "transfer_to": "Insurer", "transfer_cost": NaN}'
    response = client.post(
        f"{BASE}/{rid}/treatment/decision",
        headers={**_as("u-owner"), "Content-Type": "application/json"},
        content=raw,
    )
    assert response.status_code == 422

    state = client.get(f"{BASE}/{rid}", headers=HEADERS).json()
    assert state["treatment"]["status"] == "treatment_decision_review"
    assert state["treatment"]["decision"] is None
    assert len(client.get(f"{BASE}/{rid}/history", headers=HEADERS).json()["items"]) == before


def test_offset_timestamps_are_stored_as_utc(client) -> None:
    rid = _to_treatment(client, "possible", "moderate")

    response = client.post(
        f"{BASE}/{rid}/treatment/decision",
        headers=_as("u-owner"),
        json={
            "decision": "accept",
            "justification": "Compensating controls",
            "acceptance_expires_at": "2027-01-01T00:00:00+05:00",
        },
    )
    assert response.status_code == 200, response.text
    sent_back = response.json()["treatment"]["acceptance_expires_at"]
    assert sent_back == "2026-12-31T19:00:00Z"

    reloaded = client.get(f"{BASE}/{rid}", headers=HEADERS).json()["treatment"]["acceptance_expires_at"]
    assert reloaded == sent_back


def test_integrity_fault_is_logged_once(client, caplog) -> None:
    rid = _intake(client)["id"]
    with app_db.SessionLocal() as db:
        risk = db.get(Risk, rid)
        risk.status = "risk_analysis_in_progress"
        db.commit()

    with caplog.at_level(logging.ERROR):
        response = client.post(
            f"{BASE}/{rid}/assessment/submit",
            headers=HEADERS,
            json={"threat_description": "t", "likelihood": "rare", "impact": "minor"},
        )
    assert response.status_code == 500
    faults = [r for r in caplog.records if r.levelno == logging.ERROR and "Integrity fault" in r.getMessage()]
    assert len(faults) == 1

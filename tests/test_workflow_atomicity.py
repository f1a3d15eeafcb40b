from __future__ import annotations

import pytest
import requests

import app.db as app_db
from app.config import get_settings
from app.enums import Likelihood, MitigationStatus, TreatmentDecision
from app.errors import ConflictError, InvalidStateTransition, ValidationError
from app.models import AuditLog, Notification, Risk, RiskHistory, RiskTreatment
from app.schemas import (
    AssessmentReviewPayload,
    AssessmentRevisionPayload,
    ExecutiveDecisionPayload,
    MitigationUpdatePayload,
    RiskUpdatePayload,
    StartAssessmentPayload,
    TreatmentDecisionPayload,
    ValidateRiskPayload,
)
from app.services import assessment_stage, audit_log, notifications, risk_history, risk_store, risk_workflow
from conftest import ASSESSOR, EXECUTIVE, GRC, ORG, OWNER


def _fresh_risk(risk_id: str) -> Risk:
    with app_db.SessionLocal() as other:
        return other.get(Risk, risk_id)


def _history_count(risk_id: str) -> int:
    with app_db.SessionLocal() as other:
        return other.query(RiskHistory).filter(RiskHistory.risk_id == risk_id).count()


def test_history_failure_rolls_back_transition(workflow, db, monkeypatch) -> None:
    rid = workflow.actual_risk()
    before = _history_count(rid)

    def _boom(*args, **kwargs):
        raise RuntimeError("history store unavailable")

    monkeypatch.setattr(risk_history, "append_history", _boom)
    with pytest.raises(RuntimeError):
        risk_workflow.start_assessment(db, GRC, rid, StartAssessmentPayload(assessor_id=ASSESSOR.actor_id))

    stored = _fresh_risk(rid)
    assert stored.status == "actual_risk"
    assert stored.risk_assessor_id is None
    assert _history_count(rid) == before
    with app_db.SessionLocal() as other:
        assert other.query(AuditLog).filter(AuditLog.action == "risk_assessor_assigned").count() == 0


def test_audit_failure_does_not_undo_transition(workflow, db, monkeypatch) -> None:
    rid = workflow.actual_risk()

    def _broken_audit_row(**kwargs):
        raise RuntimeError("audit sink down")

    monkeypatch.setattr(audit_log, "AuditLog", _broken_audit_row)
    view = risk_workflow.start_assessment(db, GRC, rid, StartAssessmentPayload(assessor_id=ASSESSOR.actor_id))

    assert view["status"] == "risk_analysis_in_progress"
    assert _fresh_risk(rid).status == "risk_analysis_in_progress"
    with app_db.SessionLocal() as other:
        assert other.query(AuditLog).filter(AuditLog.action == "risk_assessor_assigned").count() == 0
        notice = other.query(Notification).filter(Notification.user_id == ASSESSOR.actor_id).one()
        assert notice.entity_id == rid


def test_audit_row_is_written_after_commit(workflow, db) -> None:
    rid = workflow.actual_risk()
    with app_db.SessionLocal() as other:
        row = other.query(AuditLog).filter(AuditLog.entity_id == rid, AuditLog.action == "risk_validated").one()
        assert row.organization_id == ORG
        assert row.user_id == GRC.actor_id
        assert row.user_email == GRC.actor_email
        assert row.entity_type == "risk"
        assert '"status"' in row.changes_json


def test_webhook_failure_is_swallowed(workflow, db, monkeypatch) -> None:
    rid = workflow.actual_risk()
    calls = []

    def _refuse(url, json=None, timeout=None):
        calls.append((url, json["userId"], timeout))
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr(get_settings(), "notification_webhook_url", "http://hooks.test/notify")
    monkeypatch.setattr(notifications.requests, "post", _refuse)

    view = risk_workflow.start_assessment(db, GRC, rid, StartAssessmentPayload(assessor_id=ASSESSOR.actor_id))

    assert view["status"] == "risk_analysis_in_progress"
    assert calls == [("http://hooks.test/notify", ASSESSOR.actor_id, get_settings().notification_timeout_seconds)]


def test_concurrent_review_creates_exactly_one_treatment(workflow, db, monkeypatch) -> None:
    rid = workflow.awaiting_grc()
    original_review = assessment_stage.review_assessment
    calls = {"n": 0}

    def _racing_review(session, risk, actor_id, payload):
        calls["n"] += 1
        if calls["n"] == 1:
            # A second reviewer commits the same approval while this one is mid-flight.
            with app_db.SessionLocal() as other:
                risk_workflow.review_assessment(other, GRC, rid, payload)
        return original_review(session, risk, actor_id, payload)

    monkeypatch.setattr(assessment_stage, "review_assessment", _racing_review)

    with pytest.raises((ConflictError, InvalidStateTransition)):
        risk_workflow.review_assessment(db, GRC, rid, AssessmentReviewPayload(approved=True))

    with app_db.SessionLocal() as other:
        assert other.query(RiskTreatment).filter(RiskTreatment.risk_id == rid).count() == 1
        approvals = (
            other.query(RiskHistory)
            .filter(RiskHistory.risk_id == rid, RiskHistory.action == "assessment_approved")
            .count()
        )
        assert approvals == 1
        assert other.get(Risk, rid).status == "risk_analyzed"


def _snapshot(risk_id: str) -> tuple[dict, int]:
    with app_db.SessionLocal() as other:
        view = risk_store.risk_to_dict(risk_store.load_risk(other, ORG, risk_id))
    view.pop("updated_at")
    return view, _history_count(risk_id)


_ILLEGAL_CALLS = [
    (
        "submit",
        lambda db, rid: risk_workflow.validate_risk(db, GRC, rid, ValidateRiskPayload(approved=False)),
        ValidationError,
    ),
    (
        "submit",
        lambda db, rid: risk_workflow.start_assessment(db, GRC, rid, StartAssessmentPayload(assessor_id="u-a")),
        InvalidStateTransition,
    ),
    (
        "submit",
        lambda db, rid: risk_workflow.update_risk(db, GRC, rid, RiskUpdatePayload(title="   ", category="ops")),
        ValidationError,
    ),
    (
        "in_analysis",
        lambda db, rid: risk_workflow.review_assessment(db, GRC, rid, AssessmentReviewPayload(approved=True)),
        InvalidStateTransition,
    ),
    (
        "awaiting_grc",
        lambda db, rid: risk_workflow.complete_revision(
            db, GRC, rid, AssessmentRevisionPayload(likelihood=Likelihood.RARE)
        ),
        InvalidStateTransition,
    ),
    (
        "in_treatment",
        lambda db, rid: risk_workflow.submit_executive_decision(
            db, EXECUTIVE, rid, ExecutiveDecisionPayload(approved=True)
        ),
        InvalidStateTransition,
    ),
    (
        "in_treatment",
        lambda db, rid: risk_workflow.submit_treatment_decision(
            db, OWNER, rid, TreatmentDecisionPayload(decision=TreatmentDecision.MITIGATE, justification="Fix it")
        ),
        ValidationError,
    ),
    (
        "in_treatment",
        lambda db, rid: risk_workflow.update_mitigation_progress(
            db, OWNER, rid, MitigationUpdatePayload(status=MitigationStatus.ON_TRACK, progress=10)
        ),
        InvalidStateTransition,
    ),
]


@pytest.mark.parametrize("setup, call, error", _ILLEGAL_CALLS)
def test_rejected_operation_leaves_risk_unchanged(workflow, db, setup, call, error) -> None:
    created = getattr(workflow, setup)()
    rid = created["id"] if isinstance(created, dict) else created
    before = _snapshot(rid)

    with pytest.raises(error):
        call(db, rid)

    assert _snapshot(rid) == before

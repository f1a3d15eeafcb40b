from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from app.enums import Impact, Likelihood, ReviewFrequency, RiskSource, TreatmentDecision
from app.errors import NotFoundError, ValidationError
from app.models import Risk, RiskHistory
from app.schemas import (
    AssessmentReviewPayload,
    DeleteRiskPayload,
    MarkReviewedPayload,
    RiskListFilter,
    TreatmentDecisionPayload,
    ValidateRiskPayload,
)
from app.services import risk_cache, risk_workflow
from conftest import ASSESSOR, GRC, ORG, OWNER


def _stage(db, rid: str) -> tuple[str, list[str]]:
    state = risk_workflow.get_workflow_state(db, GRC, rid)
    return state["current_stage"], state["available_actions"]


def test_stage_and_actions_follow_the_lifecycle(workflow, db) -> None:
    rid = workflow.submit()["id"]
    assert _stage(db, rid) == ("intake_review", ["validate_risk"])

    risk_workflow.validate_risk(db, GRC, rid, ValidateRiskPayload(approved=True))
    assert _stage(db, rid) == ("awaiting_assessor", ["start_assessment"])

    rid = workflow.in_analysis()
    assert _stage(db, rid) == ("assessment", ["submit_assessment"])

    rid = workflow.awaiting_grc()
    assert _stage(db, rid) == ("grc_review", ["review_assessment"])
    risk_workflow.review_assessment(db, GRC, rid, AssessmentReviewPayload(approved=False, declined_reason="Redo"))
    assert _stage(db, rid) == ("grc_revision", ["complete_revision"])

    rid = workflow.in_treatment(Likelihood.LIKELY, Impact.MODERATE)
    assert _stage(db, rid) == ("treatment_decision", ["submit_treatment_decision"])
    risk_workflow.submit_treatment_decision(
        db, OWNER, rid, TreatmentDecisionPayload(decision=TreatmentDecision.AVOID, justification="x", avoid_strategy="Exit")
    )
    assert _stage(db, rid) == ("identify_executive", ["assign_executive_approver"])


def test_declined_stage_has_no_actions(workflow, db) -> None:
    rid = workflow.submit()["id"]
    risk_workflow.validate_risk(db, GRC, rid, ValidateRiskPayload(approved=False, reason="Not ours"))
    assert _stage(db, rid) == ("declined", [])


def test_mark_reviewed_schedules_next_review(workflow, db) -> None:
    rid = workflow.submit(review_frequency=ReviewFrequency.MONTHLY)["id"]
    before = datetime.utcnow()

    view = risk_workflow.mark_reviewed(db, GRC, rid, MarkReviewedPayload(notes="Quarterly board review"))

    reviewed_at = datetime.fromisoformat(view["last_reviewed_at"].rstrip("Z"))
    due = datetime.fromisoformat(view["next_review_due"].rstrip("Z"))
    assert reviewed_at >= before
    assert 28 <= (due - reviewed_at).days <= 31

    last = db.query(RiskHistory).filter(RiskHistory.risk_id == rid).order_by(RiskHistory.id.desc()).first()
    assert last.action == "reviewed"
    assert last.notes == "Quarterly board review"
    assert last.changed_by == GRC.actor_id


def test_delete_is_soft_and_hides_from_reads(workflow, db) -> None:
    rid = workflow.submit()["id"]
    view = risk_workflow.delete_risk(db, GRC, rid, DeleteRiskPayload(reason="Raised twice"))
    assert view["id"] == rid

    with pytest.raises(NotFoundError):
        risk_workflow.get_workflow_state(db, GRC, rid)
    with pytest.raises(NotFoundError):
        risk_workflow.list_history(db, GRC, rid)
    assert risk_workflow.list_risks(db, GRC)["items"] == []

    actions = [row.action for row in db.query(RiskHistory).filter(RiskHistory.risk_id == rid).all()]
    assert actions[-1] == "risk_deleted"


def test_history_is_newest_first_and_paged(workflow, db) -> None:
    rid = workflow.awaiting_grc()
    items = risk_workflow.list_history(db, GRC, rid)
    assert [i["action"] for i in items] == [
        "assessment_submitted",
        "risk_assessor_assigned",
        "risk_validated",
        "risk_submitted",
    ]
    assert items[0]["changes"]["calculated_risk_score"] == "very_high"
    assert len(risk_workflow.list_history(db, GRC, rid, limit=1)) == 1


def test_summary_is_cached_and_invalidated_by_transitions(workflow, db) -> None:
    rid = workflow.in_treatment(Likelihood.LIKELY, Impact.MAJOR)
    summary = risk_workflow.risk_summary(db, GRC)

    assert summary["total"] == 1
    assert summary["by_status"]["risk_analyzed"] == 1
    assert summary["by_inherent_risk"]["very_high"] == 1
    likely = summary["matrix"]["likelihood"].index("likely")
    major = summary["matrix"]["impact"].index("major")
    assert summary["matrix"]["counts"][likely][major] == 1
    assert risk_cache.get(risk_cache.dashboard_key(ORG)) is not None
    assert risk_cache.get(risk_cache.matrix_key(ORG)) is not None

    assert risk_workflow.risk_summary(db, GRC) is summary

    workflow.submit(title="Second risk")
    assert risk_cache.get(risk_cache.dashboard_key(ORG)) is None
    assert risk_cache.get(risk_cache.matrix_key(ORG)) is None

    refreshed = risk_workflow.risk_summary(db, GRC)
    assert refreshed["total"] == 2
    assert refreshed["by_status"]["risk_identified"] == 1
    assert rid in {item["id"] for item in risk_workflow.list_risks(db, GRC)["items"]}


def test_get_risk_returns_the_plain_view_scoped_to_the_organization(workflow, db) -> None:
    submitted = workflow.submit(review_frequency=ReviewFrequency.MONTHLY)

    view = risk_workflow.get_risk(db, GRC, submitted["id"])
    assert view["code"] == submitted["code"]
    assert "current_stage" not in view
    assert view["next_review_due"] is not None

    outsider = risk_workflow.ActorContext("org-other", "u-grc")
    with pytest.raises(NotFoundError):
        risk_workflow.get_risk(db, outsider, submitted["id"])


@pytest.fixture
def three_risks(workflow, db) -> dict[str, str]:
    phishing = workflow.submit(
        title="Phishing wave against finance",
        description="Targeted emails spoofing the CFO.",
        category="people",
        source=RiskSource.EMPLOYEE_REPORTING,
        tags=["email", "finance"],
    )["id"]
    firewall = workflow.in_treatment()
    tls = workflow.submit(title="Old TLS on portal", description="Legacy ciphers still negotiated.")["id"]
    risk_workflow.validate_risk(db, GRC, tls, ValidateRiskPayload(approved=False, reason="Covered by RISK-0002"))

    stored = db.get(Risk, phishing)
    stored.next_review_due = datetime.utcnow() + timedelta(days=5)
    db.commit()
    risk_cache.clear()
    return {"phishing": phishing, "firewall": firewall, "tls": tls}


@pytest.mark.parametrize(
    "filters, expected",
    [
        ({"search": "PHISH"}, ["phishing"]),
        ({"search": "legacy ciphers"}, ["tls"]),
        ({"search": "risk-0002"}, ["firewall"]),
        ({"category": "people"}, ["phishing"]),
        ({"status": "risk_analyzed"}, ["firewall"]),
        ({"risk_level": "very_high"}, ["firewall"]),
        ({"owner_id": OWNER.actor_id}, ["firewall"]),
        ({"tag": "email"}, ["phishing"]),
        ({"tag": "mail"}, []),
        ({"source": "employee_reporting"}, ["phishing"]),
        ({"grc_sme_id": GRC.actor_id}, ["firewall", "tls"]),
        ({"risk_assessor_id": ASSESSOR.actor_id}, ["firewall"]),
        ({"is_open": True}, ["phishing", "firewall"]),
        ({"reviews_due": True}, ["phishing"]),
        ({"category": "people", "status": "risk_analyzed"}, []),
    ],
)
def test_list_risks_filters(three_risks, db, filters, expected) -> None:
    page = risk_workflow.list_risks(db, GRC, RiskListFilter(**filters))
    assert [item["id"] for item in page["items"]] == [three_risks[name] for name in expected]
    assert page["total"] == len(expected)
    assert risk_cache.get(risk_cache.list_key(ORG)) is None


def test_list_risks_pages_and_caches_only_the_default_page(three_risks, db) -> None:
    first = risk_workflow.list_risks(db, GRC, limit=2)
    second = risk_workflow.list_risks(db, GRC, page=2, limit=2)
    assert [i["id"] for i in first["items"]] == [three_risks["phishing"], three_risks["firewall"]]
    assert [i["id"] for i in second["items"]] == [three_risks["tls"]]
    assert first["total"] == second["total"] == 3
    assert risk_cache.get(risk_cache.list_key(ORG)) is None

    default = risk_workflow.list_risks(db, GRC)
    assert default["page"] == 1 and default["limit"] == risk_workflow.LIST_PAGE_SIZE
    assert risk_cache.get(risk_cache.list_key(ORG)) is default

    with pytest.raises(ValidationError):
        risk_workflow.list_risks(db, GRC, page=0)

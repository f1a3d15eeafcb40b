from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_actor_context, get_db
from app.enums import RiskIntakeStatus, RiskLevel, RiskSource
from app.schemas import (
    AssessmentPayload,
    AssessmentReviewPayload,
    AssessmentRevisionPayload,
    DeleteRiskPayload,
    ExecutiveApproverPayload,
    ExecutiveDecisionPayload,
    MarkReviewedPayload,
    MitigationUpdatePayload,
    RiskIntakePayload,
    RiskListFilter,
    RiskUpdatePayload,
    StartAssessmentPayload,
    TreatmentDecisionPayload,
    ValidateRiskPayload,
)
from app.services import risk_workflow
from app.services.risk_workflow import ActorContext

router = APIRouter(prefix="/api/risks/workflow", tags=["risk-workflow"])


@router.get("")
def api_list_risks(
    search: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    status: Optional[RiskIntakeStatus] = Query(default=None),
    risk_level: Optional[RiskLevel] = Query(default=None),
    owner_id: Optional[str] = Query(default=None),
    tag: Optional[str] = Query(default=None),
    source: Optional[RiskSource] = Query(default=None),
    grc_sme_id: Optional[str] = Query(default=None),
    risk_assessor_id: Optional[str] = Query(default=None),
    is_open: bool = Query(default=False),
    reviews_due: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=risk_workflow.LIST_PAGE_SIZE, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    filters = RiskListFilter(
        search=search,
        category=category,
        status=status,
        risk_level=risk_level,
        owner_id=owner_id,
        tag=tag,
        source=source,
        grc_sme_id=grc_sme_id,
        risk_assessor_id=risk_assessor_id,
        is_open=is_open,
        reviews_due=reviews_due,
    )
    return risk_workflow.list_risks(db, ctx, filters, page=page, limit=limit)


@router.get("/summary")
def api_risk_summary(
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.risk_summary(db, ctx)


@router.post("/intake", status_code=201)
def api_submit_risk(
    payload: RiskIntakePayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.submit_risk(db, ctx, payload)


@router.get("/{risk_id}")
def api_workflow_state(
    risk_id: str,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.get_workflow_state(db, ctx, risk_id)


@router.patch("/{risk_id}")
def api_update_risk(
    risk_id: str,
    payload: RiskUpdatePayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.update_risk(db, ctx, risk_id, payload)


@router.get("/{risk_id}/history")
def api_risk_history(
    risk_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return {"risk_id": risk_id, "items": risk_workflow.list_history(db, ctx, risk_id, limit=limit)}


@router.post("/{risk_id}/validate")
def api_validate_risk(
    risk_id: str,
    payload: ValidateRiskPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.validate_risk(db, ctx, risk_id, payload)


@router.post("/{risk_id}/assessment/start")
def api_start_assessment(
    risk_id: str,
    payload: StartAssessmentPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.start_assessment(db, ctx, risk_id, payload)


@router.post("/{risk_id}/assessment/submit")
def api_submit_assessment(
    risk_id: str,
    payload: AssessmentPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.submit_assessment(db, ctx, risk_id, payload)


@router.post("/{risk_id}/assessment/review")
def api_review_assessment(
    risk_id: str,
    payload: AssessmentReviewPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.review_assessment(db, ctx, risk_id, payload)


@router.post("/{risk_id}/assessment/revision")
def api_complete_revision(
    risk_id: str,
    payload: AssessmentRevisionPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.complete_revision(db, ctx, risk_id, payload)


@router.post("/{risk_id}/treatment/decision")
def api_treatment_decision(
    risk_id: str,
    payload: TreatmentDecisionPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.submit_treatment_decision(db, ctx, risk_id, payload)


@router.post("/{risk_id}/treatment/executive-approver")
def api_assign_executive_approver(
    risk_id: str,
    payload: ExecutiveApproverPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.assign_executive_approver(db, ctx, risk_id, payload)


@router.post("/{risk_id}/treatment/executive-decision")
def api_executive_decision(
    risk_id: str,
    payload: ExecutiveDecisionPayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.submit_executive_decision(db, ctx, risk_id, payload)


@router.post("/{risk_id}/treatment/mitigation-update")
def api_mitigation_update(
    risk_id: str,
    payload: MitigationUpdatePayload,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.update_mitigation_progress(db, ctx, risk_id, payload)


@router.post("/{risk_id}/review")
def api_mark_reviewed(
    risk_id: str,
    payload: Optional[MarkReviewedPayload] = None,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.mark_reviewed(db, ctx, risk_id, payload or MarkReviewedPayload())


@router.delete("/{risk_id}")
def api_delete_risk(
    risk_id: str,
    reason: str = Query(default=""),
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return risk_workflow.delete_risk(db, ctx, risk_id, DeleteRiskPayload(reason=reason or None))

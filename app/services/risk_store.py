from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.enums import RiskIntakeStatus
from app.errors import AssessmentNotFound, InvalidStateTransition, NotFoundError, TreatmentNotFound
from app.models import Risk, RiskAsset, RiskAssessment, RiskControl, RiskTreatment, RiskTreatmentUpdate
from app.utils.jsonx import from_json

# Intake statuses a Risk may hold once its assessment row exists.
_ASSESSMENT_STAGE_STATUSES = {
    RiskIntakeStatus.RISK_ANALYSIS_IN_PROGRESS.value,
    RiskIntakeStatus.RISK_ANALYZED.value,
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() + "Z" if value else None


def load_risk(db: Session, organization_id: str, risk_id: str, *, for_update: bool = False) -> Risk:
    stmt = (
        select(Risk)
        .where(
            Risk.id == risk_id,
            Risk.organization_id == organization_id,
            Risk.deleted_at.is_(None),
        )
        .options(
            selectinload(Risk.assessment),
            selectinload(Risk.treatment).selectinload(RiskTreatment.updates),
            selectinload(Risk.assets),
            selectinload(Risk.controls),
        )
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    risk = db.execute(stmt).scalars().first()
    if risk is None:
        raise NotFoundError(f"Risk {risk_id} not found")
    return risk


def next_risk_code(db: Session, organization_id: str) -> str:
    # Soft-deleted rows are counted too so codes are never reused.
    count = db.execute(select(func.count(Risk.id)).where(Risk.organization_id == organization_id)).scalar_one()
    return f"RISK-{int(count) + 1:04d}"


def require_assessment(risk: Risk, operation: str) -> RiskAssessment:
    if risk.assessment is not None:
        return risk.assessment
    if risk.status in _ASSESSMENT_STAGE_STATUSES:
        raise AssessmentNotFound(f"Risk {risk.code} is in status '{risk.status}' but has no assessment record")
    raise InvalidStateTransition(operation, risk.status, RiskIntakeStatus.RISK_ANALYSIS_IN_PROGRESS.value)


def require_treatment(risk: Risk, operation: str) -> RiskTreatment:
    if risk.treatment is not None:
        return risk.treatment
    if risk.status == RiskIntakeStatus.RISK_ANALYZED.value:
        raise TreatmentNotFound(f"Treatment for risk {risk.code} not found")
    raise InvalidStateTransition(operation, risk.status, RiskIntakeStatus.RISK_ANALYZED.value)


def _clean_ids(values: Iterable[str] | None) -> list[str]:
    out: list[str] = []
    for raw in values or []:
        value = str(raw or "").strip()
        if value and value not in out:
            out.append(value)
    return out


def replace_links(
    risk: Risk,
    *,
    asset_ids: Iterable[str] | None = None,
    control_ids: Iterable[str] | None = None,
) -> dict[str, list[str]]:
    """
    Make the risk's linked asset/control sets equal to the given ids.

    Reconciles by diff inside the caller's transaction: removed links are
    deleted, new ones inserted, unchanged ones kept. ``None`` leaves a set alone.
    """
    result: dict[str, list[str]] = {}
    if asset_ids is not None:
        wanted = _clean_ids(asset_ids)
        for link in list(risk.assets):
            if link.asset_id not in wanted:
                risk.assets.remove(link)
        present = {link.asset_id for link in risk.assets}
        for asset_id in wanted:
            if asset_id not in present:
                risk.assets.append(RiskAsset(asset_id=asset_id))
        result["asset_ids"] = wanted
    if control_ids is not None:
        wanted = _clean_ids(control_ids)
        for link in list(risk.controls):
            if link.control_id not in wanted:
                risk.controls.remove(link)
        present = {link.control_id for link in risk.controls}
        for control_id in wanted:
            if control_id not in present:
                risk.controls.append(RiskControl(control_id=control_id, effectiveness="partial"))
        result["control_ids"] = wanted
    return result


def touch(risk: Risk, actor_id: str) -> None:
    risk.updated_at = datetime.utcnow()
    risk.updated_by = actor_id


def _assessment_to_dict(assessment: RiskAssessment) -> dict[str, Any]:
    return {
        "id": assessment.id,
        "status": assessment.status,
        "risk_assessor_id": assessment.risk_assessor_id,
        "threat_description": assessment.threat_description,
        "vulnerabilities": assessment.vulnerabilities,
        "likelihood": assessment.likelihood_score,
        "likelihood_rationale": assessment.likelihood_rationale,
        "impact": assessment.impact_score,
        "impact_rationale": assessment.impact_rationale,
        "impact_categories": from_json(assessment.impact_categories_json, {}),
        "calculated_risk_score": assessment.calculated_risk_score,
        "recommended_owner_id": assessment.recommended_owner_id,
        "assessment_notes": assessment.assessment_notes,
        "treatment_recommendation": assessment.treatment_recommendation,
        "grc_review_notes": assessment.grc_review_notes,
        "grc_declined_reason": assessment.grc_declined_reason,
        "assessor_submitted_at": _iso(assessment.assessor_submitted_at),
        "grc_approved_at": _iso(assessment.grc_approved_at),
        "completed_at": _iso(assessment.completed_at),
    }


def _update_to_dict(update: RiskTreatmentUpdate) -> dict[str, Any]:
    return {
        "id": int(update.id) if update.id is not None else None,
        "update_type": update.update_type,
        "previous_status": update.previous_status,
        "new_status": update.new_status,
        "progress": update.progress,
        "notes": update.notes,
        "new_target_date": _iso(update.new_target_date),
        "delay_reason": update.delay_reason,
        "cancellation_reason": update.cancellation_reason,
        "created_by": update.created_by,
        "created_at": _iso(update.created_at),
    }


def _treatment_to_dict(treatment: RiskTreatment) -> dict[str, Any]:
    updates = list(treatment.updates or [])
    return {
        "id": treatment.id,
        "status": treatment.status,
        "risk_owner_id": treatment.risk_owner_id,
        "decision": treatment.decision,
        "justification": treatment.justification,
        "mitigation_description": treatment.mitigation_description,
        "mitigation_target_date": _iso(treatment.mitigation_target_date),
        "transfer_to": treatment.transfer_to,
        "transfer_cost": treatment.transfer_cost,
        "avoid_strategy": treatment.avoid_strategy,
        "acceptance_rationale": treatment.acceptance_rationale,
        "acceptance_expires_at": _iso(treatment.acceptance_expires_at),
        "executive_approval_required": bool(treatment.executive_approval_required),
        "executive_approver_id": treatment.executive_approver_id,
        "executive_approval_status": treatment.executive_approval_status,
        "executive_approval_notes": treatment.executive_approval_notes,
        "executive_denied_reason": treatment.executive_denied_reason,
        "mitigation_status": treatment.mitigation_status,
        "mitigation_progress": int(treatment.mitigation_progress or 0),
        "last_progress_update": _iso(treatment.last_progress_update),
        "next_review_date": _iso(treatment.next_review_date),
        "residual_likelihood": treatment.residual_likelihood,
        "residual_impact": treatment.residual_impact,
        "residual_risk_score": treatment.residual_risk_score,
        "completed_at": _iso(treatment.completed_at),
        "updates": [_update_to_dict(u) for u in reversed(updates[-10:])],
    }


def risk_to_dict(risk: Risk) -> dict[str, Any]:
    return {
        "id": risk.id,
        "organization_id": risk.organization_id,
        "code": risk.code,
        "title": risk.title,
        "description": risk.description,
        "category": risk.category,
        "source": risk.source,
        "initial_severity": risk.initial_severity,
        "tags": from_json(risk.tags_json, []),
        "status": risk.status,
        "likelihood": risk.likelihood,
        "impact": risk.impact,
        "inherent_risk": risk.inherent_risk,
        "residual_risk": risk.residual_risk,
        "roles": {
            "reporter_id": risk.reporter_id,
            "grc_sme_id": risk.grc_sme_id,
            "risk_assessor_id": risk.risk_assessor_id,
            "risk_owner_id": risk.risk_owner_id,
        },
        "review_frequency": risk.review_frequency,
        "last_reviewed_at": _iso(risk.last_reviewed_at),
        "next_review_due": _iso(risk.next_review_due),
        "affected_asset_ids": sorted(link.asset_id for link in risk.assets),
        "existing_control_ids": sorted(link.control_id for link in risk.controls),
        "assessment": _assessment_to_dict(risk.assessment) if risk.assessment is not None else None,
        "treatment": _treatment_to_dict(risk.treatment) if risk.treatment is not None else None,
        "version": int(risk.version or 0),
        "created_at": _iso(risk.created_at),
        "updated_at": _iso(risk.updated_at),
    }

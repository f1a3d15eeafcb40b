from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.enums import RiskAssessmentStatus, RiskIntakeStatus, RiskTreatmentStatus
from app.errors import ConflictError, InvalidStateTransition, ValidationError
from app.models import Risk, RiskAssessment, RiskTreatment
from app.schemas import AssessmentPayload, AssessmentReviewPayload, AssessmentRevisionPayload
from app.services import risk_store
from app.services.notifications import RISK_STATUS_CHANGED, Notice
from app.services.risk_history import TransitionOutcome
from app.utils import scoring
from app.utils.jsonx import from_json, to_json


def _clean(value: str | None) -> str:
    return str(value or "").strip()


def _assessment_in(risk: Risk, operation: str, required: RiskAssessmentStatus) -> RiskAssessment:
    assessment = risk_store.require_assessment(risk, operation)
    if assessment.status != required.value:
        raise InvalidStateTransition(operation, assessment.status, required.value)
    return assessment


def _finalise(risk: Risk, assessment: RiskAssessment, actor_id: str) -> dict:
    """
    Close the assessment and open the treatment in one step.

    Copies the approved scoring onto the Risk and creates the single
    RiskTreatment in `treatment_decision_review`. Returns the change fragment.
    """
    if risk.treatment is not None:
        raise ConflictError(f"Risk {risk.code} already has a treatment")
    if not assessment.likelihood_score or not assessment.impact_score:
        raise ValidationError("likelihood", "likelihood and impact must be set before the assessment is finalised")

    now = datetime.utcnow()
    inherent = scoring.risk_level(assessment.likelihood_score, assessment.impact_score).value
    previous_status = risk.status

    assessment.calculated_risk_score = inherent
    assessment.status = RiskAssessmentStatus.DONE.value
    assessment.grc_approved_at = now
    assessment.completed_at = now

    risk.likelihood = assessment.likelihood_score
    risk.impact = assessment.impact_score
    risk.inherent_risk = inherent
    if assessment.recommended_owner_id:
        risk.risk_owner_id = assessment.recommended_owner_id
    risk.status = RiskIntakeStatus.RISK_ANALYZED.value
    risk.treatment = RiskTreatment(
        status=RiskTreatmentStatus.TREATMENT_DECISION_REVIEW.value,
        risk_owner_id=risk.risk_owner_id,
        grc_sme_id=risk.grc_sme_id or actor_id,
        created_at=now,
    )

    return {
        "status": {"from": previous_status, "to": risk.status},
        "assessment_status": RiskAssessmentStatus.DONE.value,
        "likelihood": risk.likelihood,
        "impact": risk.impact,
        "inherent_risk": inherent,
        "risk_owner_id": risk.risk_owner_id,
        "treatment_status": RiskTreatmentStatus.TREATMENT_DECISION_REVIEW.value,
    }


def _owner_notice(risk: Risk) -> list[Notice]:
    if not risk.risk_owner_id:
        return []
    return [
        Notice(
            user_id=risk.risk_owner_id,
            title=f"Treatment decision required: {risk.code}",
            message=f"Risk '{risk.title}' was assessed as {risk.inherent_risk}. Please choose a treatment.",
        )
    ]


def submit_assessment(db: Session, risk: Risk, actor_id: str, payload: AssessmentPayload) -> TransitionOutcome:
    assessment = _assessment_in(risk, "submit assessment", RiskAssessmentStatus.RISK_ASSESSOR_ANALYSIS)

    threat = _clean(payload.threat_description)
    if not threat:
        raise ValidationError("threat_description", "threat description is required")

    calculated = scoring.risk_level(payload.likelihood, payload.impact).value
    assessment.threat_description = threat
    assessment.vulnerabilities = payload.vulnerabilities or ""
    assessment.likelihood_score = payload.likelihood.value
    assessment.likelihood_rationale = payload.likelihood_rationale or ""
    assessment.impact_score = payload.impact.value
    assessment.impact_rationale = payload.impact_rationale or ""
    if payload.impact_categories is not None:
        assessment.impact_categories_json = to_json(payload.impact_categories.model_dump(exclude_none=True))
    assessment.recommended_owner_id = _clean(payload.recommended_owner_id) or None
    assessment.assessment_notes = payload.assessment_notes or ""
    assessment.treatment_recommendation = payload.treatment_recommendation or ""
    assessment.calculated_risk_score = calculated
    assessment.assessor_submitted_at = datetime.utcnow()
    assessment.status = RiskAssessmentStatus.GRC_APPROVAL.value

    links = risk_store.replace_links(
        risk,
        asset_ids=payload.affected_asset_ids,
        control_ids=payload.existing_control_ids,
    )

    notices = []
    if risk.grc_sme_id:
        notices.append(
            Notice(
                user_id=risk.grc_sme_id,
                title=f"Assessment ready for review: {risk.code}",
                message=f"The assessor rated '{risk.title}' as {calculated}.",
            )
        )
    return TransitionOutcome(
        action="assessment_submitted",
        changes={
            "assessment_status": {
                "from": RiskAssessmentStatus.RISK_ASSESSOR_ANALYSIS.value,
                "to": assessment.status,
            },
            "likelihood": assessment.likelihood_score,
            "impact": assessment.impact_score,
            "calculated_risk_score": calculated,
            **links,
        },
        audit_description=f"Submitted assessment for risk {risk.code} ({calculated})",
        notices=notices,
    )


def review_assessment(db: Session, risk: Risk, actor_id: str, payload: AssessmentReviewPayload) -> TransitionOutcome:
    assessment = _assessment_in(risk, "review assessment", RiskAssessmentStatus.GRC_APPROVAL)
    assessment.grc_review_notes = _clean(payload.notes)

    if payload.approved:
        changes = _finalise(risk, assessment, actor_id)
        return TransitionOutcome(
            action="assessment_approved",
            changes=changes,
            notes=assessment.grc_review_notes,
            audit_description=f"Approved assessment for risk {risk.code} ({risk.inherent_risk})",
            notices=_owner_notice(risk),
        )

    reason = _clean(payload.declined_reason)
    if not reason:
        raise ValidationError("declined_reason", "a reason is required when requesting a revision")
    assessment.status = RiskAssessmentStatus.GRC_REVISION.value
    assessment.grc_declined_reason = reason

    notices = []
    if assessment.risk_assessor_id:
        notices.append(
            Notice(
                user_id=assessment.risk_assessor_id,
                title=f"Assessment sent for revision: {risk.code}",
                message=reason,
                type=RISK_STATUS_CHANGED,
            )
        )
    return TransitionOutcome(
        action="assessment_revision_requested",
        changes={
            "assessment_status": {
                "from": RiskAssessmentStatus.GRC_APPROVAL.value,
                "to": assessment.status,
            },
            "declined_reason": reason,
        },
        notes=reason,
        audit_description=f"Requested revision of assessment for risk {risk.code}",
        notices=notices,
    )


_REVISABLE_TEXT_FIELDS = (
    "threat_description",
    "vulnerabilities",
    "likelihood_rationale",
    "impact_rationale",
    "assessment_notes",
    "treatment_recommendation",
)


def complete_revision(db: Session, risk: Risk, actor_id: str, payload: AssessmentRevisionPayload) -> TransitionOutcome:
    assessment = _assessment_in(risk, "complete revision", RiskAssessmentStatus.GRC_REVISION)

    revised: dict = {}
    for name in _REVISABLE_TEXT_FIELDS:
        value = getattr(payload, name)
        if value is None:
            continue
        if name == "threat_description" and not _clean(value):
            raise ValidationError("threat_description", "threat description cannot be blank")
        setattr(assessment, name, value)
        revised[name] = value
    if payload.likelihood is not None and payload.likelihood.value != assessment.likelihood_score:
        revised["likelihood"] = {"from": assessment.likelihood_score, "to": payload.likelihood.value}
        assessment.likelihood_score = payload.likelihood.value
    if payload.impact is not None and payload.impact.value != assessment.impact_score:
        revised["impact"] = {"from": assessment.impact_score, "to": payload.impact.value}
        assessment.impact_score = payload.impact.value
    if payload.impact_categories is not None:
        merged = from_json(assessment.impact_categories_json, {})
        merged.update(payload.impact_categories.model_dump(exclude_none=True))
        assessment.impact_categories_json = to_json(merged)
        revised["impact_categories"] = merged
    if payload.recommended_owner_id is not None:
        assessment.recommended_owner_id = _clean(payload.recommended_owner_id) or None
        revised["recommended_owner_id"] = assessment.recommended_owner_id

    links = risk_store.replace_links(
        risk,
        asset_ids=payload.affected_asset_ids,
        control_ids=payload.existing_control_ids,
    )

    changes = _finalise(risk, assessment, actor_id)
    changes["revised"] = revised
    changes.update(links)
    return TransitionOutcome(
        action="assessment_revised",
        changes=changes,
        notes=_clean(payload.notes),
        audit_description=f"Completed revision of assessment for risk {risk.code} ({risk.inherent_risk})",
        notices=_owner_notice(risk),
    )

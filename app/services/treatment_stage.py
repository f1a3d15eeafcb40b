from __future__ import annotations

import math
from datetime import datetime

from sqlalchemy.orm import Session

from app.enums import (
    MITIGATION_PHASE_STATUSES,
    ExecutiveApprovalStatus,
    MitigationStatus,
    RiskTreatmentStatus,
    TreatmentDecision,
    TreatmentUpdateType,
    is_terminal_treatment_status,
)
from app.errors import IntegrityFault, InvalidStateTransition, ValidationError
from app.models import Risk, RiskTreatment, RiskTreatmentUpdate
from app.schemas import (
    ExecutiveApproverPayload,
    ExecutiveDecisionPayload,
    MitigationUpdatePayload,
    TreatmentDecisionPayload,
)
from app.services import risk_store
from app.services.notifications import RISK_STATUS_CHANGED, Notice
from app.services.risk_history import TransitionOutcome
from app.utils import scoring
from app.utils.cadence import next_review_due

_UPDATE_TYPE_BY_STATUS = {
    MitigationStatus.ON_TRACK: TreatmentUpdateType.PROGRESS,
    MitigationStatus.DELAYED: TreatmentUpdateType.DELAY,
    MitigationStatus.CANCELLED: TreatmentUpdateType.CANCELLATION,
    MitigationStatus.DONE: TreatmentUpdateType.COMPLETION,
}

_DECISION_FIELDS = (
    "mitigation_description",
    "mitigation_target_date",
    "transfer_to",
    "transfer_cost",
    "avoid_strategy",
    "acceptance_rationale",
    "acceptance_expires_at",
)


def _clean(value: str | None) -> str:
    return str(value or "").strip()


def _treatment_in(risk: Risk, operation: str, required: RiskTreatmentStatus) -> RiskTreatment:
    treatment = risk_store.require_treatment(risk, operation)
    if treatment.status != required.value:
        raise InvalidStateTransition(operation, treatment.status, required.value)
    return treatment


def _inherent_level(risk: Risk) -> str:
    if not risk.inherent_risk:
        raise IntegrityFault(f"Risk {risk.code} has a treatment but no inherent risk level")
    return risk.inherent_risk


def _validate_decision_fields(payload: TreatmentDecisionPayload) -> dict:
    """Check the fields the chosen decision needs and return only those."""
    decision = payload.decision
    if not _clean(payload.justification):
        raise ValidationError("justification", "justification is required")

    kept: dict = {}
    if decision == TreatmentDecision.MITIGATE:
        if not _clean(payload.mitigation_description):
            raise ValidationError("mitigation_description", "mitigation description is required to mitigate")
        kept["mitigation_description"] = payload.mitigation_description.strip()
        kept["mitigation_target_date"] = payload.mitigation_target_date
    elif decision == TreatmentDecision.TRANSFER:
        if not _clean(payload.transfer_to):
            raise ValidationError("transfer_to", "transfer target is required to transfer")
        if payload.transfer_cost is not None:
            if not math.isfinite(payload.transfer_cost):
                raise ValidationError("transfer_cost", "transfer cost must be a finite number")
            if payload.transfer_cost < 0:
                raise ValidationError("transfer_cost", "transfer cost cannot be negative")
        kept["transfer_to"] = payload.transfer_to.strip()
        kept["transfer_cost"] = payload.transfer_cost
    elif decision == TreatmentDecision.AVOID:
        if not _clean(payload.avoid_strategy):
            raise ValidationError("avoid_strategy", "avoidance strategy is required to avoid")
        kept["avoid_strategy"] = payload.avoid_strategy.strip()
    else:
        kept["acceptance_rationale"] = _clean(payload.acceptance_rationale) or payload.justification.strip()
        kept["acceptance_expires_at"] = payload.acceptance_expires_at
    return kept


def submit_decision(db: Session, risk: Risk, actor_id: str, payload: TreatmentDecisionPayload) -> TransitionOutcome:
    treatment = _treatment_in(risk, "submit treatment decision", RiskTreatmentStatus.TREATMENT_DECISION_REVIEW)
    inherent = _inherent_level(risk)
    kept = _validate_decision_fields(payload)

    now = datetime.utcnow()
    previous = treatment.status
    decision = payload.decision

    treatment.decision = decision.value
    treatment.justification = payload.justification.strip()
    for name in _DECISION_FIELDS:
        setattr(treatment, name, kept.get(name))

    required = scoring.requires_executive_approval(inherent, decision)
    next_status = scoring.next_treatment_status(inherent, decision)
    treatment.executive_approval_required = required
    if required:
        treatment.executive_approval_status = ExecutiveApprovalStatus.PENDING.value
        treatment.executive_approver_id = None
        treatment.executive_approved_at = None
    else:
        treatment.executive_approval_status = None

    treatment.status = next_status.value
    if next_status == RiskTreatmentStatus.RISK_MITIGATION_IN_PROGRESS:
        treatment.mitigation_status = MitigationStatus.ON_TRACK.value
        treatment.mitigation_progress = 0
        treatment.last_progress_update = now
        treatment.next_review_date = next_review_due(risk.review_frequency, now)
        treatment.completed_at = None
    elif is_terminal_treatment_status(next_status.value):
        treatment.completed_at = now
        if next_status == RiskTreatmentStatus.RISK_AUTO_ACCEPT and not treatment.acceptance_rationale:
            treatment.acceptance_rationale = treatment.justification

    notices = []
    if next_status == RiskTreatmentStatus.IDENTIFY_EXECUTIVE_APPROVER and treatment.grc_sme_id:
        notices.append(
            Notice(
                user_id=treatment.grc_sme_id,
                title=f"Executive approver needed: {risk.code}",
                message=f"The owner chose to {decision.value} a {inherent} risk. Identify an executive approver.",
            )
        )
    elif treatment.grc_sme_id and treatment.grc_sme_id != actor_id:
        notices.append(
            Notice(
                user_id=treatment.grc_sme_id,
                title=f"Treatment decided: {risk.code}",
                message=f"Decision '{decision.value}' routed to {next_status.value}.",
                type=RISK_STATUS_CHANGED,
            )
        )

    return TransitionOutcome(
        action="treatment_decision_submitted",
        changes={
            "treatment_status": {"from": previous, "to": treatment.status},
            "decision": decision.value,
            "inherent_risk": inherent,
            "executive_approval_required": required,
        },
        notes=treatment.justification,
        audit_description=f"Submitted treatment decision '{decision.value}' for risk {risk.code}",
        notices=notices,
    )


def assign_executive_approver(db: Session, risk: Risk, actor_id: str, payload: ExecutiveApproverPayload) -> TransitionOutcome:
    treatment = _treatment_in(risk, "assign executive approver", RiskTreatmentStatus.IDENTIFY_EXECUTIVE_APPROVER)
    approver_id = _clean(payload.executive_approver_id)
    if not approver_id:
        raise ValidationError("executive_approver_id", "executive approver is required")

    previous = treatment.status
    treatment.executive_approver_id = approver_id
    treatment.executive_approval_status = ExecutiveApprovalStatus.PENDING.value
    treatment.status = RiskTreatmentStatus.EXECUTIVE_APPROVAL.value

    return TransitionOutcome(
        action="executive_approver_assigned",
        changes={
            "treatment_status": {"from": previous, "to": treatment.status},
            "executive_approver_id": approver_id,
        },
        notes=_clean(payload.notes),
        audit_description=f"Assigned executive approver {approver_id} to risk {risk.code}",
        notices=[
            Notice(
                user_id=approver_id,
                title=f"Executive approval requested: {risk.code}",
                message=(
                    f"The owner proposes to {treatment.decision} the {risk.inherent_risk} risk "
                    f"'{risk.title}'. Please approve or deny."
                ),
                severity="warning",
            )
        ],
    )


def submit_executive_decision(db: Session, risk: Risk, actor_id: str, payload: ExecutiveDecisionPayload) -> TransitionOutcome:
    treatment = _treatment_in(risk, "submit executive decision", RiskTreatmentStatus.EXECUTIVE_APPROVAL)
    inherent = _inherent_level(risk)
    if not treatment.decision:
        raise IntegrityFault(f"Treatment for risk {risk.code} awaits approval without a decision")

    previous = treatment.status
    now = datetime.utcnow()
    treatment.executive_approval_notes = _clean(payload.notes)

    if payload.approved:
        next_status = scoring.next_treatment_status(inherent, treatment.decision, True)
        treatment.executive_approval_status = ExecutiveApprovalStatus.APPROVED.value
        treatment.executive_approved_at = now
        treatment.status = next_status.value
        treatment.completed_at = now
        action = "executive_approval_granted"
        description = f"Executive approved '{treatment.decision}' for risk {risk.code}"
        notes = treatment.executive_approval_notes
    else:
        reason = _clean(payload.denied_reason)
        if not reason:
            raise ValidationError("denied_reason", "a reason is required when denying approval")
        next_status = scoring.next_treatment_status(inherent, treatment.decision, False)
        treatment.executive_approval_status = ExecutiveApprovalStatus.DENIED.value
        treatment.executive_denied_reason = reason
        treatment.status = next_status.value
        action = "executive_approval_denied"
        description = f"Executive denied '{treatment.decision}' for risk {risk.code}: {reason}"
        notes = reason

    notices = []
    if treatment.risk_owner_id:
        notices.append(
            Notice(
                user_id=treatment.risk_owner_id,
                title=f"Executive {'approved' if payload.approved else 'denied'}: {risk.code}",
                message=description,
                type=RISK_STATUS_CHANGED,
            )
        )
    return TransitionOutcome(
        action=action,
        changes={
            "treatment_status": {"from": previous, "to": treatment.status},
            "executive_approval_status": treatment.executive_approval_status,
            "decision": treatment.decision,
        },
        notes=notes,
        audit_description=description,
        notices=notices,
    )


def update_mitigation_progress(db: Session, risk: Risk, actor_id: str, payload: MitigationUpdatePayload) -> TransitionOutcome:
    operation = "update mitigation progress"
    treatment = risk_store.require_treatment(risk, operation)
    allowed = {s.value for s in MITIGATION_PHASE_STATUSES}
    if treatment.status not in allowed:
        raise InvalidStateTransition(operation, treatment.status, allowed)
    if payload.progress is not None and not 0 <= payload.progress <= 100:
        raise ValidationError("progress", "progress must be between 0 and 100")

    status = payload.status
    now = datetime.utcnow()
    previous_treatment_status = treatment.status
    previous_mitigation_status = treatment.mitigation_status
    update = RiskTreatmentUpdate(
        update_type=_UPDATE_TYPE_BY_STATUS[status].value,
        previous_status=previous_mitigation_status,
        new_status=status.value,
        notes=_clean(payload.notes),
        created_by=actor_id,
        created_at=now,
    )
    changes: dict = {}

    if status == MitigationStatus.DELAYED:
        reason = _clean(payload.delay_reason)
        if not reason:
            raise ValidationError("delay_reason", "a reason is required when reporting a delay")
        update.delay_reason = reason
        if payload.new_target_date is not None:
            update.new_target_date = payload.new_target_date
            treatment.mitigation_target_date = payload.new_target_date
            changes["mitigation_target_date"] = payload.new_target_date.isoformat()
        treatment.status = RiskTreatmentStatus.RISK_MITIGATION_IN_PROGRESS.value
    elif status == MitigationStatus.CANCELLED:
        reason = _clean(payload.cancellation_reason)
        if not reason:
            raise ValidationError("cancellation_reason", "a reason is required when cancelling mitigation")
        update.cancellation_reason = reason
        treatment.status = RiskTreatmentStatus.TREATMENT_DECISION_REVIEW.value
    elif status == MitigationStatus.DONE:
        if payload.residual_likelihood is None:
            raise ValidationError("residual_likelihood", "residual likelihood is required to complete mitigation")
        if payload.residual_impact is None:
            raise ValidationError("residual_impact", "residual impact is required to complete mitigation")
        residual = scoring.risk_level(payload.residual_likelihood, payload.residual_impact).value
        treatment.residual_likelihood = payload.residual_likelihood.value
        treatment.residual_impact = payload.residual_impact.value
        treatment.residual_risk_score = residual
        treatment.mitigation_actual_date = now
        treatment.completed_at = now
        treatment.status = RiskTreatmentStatus.RISK_MITIGATION_COMPLETE.value
        risk.residual_risk = residual
        update.completion_evidence = payload.completion_evidence
        update.effectiveness_notes = payload.effectiveness_notes
        changes["residual_risk"] = residual
    else:
        treatment.status = RiskTreatmentStatus.RISK_MITIGATION_IN_PROGRESS.value

    if status == MitigationStatus.DONE:
        treatment.mitigation_progress = 100
    elif payload.progress is not None:
        treatment.mitigation_progress = payload.progress
    update.progress = treatment.mitigation_progress
    treatment.mitigation_status = status.value
    treatment.last_progress_update = now
    if payload.next_review_date is not None:
        treatment.next_review_date = payload.next_review_date
    treatment.updates.append(update)

    notices = []
    if treatment.grc_sme_id and treatment.grc_sme_id != actor_id:
        notices.append(
            Notice(
                user_id=treatment.grc_sme_id,
                title=f"Mitigation {status.value.replace('_', ' ')}: {risk.code}",
                message=update.notes or f"Mitigation progress is now {treatment.mitigation_progress}%.",
                type=RISK_STATUS_CHANGED,
                severity="warning" if status in (MitigationStatus.DELAYED, MitigationStatus.CANCELLED) else "info",
            )
        )
    changes.update(
        {
            "treatment_status": {"from": previous_treatment_status, "to": treatment.status},
            "mitigation_status": {"from": previous_mitigation_status, "to": status.value},
            "progress": treatment.mitigation_progress,
        }
    )
    return TransitionOutcome(
        action="mitigation_update",
        changes=changes,
        notes=update.notes,
        audit_description=(
            f"Mitigation update '{status.value}' for risk {risk.code} ({treatment.mitigation_progress}%)"
        ),
        notices=notices,
    )

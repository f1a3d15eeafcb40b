from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.config import get_settings
from app.enums import RiskAssessmentStatus, RiskIntakeStatus
from app.errors import ConflictError, InvalidStateTransition, ValidationError
from app.models import Risk, RiskAssessment
from app.schemas import RiskIntakePayload, RiskUpdatePayload, StartAssessmentPayload, ValidateRiskPayload
from app.services import risk_store
from app.services.notifications import RISK_STATUS_CHANGED, Notice
from app.services.risk_history import TransitionOutcome
from app.utils.cadence import next_review_due, parse_frequency
from app.utils.jsonx import from_json, to_json


def _clean(value: str | None) -> str:
    return str(value or "").strip()


def _require_status(risk: Risk, operation: str, required: RiskIntakeStatus) -> None:
    if risk.status != required.value:
        raise InvalidStateTransition(operation, risk.status, required.value)


def submit_risk(db: Session, organization_id: str, reporter_id: str, payload: RiskIntakePayload) -> tuple[Risk, TransitionOutcome]:
    """Create a new Risk in `risk_identified`. The caller adds history and commits."""
    title = _clean(payload.title)
    description = _clean(payload.description)
    if not title:
        raise ValidationError("title", "title is required")
    if not description:
        raise ValidationError("description", "description is required")

    frequency = payload.review_frequency or parse_frequency(get_settings().default_review_frequency)
    tags = [t.strip() for t in payload.tags if str(t or "").strip()]
    risk = Risk(
        organization_id=organization_id,
        code=risk_store.next_risk_code(db, organization_id),
        title=title,
        description=description,
        category=_clean(payload.category) or "security",
        source=payload.source.value,
        initial_severity=payload.initial_severity.value,
        tags_json=to_json(tags),
        documentation_json=to_json(payload.documentation or {}),
        status=RiskIntakeStatus.RISK_IDENTIFIED.value,
        reporter_id=reporter_id,
        review_frequency=frequency.value,
        next_review_due=next_review_due(frequency, datetime.utcnow()),
        created_by=reporter_id,
        updated_by=reporter_id,
    )
    db.add(risk)

    outcome = TransitionOutcome(
        action="risk_submitted",
        changes={"status": {"from": None, "to": risk.status}, "code": risk.code},
        audit_description=f"Submitted risk {risk.code}: {title}",
    )
    return risk, outcome


def update_risk(db: Session, risk: Risk, actor_id: str, payload: RiskUpdatePayload) -> TransitionOutcome:
    """Edit descriptive fields in any status. Only the fields present in the payload change."""
    given = payload.model_dump(exclude_unset=True)
    if not given:
        raise ValidationError("payload", "at least one field must be given")

    wanted: dict = {}
    for name in ("title", "description"):
        if name in given:
            wanted[name] = _clean(given[name])
            if not wanted[name]:
                raise ValidationError(name, f"{name} cannot be blank")
    if "category" in given:
        wanted["category"] = _clean(given["category"]) or "security"
    if payload.source is not None:
        wanted["source"] = payload.source.value
    if payload.initial_severity is not None:
        wanted["initial_severity"] = payload.initial_severity.value

    before: dict = {}
    after: dict = {}
    for name, value in wanted.items():
        if getattr(risk, name) != value:
            before[name] = getattr(risk, name)
            after[name] = value
            setattr(risk, name, value)
    if payload.tags is not None:
        tags = [t.strip() for t in payload.tags if str(t or "").strip()]
        current = from_json(risk.tags_json, [])
        if tags != current:
            before["tags"] = current
            after["tags"] = tags
            risk.tags_json = to_json(tags)

    return TransitionOutcome(
        action="risk_updated",
        changes={"before": before, "after": after},
        audit_description=f"Updated risk {risk.code}: {risk.title}",
    )


def validate_risk(db: Session, risk: Risk, actor_id: str, payload: ValidateRiskPayload) -> TransitionOutcome:
    _require_status(risk, "validate risk", RiskIntakeStatus.RISK_IDENTIFIED)
    previous = risk.status

    if payload.approved:
        risk.status = RiskIntakeStatus.ACTUAL_RISK.value
        risk.grc_sme_id = actor_id
        assessor_id = _clean(payload.assessor_id)
        if assessor_id:
            risk.risk_assessor_id = assessor_id
        action = "risk_validated"
        description = f"Validated risk {risk.code} as an actual risk"
        notes = _clean(payload.notes)
    else:
        reason = _clean(payload.reason)
        if not reason:
            raise ValidationError("reason", "a reason is required when declining a risk")
        risk.status = RiskIntakeStatus.NOT_A_RISK.value
        risk.grc_sme_id = actor_id
        action = "risk_rejected"
        description = f"Declined risk {risk.code}: {reason}"
        notes = reason

    notices = []
    if risk.reporter_id and risk.reporter_id != actor_id:
        notices.append(
            Notice(
                user_id=risk.reporter_id,
                title=f"Risk {risk.code} {'validated' if payload.approved else 'declined'}",
                message=description,
                type=RISK_STATUS_CHANGED,
            )
        )
    if payload.approved and risk.risk_assessor_id:
        notices.append(
            Notice(
                user_id=risk.risk_assessor_id,
                title=f"Assessment pending for {risk.code}",
                message=f"You have been pre-assigned as assessor for '{risk.title}'.",
            )
        )

    return TransitionOutcome(
        action=action,
        changes={
            "status": {"from": previous, "to": risk.status},
            "grc_sme_id": risk.grc_sme_id,
            "risk_assessor_id": risk.risk_assessor_id,
        },
        notes=notes,
        audit_description=description,
        notices=notices,
    )


def start_assessment(db: Session, risk: Risk, actor_id: str, payload: StartAssessmentPayload) -> TransitionOutcome:
    _require_status(risk, "start assessment", RiskIntakeStatus.ACTUAL_RISK)
    if risk.assessment is not None:
        raise ConflictError(f"Risk {risk.code} already has an assessment")

    assessor_id = _clean(payload.assessor_id) or _clean(risk.risk_assessor_id)
    if not assessor_id:
        raise ValidationError("assessor_id", "an assessor must be given or pre-assigned during validation")

    previous = risk.status
    risk.risk_assessor_id = assessor_id
    risk.status = RiskIntakeStatus.RISK_ANALYSIS_IN_PROGRESS.value
    risk.assessment = RiskAssessment(
        status=RiskAssessmentStatus.RISK_ASSESSOR_ANALYSIS.value,
        risk_assessor_id=assessor_id,
        grc_sme_id=risk.grc_sme_id or actor_id,
        created_at=datetime.utcnow(),
    )

    return TransitionOutcome(
        action="risk_assessor_assigned",
        changes={
            "status": {"from": previous, "to": risk.status},
            "risk_assessor_id": assessor_id,
            "assessment_status": RiskAssessmentStatus.RISK_ASSESSOR_ANALYSIS.value,
        },
        notes=_clean(payload.notes),
        audit_description=f"Assigned assessor {assessor_id} to risk {risk.code}",
        notices=[
            Notice(
                user_id=assessor_id,
                title=f"Risk assessment assigned: {risk.code}",
                message=f"Please analyse '{risk.title}' and submit likelihood and impact.",
            )
        ],
    )

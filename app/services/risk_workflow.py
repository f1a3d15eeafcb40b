"""
Workflow orchestrator for the risk lifecycle.

Every public transition runs the same unit of work: load the Risk (row lock
where the dialect has one), apply the stage step, stamp the Risk, append one
history row, commit. Audit logging, notifications and cache invalidation only
happen after a successful commit and never undo it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import get_settings
from app.enums import (
    MITIGATION_PHASE_STATUSES,
    Impact,
    Likelihood,
    RiskAssessmentStatus,
    RiskIntakeStatus,
    RiskLevel,
    RiskTreatmentStatus,
)
from app.errors import ConflictError, IntegrityFault, RiskWorkflowError, ValidationError
from app.models import Risk
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
from app.services import (
    assessment_stage,
    audit_log,
    intake_stage,
    notifications,
    risk_cache,
    risk_history,
    risk_store,
    treatment_stage,
)
from app.services.risk_history import TransitionOutcome
from app.utils.cadence import next_review_due
from app.utils.jsonx import to_json

logger = logging.getLogger(__name__)

Step = Callable[[Session, Risk, str, Any], TransitionOutcome]


@dataclass(frozen=True)
class ActorContext:
    organization_id: str
    actor_id: str
    actor_email: str = ""


@contextmanager
def _unit_of_work(db: Session, operation: str, risk_ref: str):
    try:
        yield
        db.commit()
    except IntegrityFault as exc:
        db.rollback()
        logger.error("Integrity fault during %s on risk %s: %s", operation, risk_ref, exc.message)
        raise
    except RiskWorkflowError:
        db.rollback()
        raise
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        logger.warning("Concurrent modification during %s on risk %s: %s", operation, risk_ref, exc)
        raise ConflictError(f"Risk {risk_ref} was modified concurrently; reload and retry") from exc
    except Exception:
        db.rollback()
        raise


def _after_commit(db: Session, ctx: ActorContext, risk: Risk, outcome: TransitionOutcome) -> None:
    logger.info("Risk %s: %s by %s (status=%s)", risk.code, outcome.action, ctx.actor_id, risk.status)
    audit_log.log_event(
        db,
        organization_id=ctx.organization_id,
        user_id=ctx.actor_id,
        user_email=ctx.actor_email,
        action=outcome.action,
        entity_id=risk.id,
        entity_name=risk.title,
        description=outcome.audit_description or outcome.action,
        changes=outcome.changes,
    )
    notifications.dispatch(db, ctx.organization_id, risk.id, outcome.notices)
    risk_cache.invalidate_risk_caches(ctx.organization_id)


def _run_transition(db: Session, ctx: ActorContext, risk_id: str, operation: str, step: Step, payload: Any) -> dict:
    with _unit_of_work(db, operation, risk_id):
        risk = risk_store.load_risk(db, ctx.organization_id, risk_id, for_update=True)
        outcome = step(db, risk, ctx.actor_id, payload)
        risk_store.touch(risk, ctx.actor_id)
        risk_history.append_history(db, risk, outcome, ctx.actor_id)
    view = risk_store.risk_to_dict(risk)
    _after_commit(db, ctx, risk, outcome)
    return view


# Intake


def submit_risk(db: Session, ctx: ActorContext, payload: RiskIntakePayload) -> dict:
    with _unit_of_work(db, "submit risk", "new"):
        risk, outcome = intake_stage.submit_risk(db, ctx.organization_id, ctx.actor_id, payload)
        risk_history.append_history(db, risk, outcome, ctx.actor_id)
    view = risk_store.risk_to_dict(risk)
    _after_commit(db, ctx, risk, outcome)
    return view


def update_risk(db: Session, ctx: ActorContext, risk_id: str, payload: RiskUpdatePayload) -> dict:
    return _run_transition(db, ctx, risk_id, "update risk", intake_stage.update_risk, payload)


def validate_risk(db: Session, ctx: ActorContext, risk_id: str, payload: ValidateRiskPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "validate risk", intake_stage.validate_risk, payload)


def start_assessment(db: Session, ctx: ActorContext, risk_id: str, payload: StartAssessmentPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "start assessment", intake_stage.start_assessment, payload)


# Assessment


def submit_assessment(db: Session, ctx: ActorContext, risk_id: str, payload: AssessmentPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "submit assessment", assessment_stage.submit_assessment, payload)


def review_assessment(db: Session, ctx: ActorContext, risk_id: str, payload: AssessmentReviewPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "review assessment", assessment_stage.review_assessment, payload)


def complete_revision(db: Session, ctx: ActorContext, risk_id: str, payload: AssessmentRevisionPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "complete revision", assessment_stage.complete_revision, payload)


# Treatment


def submit_treatment_decision(db: Session, ctx: ActorContext, risk_id: str, payload: TreatmentDecisionPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "submit treatment decision", treatment_stage.submit_decision, payload)


def assign_executive_approver(db: Session, ctx: ActorContext, risk_id: str, payload: ExecutiveApproverPayload) -> dict:
    return _run_transition(
        db, ctx, risk_id, "assign executive approver", treatment_stage.assign_executive_approver, payload
    )


def submit_executive_decision(db: Session, ctx: ActorContext, risk_id: str, payload: ExecutiveDecisionPayload) -> dict:
    return _run_transition(
        db, ctx, risk_id, "submit executive decision", treatment_stage.submit_executive_decision, payload
    )


def update_mitigation_progress(db: Session, ctx: ActorContext, risk_id: str, payload: MitigationUpdatePayload) -> dict:
    return _run_transition(
        db, ctx, risk_id, "update mitigation progress", treatment_stage.update_mitigation_progress, payload
    )


# Housekeeping


def _mark_reviewed_step(db: Session, risk: Risk, actor_id: str, payload: MarkReviewedPayload) -> TransitionOutcome:
    now = datetime.utcnow()
    previous_due = risk.next_review_due
    risk.last_reviewed_at = now
    risk.next_review_due = next_review_due(risk.review_frequency, now)
    return TransitionOutcome(
        action="reviewed",
        changes={
            "last_reviewed_at": now.isoformat(),
            "next_review_due": {
                "from": previous_due.isoformat() if previous_due else None,
                "to": risk.next_review_due.isoformat(),
            },
        },
        notes=str(payload.notes or "").strip(),
        audit_description=f"Reviewed risk {risk.code}",
    )


def _delete_step(db: Session, risk: Risk, actor_id: str, payload: DeleteRiskPayload) -> TransitionOutcome:
    risk.deleted_at = datetime.utcnow()
    risk.deleted_by = actor_id
    reason = str(payload.reason or "").strip()
    return TransitionOutcome(
        action="risk_deleted",
        changes={"deleted_at": risk.deleted_at.isoformat(), "status": risk.status},
        notes=reason,
        audit_description=f"Deleted risk {risk.code}" + (f": {reason}" if reason else ""),
    )


def mark_reviewed(db: Session, ctx: ActorContext, risk_id: str, payload: MarkReviewedPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "mark reviewed", _mark_reviewed_step, payload)


def delete_risk(db: Session, ctx: ActorContext, risk_id: str, payload: DeleteRiskPayload) -> dict:
    return _run_transition(db, ctx, risk_id, "delete risk", _delete_step, payload)


# Read side

_INTAKE_STAGES: dict[str, tuple[str, list[str]]] = {
    RiskIntakeStatus.RISK_IDENTIFIED.value: ("intake_review", ["validate_risk"]),
    RiskIntakeStatus.NOT_A_RISK.value: ("declined", []),
    RiskIntakeStatus.ACTUAL_RISK.value: ("awaiting_assessor", ["start_assessment"]),
}

_ASSESSMENT_STAGES: dict[str, tuple[str, list[str]]] = {
    RiskAssessmentStatus.RISK_ASSESSOR_ANALYSIS.value: ("assessment", ["submit_assessment"]),
    RiskAssessmentStatus.GRC_APPROVAL.value: ("grc_review", ["review_assessment"]),
    RiskAssessmentStatus.GRC_REVISION.value: ("grc_revision", ["complete_revision"]),
}

_TREATMENT_STAGES: dict[str, tuple[str, list[str]]] = {
    RiskTreatmentStatus.TREATMENT_DECISION_REVIEW.value: ("treatment_decision", ["submit_treatment_decision"]),
    RiskTreatmentStatus.IDENTIFY_EXECUTIVE_APPROVER.value: ("identify_executive", ["assign_executive_approver"]),
    RiskTreatmentStatus.EXECUTIVE_APPROVAL.value: ("awaiting_executive_approval", ["submit_executive_decision"]),
    RiskTreatmentStatus.RISK_MITIGATION_COMPLETE.value: ("completed", []),
}


def workflow_stage(risk: Risk) -> tuple[str, list[str]]:
    """Return (current_stage, available_actions) for a loaded Risk."""
    if risk.status in _INTAKE_STAGES:
        return _INTAKE_STAGES[risk.status]
    if risk.status == RiskIntakeStatus.RISK_ANALYSIS_IN_PROGRESS.value:
        if risk.assessment is None:
            return "assessment", []
        return _ASSESSMENT_STAGES.get(risk.assessment.status, ("assessment", []))
    if risk.treatment is None:
        return "treatment_decision", []
    status = risk.treatment.status
    if status in _TREATMENT_STAGES:
        return _TREATMENT_STAGES[status]
    if status in {s.value for s in MITIGATION_PHASE_STATUSES}:
        return "mitigation_in_progress", ["update_mitigation_progress"]
    return "treatment_final", []


def get_risk(db: Session, ctx: ActorContext, risk_id: str) -> dict:
    return risk_store.risk_to_dict(risk_store.load_risk(db, ctx.organization_id, risk_id))


def get_workflow_state(db: Session, ctx: ActorContext, risk_id: str) -> dict:
    risk = risk_store.load_risk(db, ctx.organization_id, risk_id)
    stage, actions = workflow_stage(risk)
    view = risk_store.risk_to_dict(risk)
    view["current_stage"] = stage
    view["available_actions"] = list(actions)
    return view


def list_history(db: Session, ctx: ActorContext, risk_id: str, limit: int | None = None) -> list[dict]:
    risk = risk_store.load_risk(db, ctx.organization_id, risk_id)
    return risk_history.list_history(db, risk.id, limit=limit or get_settings().history_page_size)


def _live_risks(organization_id: str):
    return select(Risk).where(Risk.organization_id == organization_id, Risk.deleted_at.is_(None))


LIST_PAGE_SIZE = 50
REVIEWS_DUE_WINDOW = timedelta(days=30)

_OPEN_STATUSES = (
    RiskIntakeStatus.RISK_IDENTIFIED.value,
    RiskIntakeStatus.ACTUAL_RISK.value,
    RiskIntakeStatus.RISK_ANALYSIS_IN_PROGRESS.value,
    RiskIntakeStatus.RISK_ANALYZED.value,
)


def _filtered(stmt, filters: RiskListFilter):
    if filters.search and filters.search.strip():
        term = filters.search.strip().lower()
        stmt = stmt.where(
            or_(
                func.lower(Risk.title).contains(term, autoescape=True),
                func.lower(Risk.description).contains(term, autoescape=True),
                func.lower(Risk.code).contains(term, autoescape=True),
            )
        )
    if filters.category:
        stmt = stmt.where(Risk.category == filters.category)
    if filters.status is not None:
        stmt = stmt.where(Risk.status == filters.status.value)
    if filters.risk_level is not None:
        stmt = stmt.where(Risk.inherent_risk == filters.risk_level.value)
    if filters.owner_id:
        stmt = stmt.where(Risk.risk_owner_id == filters.owner_id)
    if filters.tag:
        # Tags live in a JSON text column; match the encoded string element.
        stmt = stmt.where(Risk.tags_json.contains(to_json(filters.tag), autoescape=True))
    if filters.source is not None:
        stmt = stmt.where(Risk.source == filters.source.value)
    if filters.grc_sme_id:
        stmt = stmt.where(Risk.grc_sme_id == filters.grc_sme_id)
    if filters.risk_assessor_id:
        stmt = stmt.where(Risk.risk_assessor_id == filters.risk_assessor_id)
    if filters.is_open:
        stmt = stmt.where(Risk.status.in_(_OPEN_STATUSES))
    if filters.reviews_due:
        stmt = stmt.where(
            Risk.next_review_due.is_not(None),
            Risk.next_review_due <= datetime.utcnow() + REVIEWS_DUE_WINDOW,
        )
    return stmt


def _list_item(r: Risk) -> dict:
    return {
        "id": r.id,
        "code": r.code,
        "title": r.title,
        "category": r.category,
        "source": r.source,
        "status": r.status,
        "inherent_risk": r.inherent_risk,
        "residual_risk": r.residual_risk,
        "risk_owner_id": r.risk_owner_id,
        "next_review_due": r.next_review_due.isoformat() + "Z" if r.next_review_due else None,
    }


def list_risks(
    db: Session,
    ctx: ActorContext,
    filters: RiskListFilter | None = None,
    page: int = 1,
    limit: int = LIST_PAGE_SIZE,
) -> dict:
    """
    One page of live risks ordered by code, with the total matching count.

    Only the unfiltered first page at the default size is cached; writes
    invalidate it with the rest of the organization's read caches.
    """
    filters = filters or RiskListFilter()
    if page < 1:
        raise ValidationError("page", "page must be 1 or greater")
    if limit < 1:
        raise ValidationError("limit", "limit must be 1 or greater")

    cacheable = filters.is_empty() and page == 1 and limit == LIST_PAGE_SIZE
    key = risk_cache.list_key(ctx.organization_id)
    if cacheable:
        cached = risk_cache.get(key)
        if cached is not None:
            return cached

    stmt = _filtered(_live_risks(ctx.organization_id), filters)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(Risk.code.asc()).offset((page - 1) * limit).limit(limit)).scalars().all()
    result = {"items": [_list_item(r) for r in rows], "total": int(total), "page": page, "limit": limit}
    if cacheable:
        risk_cache.put(key, result)
    return result


def risk_matrix(db: Session, ctx: ActorContext) -> list[list[int]]:
    """5x5 counts of live scored risks; rows are likelihood, columns impact, both ascending."""
    key = risk_cache.matrix_key(ctx.organization_id)
    cached = risk_cache.get(key)
    if cached is not None:
        return cached
    likelihoods = [l.value for l in Likelihood]
    impacts = [i.value for i in Impact]
    matrix = [[0 for _ in impacts] for _ in likelihoods]
    stmt = (
        select(Risk.likelihood, Risk.impact, func.count(Risk.id))
        .where(
            Risk.organization_id == ctx.organization_id,
            Risk.deleted_at.is_(None),
            Risk.likelihood.is_not(None),
            Risk.impact.is_not(None),
        )
        .group_by(Risk.likelihood, Risk.impact)
    )
    for likelihood, impact, count in db.execute(stmt).all():
        if likelihood in likelihoods and impact in impacts:
            matrix[likelihoods.index(likelihood)][impacts.index(impact)] = int(count)
    risk_cache.put(key, matrix)
    return matrix


def risk_summary(db: Session, ctx: ActorContext) -> dict:
    key = risk_cache.dashboard_key(ctx.organization_id)
    cached = risk_cache.get(key)
    if cached is not None:
        return cached

    by_status = {s.value: 0 for s in RiskIntakeStatus}
    status_stmt = (
        select(Risk.status, func.count(Risk.id))
        .where(Risk.organization_id == ctx.organization_id, Risk.deleted_at.is_(None))
        .group_by(Risk.status)
    )
    for status, count in db.execute(status_stmt).all():
        by_status[status] = int(count)

    by_level = {lvl.value: 0 for lvl in RiskLevel}
    level_stmt = (
        select(Risk.inherent_risk, func.count(Risk.id))
        .where(
            Risk.organization_id == ctx.organization_id,
            Risk.deleted_at.is_(None),
            Risk.inherent_risk.is_not(None),
        )
        .group_by(Risk.inherent_risk)
    )
    for level_value, count in db.execute(level_stmt).all():
        by_level[level_value] = int(count)

    summary = {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_inherent_risk": by_level,
        "matrix": {
            "likelihood": [l.value for l in Likelihood],
            "impact": [i.value for i in Impact],
            "counts": risk_matrix(db, ctx),
        },
    }
    risk_cache.put(key, summary)
    return summary

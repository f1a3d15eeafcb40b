from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db import Base


def _uuid() -> str:
    return str(uuid4())


class Risk(Base):
    __tablename__ = "risks"
    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="ux_risks_organization_code"),
        Index("ix_risks_organization_status", "organization_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(64), nullable=False, index=True)
    code = Column(String(16), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, default="", nullable=False)
    category = Column(String(32), default="security", nullable=False, index=True)
    source = Column(String(32), nullable=False)
    initial_severity = Column(String(16), nullable=False)
    tags_json = Column(Text, default="[]", nullable=False)
    documentation_json = Column(Text, default="{}", nullable=False)
    status = Column(String(32), default="risk_identified", nullable=False, index=True)

    # Scoring, populated only by assessment approval / revision / mitigation completion.
    likelihood = Column(String(16), nullable=True)
    impact = Column(String(16), nullable=True)
    inherent_risk = Column(String(16), nullable=True, index=True)
    residual_risk = Column(String(16), nullable=True)

    reporter_id = Column(String(64), nullable=True)
    grc_sme_id = Column(String(64), nullable=True)
    risk_assessor_id = Column(String(64), nullable=True)
    risk_owner_id = Column(String(64), nullable=True, index=True)

    review_frequency = Column(String(16), default="quarterly", nullable=False)
    last_reviewed_at = Column(DateTime, nullable=True)
    next_review_due = Column(DateTime, nullable=True, index=True)

    created_by = Column(String(64), nullable=False)
    updated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True, index=True)
    deleted_by = Column(String(64), nullable=True)

    version = Column(Integer, nullable=False)

    assessment = relationship("RiskAssessment", back_populates="risk", uselist=False)
    treatment = relationship("RiskTreatment", back_populates="risk", uselist=False)
    history = relationship("RiskHistory", back_populates="risk", order_by="RiskHistory.id")
    assets = relationship("RiskAsset", back_populates="risk", cascade="all, delete-orphan")
    controls = relationship("RiskControl", back_populates="risk", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}


class RiskAssessment(Base):
    __tablename__ = "risk_assessments"

    id = Column(String(36), primary_key=True, default=_uuid)
    risk_id = Column(String(36), ForeignKey("risks.id"), unique=True, nullable=False)
    status = Column(String(32), default="risk_assessor_analysis", nullable=False, index=True)
    risk_assessor_id = Column(String(64), nullable=False)
    grc_sme_id = Column(String(64), nullable=True)

    threat_description = Column(Text, default="", nullable=False)
    vulnerabilities = Column(Text, default="", nullable=False)
    likelihood_score = Column(String(16), nullable=True)
    likelihood_rationale = Column(Text, default="", nullable=False)
    impact_score = Column(String(16), nullable=True)
    impact_rationale = Column(Text, default="", nullable=False)
    # financial / operational / reputational / legal notes
    impact_categories_json = Column(Text, default="{}", nullable=False)
    calculated_risk_score = Column(String(16), nullable=True)
    recommended_owner_id = Column(String(64), nullable=True)
    assessment_notes = Column(Text, default="", nullable=False)
    treatment_recommendation = Column(Text, default="", nullable=False)

    grc_review_notes = Column(Text, default="", nullable=False)
    grc_declined_reason = Column(Text, default="", nullable=False)

    assessor_submitted_at = Column(DateTime, nullable=True)
    grc_approved_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    risk = relationship("Risk", back_populates="assessment")


class RiskTreatment(Base):
    __tablename__ = "risk_treatments"

    id = Column(String(36), primary_key=True, default=_uuid)
    risk_id = Column(String(36), ForeignKey("risks.id"), unique=True, nullable=False)
    status = Column(String(32), default="treatment_decision_review", nullable=False, index=True)
    risk_owner_id = Column(String(64), nullable=True)
    grc_sme_id = Column(String(64), nullable=True)

    decision = Column(String(16), nullable=True)
    justification = Column(Text, default="", nullable=False)
    mitigation_description = Column(Text, nullable=True)
    mitigation_target_date = Column(DateTime, nullable=True)
    transfer_to = Column(String(255), nullable=True)
    transfer_cost = Column(Float, nullable=True)
    avoid_strategy = Column(Text, nullable=True)
    acceptance_rationale = Column(Text, nullable=True)
    acceptance_expires_at = Column(DateTime, nullable=True)

    # Derived from (inherent risk, decision); persisted for display only.
    executive_approval_required = Column(Boolean, default=False, nullable=False)
    executive_approver_id = Column(String(64), nullable=True)
    executive_approval_status = Column(String(16), nullable=True)
    executive_approval_notes = Column(Text, default="", nullable=False)
    executive_denied_reason = Column(Text, default="", nullable=False)
    executive_approved_at = Column(DateTime, nullable=True)

    mitigation_status = Column(String(16), nullable=True)
    mitigation_progress = Column(Integer, default=0, nullable=False)
    last_progress_update = Column(DateTime, nullable=True)
    next_review_date = Column(DateTime, nullable=True)
    mitigation_actual_date = Column(DateTime, nullable=True)
    residual_likelihood = Column(String(16), nullable=True)
    residual_impact = Column(String(16), nullable=True)
    residual_risk_score = Column(String(16), nullable=True)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    risk = relationship("Risk", back_populates="treatment")
    updates = relationship("RiskTreatmentUpdate", back_populates="treatment", order_by="RiskTreatmentUpdate.id")


class RiskTreatmentUpdate(Base):
    __tablename__ = "risk_treatment_updates"

    id = Column(Integer, primary_key=True, index=True)
    treatment_id = Column(String(36), ForeignKey("risk_treatments.id"), nullable=False, index=True)
    update_type = Column(String(16), nullable=False)
    previous_status = Column(String(16), nullable=True)
    new_status = Column(String(16), nullable=False)
    progress = Column(Integer, nullable=True)
    notes = Column(Text, default="", nullable=False)
    new_target_date = Column(DateTime, nullable=True)
    delay_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    completion_evidence = Column(Text, nullable=True)
    effectiveness_notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    treatment = relationship("RiskTreatment", back_populates="updates")


class RiskHistory(Base):
    __tablename__ = "risk_history"
    __table_args__ = (Index("ix_risk_history_risk_changed_at", "risk_id", "changed_at"),)

    id = Column(Integer, primary_key=True, index=True)
    risk_id = Column(String(36), ForeignKey("risks.id"), nullable=False, index=True)
    action = Column(String(64), nullable=False, index=True)
    changes_json = Column(Text, default="{}", nullable=False)
    notes = Column(Text, default="", nullable=False)
    changed_by = Column(String(64), nullable=False)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    risk = relationship("Risk", back_populates="history")


class RiskAsset(Base):
    __tablename__ = "risk_assets"
    __table_args__ = (UniqueConstraint("risk_id", "asset_id", name="ux_risk_assets_pair"),)

    id = Column(Integer, primary_key=True, index=True)
    risk_id = Column(String(36), ForeignKey("risks.id"), nullable=False, index=True)
    asset_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    risk = relationship("Risk", back_populates="assets")


class RiskControl(Base):
    __tablename__ = "risk_controls"
    __table_args__ = (UniqueConstraint("risk_id", "control_id", name="ux_risk_controls_pair"),)

    id = Column(Integer, primary_key=True, index=True)
    risk_id = Column(String(36), ForeignKey("risks.id"), nullable=False, index=True)
    control_id = Column(String(64), nullable=False, index=True)
    effectiveness = Column(String(16), default="partial", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    risk = relationship("Risk", back_populates="controls")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_entity", "entity_type", "entity_id"),)

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    user_email = Column(String(255), default="", nullable=False)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    entity_name = Column(String(255), default="", nullable=False)
    description = Column(Text, default="", nullable=False)
    changes_json = Column(Text, default="{}", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, default="", nullable=False)
    entity_type = Column(String(32), default="risk", nullable=False)
    entity_id = Column(String(64), nullable=False)
    severity = Column(String(16), default="info", nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

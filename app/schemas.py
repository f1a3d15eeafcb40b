from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.enums import (
    Impact,
    Likelihood,
    MitigationStatus,
    ReviewFrequency,
    RiskIntakeStatus,
    RiskLevel,
    RiskSource,
    TreatmentDecision,
)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("*")
    @classmethod
    def normalise_datetimes(cls, value: Any) -> Any:
        # Columns are naive UTC; shift offset-aware input instead of dropping the offset.
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


# Intake
class RiskIntakePayload(_Payload):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    source: RiskSource
    initial_severity: RiskLevel
    category: str = Field("security", max_length=32)
    tags: list[str] = Field(default_factory=list)
    documentation: dict = Field(default_factory=dict)
    review_frequency: Optional[ReviewFrequency] = None


class RiskUpdatePayload(_Payload):
    """Descriptive fields only. Status, scoring and roles move through the workflow operations."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, max_length=32)
    source: Optional[RiskSource] = None
    initial_severity: Optional[RiskLevel] = None
    tags: Optional[list[str]] = None


class RiskListFilter(_Payload):
    search: Optional[str] = None
    category: Optional[str] = None
    status: Optional[RiskIntakeStatus] = None
    risk_level: Optional[RiskLevel] = None
    owner_id: Optional[str] = None
    tag: Optional[str] = None
    source: Optional[RiskSource] = None
    grc_sme_id: Optional[str] = None
    risk_assessor_id: Optional[str] = None
    is_open: bool = False
    reviews_due: bool = False

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_defaults=True)


class ValidateRiskPayload(_Payload):
    approved: bool
    reason: Optional[str] = None
    assessor_id: Optional[str] = None
    notes: Optional[str] = None


class StartAssessmentPayload(_Payload):
    assessor_id: Optional[str] = None
    notes: Optional[str] = None


# Assessment
class ImpactCategories(_Payload):
    financial: Optional[str] = None
    operational: Optional[str] = None
    reputational: Optional[str] = None
    legal: Optional[str] = None


class AssessmentPayload(_Payload):
    threat_description: str = Field(..., min_length=1)
    likelihood: Likelihood
    impact: Impact
    vulnerabilities: str = ""
    likelihood_rationale: str = ""
    impact_rationale: str = ""
    impact_categories: Optional[ImpactCategories] = None
    recommended_owner_id: Optional[str] = None
    affected_asset_ids: list[str] = Field(default_factory=list)
    existing_control_ids: list[str] = Field(default_factory=list)
    assessment_notes: str = ""
    treatment_recommendation: str = ""


class AssessmentReviewPayload(_Payload):
    approved: bool
    notes: Optional[str] = None
    declined_reason: Optional[str] = None


class AssessmentRevisionPayload(_Payload):
    """Patch applied by the GRC SME before finalising. Omitted fields keep their value."""

    threat_description: Optional[str] = None
    likelihood: Optional[Likelihood] = None
    impact: Optional[Impact] = None
    vulnerabilities: Optional[str] = None
    likelihood_rationale: Optional[str] = None
    impact_rationale: Optional[str] = None
    impact_categories: Optional[ImpactCategories] = None
    recommended_owner_id: Optional[str] = None
    affected_asset_ids: Optional[list[str]] = None
    existing_control_ids: Optional[list[str]] = None
    assessment_notes: Optional[str] = None
    treatment_recommendation: Optional[str] = None
    notes: Optional[str] = None


# Treatment
class TreatmentDecisionPayload(_Payload):
    decision: TreatmentDecision
    justification: str
    mitigation_description: Optional[str] = None
    mitigation_target_date: Optional[datetime] = None
    transfer_to: Optional[str] = None
    transfer_cost: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    avoid_strategy: Optional[str] = None
    acceptance_rationale: Optional[str] = None
    acceptance_expires_at: Optional[datetime] = None


class ExecutiveApproverPayload(_Payload):
    executive_approver_id: str = Field(..., min_length=1)
    notes: Optional[str] = None


class ExecutiveDecisionPayload(_Payload):
    approved: bool
    notes: Optional[str] = None
    denied_reason: Optional[str] = None


class MitigationUpdatePayload(_Payload):
    status: MitigationStatus
    progress: Optional[int] = None
    notes: Optional[str] = None
    new_target_date: Optional[datetime] = None
    next_review_date: Optional[datetime] = None
    delay_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    completion_evidence: Optional[str] = None
    effectiveness_notes: Optional[str] = None
    residual_likelihood: Optional[Likelihood] = None
    residual_impact: Optional[Impact] = None


# Lifecycle housekeeping
class MarkReviewedPayload(_Payload):
    notes: Optional[str] = None


class DeleteRiskPayload(_Payload):
    reason: Optional[str] = None

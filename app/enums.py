from __future__ import annotations

from enum import Enum


class RiskSource(str, Enum):
    INTERNAL_SECURITY_REVIEWS = "internal_security_reviews"
    AD_HOC_DISCOVERY = "ad_hoc_discovery"
    EXTERNAL_SECURITY_REVIEWS = "external_security_reviews"
    INCIDENT_RESPONSE = "incident_response"
    POLICY_EXCEPTION = "policy_exception"
    EMPLOYEE_REPORTING = "employee_reporting"


class RiskLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class Likelihood(str, Enum):
    RARE = "rare"
    UNLIKELY = "unlikely"
    POSSIBLE = "possible"
    LIKELY = "likely"
    ALMOST_CERTAIN = "almost_certain"


class Impact(str, Enum):
    NEGLIGIBLE = "negligible"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    SEVERE = "severe"


class RiskIntakeStatus(str, Enum):
    RISK_IDENTIFIED = "risk_identified"
    NOT_A_RISK = "not_a_risk"
    ACTUAL_RISK = "actual_risk"
    RISK_ANALYSIS_IN_PROGRESS = "risk_analysis_in_progress"
    RISK_ANALYZED = "risk_analyzed"


class RiskAssessmentStatus(str, Enum):
    RISK_ASSESSOR_ANALYSIS = "risk_assessor_analysis"
    GRC_APPROVAL = "grc_approval"
    GRC_REVISION = "grc_revision"
    DONE = "done"


class RiskTreatmentStatus(str, Enum):
    TREATMENT_DECISION_REVIEW = "treatment_decision_review"
    IDENTIFY_EXECUTIVE_APPROVER = "identify_executive_approver"
    EXECUTIVE_APPROVAL = "executive_approval"
    RISK_MITIGATION_IN_PROGRESS = "risk_mitigation_in_progress"
    MITIGATION_STATUS_UPDATE = "mitigation_status_update"
    MITIGATION_STATUS_ROUTING = "mitigation_status_routing"
    RISK_MITIGATION_COMPLETE = "risk_mitigation_complete"
    RISK_ACCEPT = "risk_accept"
    RISK_TRANSFER = "risk_transfer"
    RISK_AVOID = "risk_avoid"
    RISK_AUTO_ACCEPT = "risk_auto_accept"


class TreatmentDecision(str, Enum):
    ACCEPT = "accept"
    MITIGATE = "mitigate"
    TRANSFER = "transfer"
    AVOID = "avoid"


class ExecutiveApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class MitigationStatus(str, Enum):
    ON_TRACK = "on_track"
    DELAYED = "delayed"
    CANCELLED = "cancelled"
    DONE = "done"


class TreatmentUpdateType(str, Enum):
    PROGRESS = "progress"
    DELAY = "delay"
    CANCELLATION = "cancellation"
    COMPLETION = "completion"


class ReviewFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"


TERMINAL_TREATMENT_STATUSES = frozenset(
    {
        RiskTreatmentStatus.RISK_MITIGATION_COMPLETE,
        RiskTreatmentStatus.RISK_ACCEPT,
        RiskTreatmentStatus.RISK_TRANSFER,
        RiskTreatmentStatus.RISK_AVOID,
        RiskTreatmentStatus.RISK_AUTO_ACCEPT,
    }
)

MITIGATION_PHASE_STATUSES = frozenset(
    {
        RiskTreatmentStatus.RISK_MITIGATION_IN_PROGRESS,
        RiskTreatmentStatus.MITIGATION_STATUS_UPDATE,
        RiskTreatmentStatus.MITIGATION_STATUS_ROUTING,
    }
)


def is_terminal_treatment_status(status: str | None) -> bool:
    if not status:
        return False
    return RiskTreatmentStatus(status) in TERMINAL_TREATMENT_STATUSES

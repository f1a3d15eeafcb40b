from __future__ import annotations

from app.enums import Impact, Likelihood, RiskLevel, RiskTreatmentStatus, TreatmentDecision
from app.errors import ValidationError

LIKELIHOOD_VALUES: dict[Likelihood, int] = {
    Likelihood.RARE: 1,
    Likelihood.UNLIKELY: 2,
    Likelihood.POSSIBLE: 3,
    Likelihood.LIKELY: 4,
    Likelihood.ALMOST_CERTAIN: 5,
}

IMPACT_VALUES: dict[Impact, int] = {
    Impact.NEGLIGIBLE: 1,
    Impact.MINOR: 2,
    Impact.MODERATE: 3,
    Impact.MAJOR: 4,
    Impact.SEVERE: 5,
}

# Canonical score -> level cut points, checked top-down.
LEVEL_THRESHOLDS: tuple[tuple[int, RiskLevel], ...] = (
    (16, RiskLevel.VERY_HIGH),
    (12, RiskLevel.HIGH),
    (6, RiskLevel.MEDIUM),
    (3, RiskLevel.LOW),
)

_TERMINAL_BY_DECISION: dict[TreatmentDecision, RiskTreatmentStatus] = {
    TreatmentDecision.MITIGATE: RiskTreatmentStatus.RISK_MITIGATION_IN_PROGRESS,
    TreatmentDecision.ACCEPT: RiskTreatmentStatus.RISK_ACCEPT,
    TreatmentDecision.TRANSFER: RiskTreatmentStatus.RISK_TRANSFER,
    TreatmentDecision.AVOID: RiskTreatmentStatus.RISK_AVOID,
}

_APPROVAL_LEVELS = frozenset({RiskLevel.HIGH, RiskLevel.VERY_HIGH})
_AUTO_ACCEPT_LEVELS = frozenset({RiskLevel.LOW, RiskLevel.VERY_LOW})


def _likelihood(value: Likelihood | str) -> Likelihood:
    try:
        return Likelihood(value)
    except ValueError as exc:
        raise ValidationError("likelihood", f"unknown likelihood '{value}'") from exc


def _impact(value: Impact | str) -> Impact:
    try:
        return Impact(value)
    except ValueError as exc:
        raise ValidationError("impact", f"unknown impact '{value}'") from exc


def _level(value: RiskLevel | str) -> RiskLevel:
    try:
        return RiskLevel(value)
    except ValueError as exc:
        raise ValidationError("risk_level", f"unknown risk level '{value}'") from exc


def _decision(value: TreatmentDecision | str) -> TreatmentDecision:
    try:
        return TreatmentDecision(value)
    except ValueError as exc:
        raise ValidationError("decision", f"unknown treatment decision '{value}'") from exc


def score(likelihood: Likelihood | str, impact: Impact | str) -> int:
    """Likelihood x impact on the 1..25 grid."""
    return LIKELIHOOD_VALUES[_likelihood(likelihood)] * IMPACT_VALUES[_impact(impact)]


def level(value: int) -> RiskLevel:
    for cut, bucket in LEVEL_THRESHOLDS:
        if value >= cut:
            return bucket
    return RiskLevel.VERY_LOW


def risk_level(likelihood: Likelihood | str, impact: Impact | str) -> RiskLevel:
    return level(score(likelihood, impact))


def terminal_status_for(decision: TreatmentDecision | str) -> RiskTreatmentStatus:
    return _TERMINAL_BY_DECISION[_decision(decision)]


def requires_executive_approval(risk_level_value: RiskLevel | str, decision: TreatmentDecision | str) -> bool:
    if _decision(decision) == TreatmentDecision.MITIGATE:
        return False
    return _level(risk_level_value) in _APPROVAL_LEVELS


def next_treatment_status(
    risk_level_value: RiskLevel | str,
    decision: TreatmentDecision | str,
    executive_approved: bool | None = None,
) -> RiskTreatmentStatus:
    """
    Route a treatment decision.

    Mitigation always goes straight to tracking. Low/very low risks are
    auto-accepted whatever the owner picked. Medium risks land on the terminal
    status for the decision. High/very high risks wait for an executive, then
    either land on the terminal status (approved) or go back for a new
    decision (denied).
    """
    bucket = _level(risk_level_value)
    choice = _decision(decision)

    if choice == TreatmentDecision.MITIGATE:
        return RiskTreatmentStatus.RISK_MITIGATION_IN_PROGRESS
    if bucket in _AUTO_ACCEPT_LEVELS:
        return RiskTreatmentStatus.RISK_AUTO_ACCEPT
    if bucket == RiskLevel.MEDIUM:
        return terminal_status_for(choice)
    if executive_approved is None:
        return RiskTreatmentStatus.IDENTIFY_EXECUTIVE_APPROVER
    if executive_approved:
        return terminal_status_for(choice)
    return RiskTreatmentStatus.TREATMENT_DECISION_REVIEW

import argparse
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app import db as app_db  # noqa: E402
from app import models as _models  # noqa: E402,F401
from app.enums import Impact, Likelihood, MitigationStatus, RiskLevel, RiskSource, TreatmentDecision  # noqa: E402
from app.schemas import (  # noqa: E402
    AssessmentPayload,
    AssessmentReviewPayload,
    MitigationUpdatePayload,
    RiskIntakePayload,
    StartAssessmentPayload,
    TreatmentDecisionPayload,
    ValidateRiskPayload,
)
from app.services import risk_workflow  # noqa: E402
from app.services.risk_workflow import ActorContext  # noqa: E402

DEMO_RISKS = [
    {
        "title": "Legacy VPN concentrator without MFA",
        "description": "Remote access gateway accepts password-only logins.",
        "source": RiskSource.INTERNAL_SECURITY_REVIEWS,
        "severity": RiskLevel.HIGH,
        "likelihood": Likelihood.LIKELY,
        "impact": Impact.MAJOR,
        "decision": TreatmentDecision.MITIGATE,
        "finish": True,
    },
    {
        "title": "Shared admin password on print servers",
        "description": "Print fleet uses a single local admin credential.",
        "source": RiskSource.EMPLOYEE_REPORTING,
        "severity": RiskLevel.LOW,
        "likelihood": Likelihood.UNLIKELY,
        "impact": Impact.MINOR,
        "decision": TreatmentDecision.ACCEPT,
        "finish": False,
    },
    {
        "title": "Payment vendor lacks SOC 2 report",
        "description": "Card processor could not provide a current attestation.",
        "source": RiskSource.EXTERNAL_SECURITY_REVIEWS,
        "severity": RiskLevel.MEDIUM,
        "likelihood": Likelihood.POSSIBLE,
        "impact": Impact.MODERATE,
        "decision": TreatmentDecision.TRANSFER,
        "finish": False,
    },
]


def seed(organization_id: str) -> None:
    reporter = ActorContext(organization_id, "demo-reporter")
    grc = ActorContext(organization_id, "demo-grc")
    assessor = ActorContext(organization_id, "demo-assessor")
    owner = ActorContext(organization_id, "demo-owner")

    with app_db.SessionLocal() as db:
        for demo in DEMO_RISKS:
            risk = risk_workflow.submit_risk(
                db,
                reporter,
                RiskIntakePayload(
                    title=demo["title"],
                    description=demo["description"],
                    source=demo["source"],
                    initial_severity=demo["severity"],
                ),
            )
            rid = risk["id"]
            risk_workflow.validate_risk(db, grc, rid, ValidateRiskPayload(approved=True))
            risk_workflow.start_assessment(db, grc, rid, StartAssessmentPayload(assessor_id=assessor.actor_id))
            risk_workflow.submit_assessment(
                db,
                assessor,
                rid,
                AssessmentPayload(
                    threat_description=demo["description"],
                    likelihood=demo["likelihood"],
                    impact=demo["impact"],
                    recommended_owner_id=owner.actor_id,
                ),
            )
            risk_workflow.review_assessment(db, grc, rid, AssessmentReviewPayload(approved=True))
            decision = TreatmentDecisionPayload(
                decision=demo["decision"],
                justification="Seeded demo decision",
                mitigation_description="Roll out phishing-resistant MFA" if demo["decision"] == TreatmentDecision.MITIGATE else None,
                transfer_to="Cyber insurance carrier" if demo["decision"] == TreatmentDecision.TRANSFER else None,
            )
            result = risk_workflow.submit_treatment_decision(db, owner, rid, decision)
            if demo["finish"]:
                result = risk_workflow.update_mitigation_progress(
                    db,
                    owner,
                    rid,
                    MitigationUpdatePayload(
                        status=MitigationStatus.DONE,
                        residual_likelihood=Likelihood.RARE,
                        residual_impact=Impact.MAJOR,
                        notes="MFA enforced for all remote users",
                    ),
                )
            print(f"Seeded: {result['code']} - {result['title']} ({result['treatment']['status']})")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo risks through the workflow.")
    parser.add_argument("--org", default="demo-org", help="Organization id (default: demo-org)")
    args = parser.parse_args()
    app_db.Base.metadata.create_all(bind=app_db.engine)
    seed(args.org)


if __name__ == "__main__":
    main()

from __future__ import annotations

import sys
import tempfile
from pathlib import Path

import pytest


ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
VENV_SITE_PACKAGES = ROOT_DIR / ".venv" / "Lib" / "site-packages"

for path in (ROOT_DIR, SRC_DIR, VENV_SITE_PACKAGES):
    value = str(path)
    if path.exists() and value not in sys.path:
        sys.path.insert(0, value)

import app.db as app_db  # noqa: E402
from app import models as _models  # noqa: E402,F401
from app.enums import Impact, Likelihood, RiskLevel, RiskSource  # noqa: E402
from app.schemas import (  # noqa: E402
    AssessmentPayload,
    AssessmentReviewPayload,
    RiskIntakePayload,
    StartAssessmentPayload,
    ValidateRiskPayload,
)
from app.services import risk_cache, risk_workflow  # noqa: E402
from app.services.risk_workflow import ActorContext  # noqa: E402

ORG = "org-acme"
REPORTER = ActorContext(ORG, "u-reporter", "reporter@acme.test")
GRC = ActorContext(ORG, "u-grc", "grc@acme.test")
ASSESSOR = ActorContext(ORG, "u-assessor", "assessor@acme.test")
OWNER = ActorContext(ORG, "u-owner", "owner@acme.test")
EXECUTIVE = ActorContext(ORG, "u-exec", "exec@acme.test")


def _init_test_db(db_path: Path) -> None:
    app_db.configure_database(f"sqlite:///{db_path.as_posix()}")
    assert app_db.engine is not None
    app_db.Base.metadata.drop_all(bind=app_db.engine)
    app_db.Base.metadata.create_all(bind=app_db.engine)


@pytest.fixture(autouse=True)
def _clear_risk_cache():
    risk_cache.clear()
    yield
    risk_cache.clear()


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory(prefix="risk-lifecycle-") as temp_dir:
        path = Path(temp_dir) / "risk_lifecycle.db"
        _init_test_db(path)
        yield path
        if app_db.engine is not None:
            app_db.engine.dispose()
        app_db.configure_database("sqlite:///:memory:")


@pytest.fixture
def db(db_path):
    with app_db.SessionLocal() as session:
        yield session


class WorkflowDriver:
    """Pushes a risk through the early stages with the default demo actors."""

    def __init__(self, db) -> None:
        self.db = db

    def submit(self, **overrides) -> dict:
        fields = {
            "title": "Unpatched edge firewall",
            "description": "Perimeter firewall firmware is two majors behind.",
            "source": RiskSource.INTERNAL_SECURITY_REVIEWS,
            "initial_severity": RiskLevel.HIGH,
        }
        fields.update(overrides)
        return risk_workflow.submit_risk(self.db, REPORTER, RiskIntakePayload(**fields))

    def actual_risk(self) -> str:
        rid = self.submit()["id"]
        risk_workflow.validate_risk(self.db, GRC, rid, ValidateRiskPayload(approved=True))
        return rid

    def in_analysis(self) -> str:
        rid = self.actual_risk()
        risk_workflow.start_assessment(self.db, GRC, rid, StartAssessmentPayload(assessor_id=ASSESSOR.actor_id))
        return rid

    def awaiting_grc(self, likelihood=Likelihood.LIKELY, impact=Impact.MAJOR) -> str:
        rid = self.in_analysis()
        risk_workflow.submit_assessment(
            self.db,
            ASSESSOR,
            rid,
            AssessmentPayload(
                threat_description="Known RCE in firmware",
                likelihood=likelihood,
                impact=impact,
                recommended_owner_id=OWNER.actor_id,
                affected_asset_ids=["asset-fw-1"],
                existing_control_ids=["ctl-ids"],
            ),
        )
        return rid

    def in_treatment(self, likelihood=Likelihood.LIKELY, impact=Impact.MAJOR) -> str:
        rid = self.awaiting_grc(likelihood, impact)
        risk_workflow.review_assessment(self.db, GRC, rid, AssessmentReviewPayload(approved=True))
        return rid


@pytest.fixture
def workflow(db):
    return WorkflowDriver(db)

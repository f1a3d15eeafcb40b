from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Risk, RiskHistory
from app.services.notifications import Notice
from app.utils.jsonx import from_json, to_json


@dataclass
class TransitionOutcome:
    """What a stage step did, for the history row and the post-commit side effects."""

    action: str
    changes: dict[str, Any] = field(default_factory=dict)
    notes: str = ""
    audit_description: str = ""
    notices: list[Notice] = field(default_factory=list)


def append_history(db: Session, risk: Risk, outcome: TransitionOutcome, actor_id: str) -> RiskHistory:
    """Append one history row inside the caller's transaction."""
    row = RiskHistory(
        risk=risk,
        action=outcome.action,
        changes_json=to_json(outcome.changes),
        notes=outcome.notes or "",
        changed_by=actor_id,
        changed_at=datetime.utcnow(),
    )
    db.add(row)
    return row


def history_to_dict(row: RiskHistory) -> dict[str, Any]:
    return {
        "id": int(row.id),
        "action": row.action,
        "changes": from_json(row.changes_json, {}),
        "notes": row.notes,
        "changed_by": row.changed_by,
        "changed_at": row.changed_at.isoformat() + "Z" if row.changed_at else "",
    }


def list_history(db: Session, risk_id: str, *, limit: int | None = None) -> list[dict[str, Any]]:
    stmt = select(RiskHistory).where(RiskHistory.risk_id == risk_id).order_by(RiskHistory.id.desc())
    if limit:
        stmt = stmt.limit(int(limit))
    return [history_to_dict(row) for row in db.execute(stmt).scalars().all()]

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models import AuditLog
from app.utils.jsonx import to_json

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    *,
    organization_id: str,
    user_id: str,
    action: str,
    entity_id: str,
    description: str,
    entity_type: str = "risk",
    entity_name: str = "",
    user_email: str = "",
    changes: dict[str, Any] | None = None,
) -> bool:
    """
    Write a generic audit record after the primary transition has committed.

    Audit logging must not break the main flow: errors are logged and swallowed.
    """
    try:
        db.add(
            AuditLog(
                organization_id=organization_id,
                user_id=user_id,
                user_email=user_email or "",
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name or "",
                description=description,
                changes_json=to_json(changes or {}),
            )
        )
        db.commit()
        return True
    except Exception:
        db.rollback()
        logger.exception("Failed to create audit log for %s %s (%s)", entity_type, entity_id, action)
        return False

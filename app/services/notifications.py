from __future__ import annotations

import logging
from dataclasses import dataclass

import requests
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Notification

logger = logging.getLogger(__name__)

TASK_ASSIGNED = "task_assigned"
RISK_STATUS_CHANGED = "risk_status_changed"


@dataclass
class Notice:
    user_id: str
    title: str
    message: str
    type: str = TASK_ASSIGNED
    severity: str = "info"


def _post_webhook(url: str, payload: dict, timeout: int) -> None:
    response = requests.post(url, json=payload, timeout=timeout)
    response.raise_for_status()


def dispatch(db: Session, organization_id: str, entity_id: str, notices: list[Notice]) -> int:
    """
    Persist notifications for the newly responsible actors and forward them to
    the configured webhook. Best-effort: failures are logged, never raised.
    """
    notices = [n for n in notices if n.user_id]
    if not notices:
        return 0

    try:
        for notice in notices:
            db.add(
                Notification(
                    organization_id=organization_id,
                    user_id=notice.user_id,
                    type=notice.type,
                    title=notice.title,
                    message=notice.message,
                    entity_type="risk",
                    entity_id=entity_id,
                    severity=notice.severity,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to store notifications for risk %s", entity_id)
        return 0

    settings = get_settings()
    if settings.notification_webhook_url:
        for notice in notices:
            payload = {
                "organizationId": organization_id,
                "userId": notice.user_id,
                "type": notice.type,
                "title": notice.title,
                "message": notice.message,
                "entityType": "risk",
                "entityId": entity_id,
                "severity": notice.severity,
            }
            try:
                _post_webhook(settings.notification_webhook_url, payload, settings.notification_timeout_seconds)
            except requests.RequestException:
                logger.warning("Notification webhook failed for user %s on risk %s", notice.user_id, entity_id)
    return len(notices)

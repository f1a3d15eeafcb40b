from fastapi import Header, HTTPException, status

from app.db import get_db
from app.services.risk_workflow import ActorContext

__all__ = ["get_actor_context", "get_db"]


def get_actor_context(
    x_organization_id: str = Header(default=""),
    x_user_id: str = Header(default=""),
    x_user_email: str = Header(default=""),
) -> ActorContext:
    organization_id = (x_organization_id or "").strip()
    actor_id = (x_user_id or "").strip()
    if not organization_id or not actor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id and X-User-Id headers are required",
        )
    return ActorContext(
        organization_id=organization_id,
        actor_id=actor_id,
        actor_email=(x_user_email or "").strip(),
    )

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from apps.api.api.errors import unwrap
from apps.api.dependencies.auth import CurrentIdentity
from apps.api.dependencies.services import AuditLogDep
from apps.api.services.audit import AuditAction, AuditEvent

router = APIRouter(prefix="/audit", tags=["audit"])


class AuditEventModel(BaseModel):
    id: str
    actor_id: str | None = None
    action: AuditAction
    target_type: str
    target_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str

    @classmethod
    def from_entity(cls, event: AuditEvent) -> "AuditEventModel":
        return cls(
            id=event.id,
            actor_id=event.actor_id,
            action=event.action,
            target_type=event.target_type,
            target_id=event.target_id,
            metadata=dict(event.metadata),
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            created_at=event.created_at.isoformat(),
        )


@router.get("", response_model=list[AuditEventModel], summary="Audit trail, newest first")
async def list_audit_events(
    audit: AuditLogDep,
    identity: CurrentIdentity,
    target_type: str | None = None,
    target_id: str | None = None,
    action: AuditAction | None = None,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[AuditEventModel]:
    events = unwrap(
        await audit.list_events(
            identity, target_type=target_type, target_id=target_id, action=action, limit=limit
        )
    )
    return [AuditEventModel.from_entity(event) for event in events]

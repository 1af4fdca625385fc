"""Append-only audit trail.

Recording is best effort: the marketplace operation that triggered an audit
entry must never fail because the entry could not be written. Failures are
logged and counted instead of raised.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from sqlalchemy import select

from apps.api.metrics import AUDIT_WRITE_FAILURES, MetricsRegistry, metrics_registry
from apps.api.services.database import SessionFactory, ensure_datetime, utcnow
from apps.api.services.operations import operation
from apps.api.services.permissions import Capability, Identity, Provenance, authorize
from packages.db.models import AuditEventTable

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Named actions that can appear in the audit trail."""

    USER_REGISTERED = "USER_REGISTERED"
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
    USER_LOCKED = "USER_LOCKED"
    USER_UNLOCKED = "USER_UNLOCKED"
    USER_SETTINGS_UPDATED = "USER_SETTINGS_UPDATED"

    SELLER_APPLICATION_CREATED = "SELLER_APPLICATION_CREATED"
    SELLER_APPLICATION_APPROVED = "SELLER_APPLICATION_APPROVED"
    SELLER_APPLICATION_DENIED = "SELLER_APPLICATION_DENIED"

    LISTING_CREATED = "LISTING_CREATED"
    LISTING_UPDATED = "LISTING_UPDATED"
    LISTING_MARKED_SOLD = "LISTING_MARKED_SOLD"
    LISTING_WITHDRAWN = "LISTING_WITHDRAWN"
    LISTING_MODERATED = "LISTING_MODERATED"

    MESSAGE_SENT = "MESSAGE_SENT"

    DISCUSSION_CREATED = "DISCUSSION_CREATED"
    DISCUSSION_REPLY_CREATED = "DISCUSSION_REPLY_CREATED"
    DISCUSSION_REPLY_DELETED = "DISCUSSION_REPLY_DELETED"
    DISCUSSION_LOCKED = "DISCUSSION_LOCKED"
    DISCUSSION_UNLOCKED = "DISCUSSION_UNLOCKED"


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """What an operation wants recorded; actor and provenance come from the caller."""

    action: AuditAction
    target_type: str
    target_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    actor_id: str | None = None


@dataclass(slots=True)
class AuditEvent:
    """Persisted audit record."""

    id: str
    actor_id: str | None
    action: AuditAction
    target_type: str
    target_id: str
    metadata: Mapping[str, Any]
    ip_address: str | None
    user_agent: str | None
    created_at: datetime


class AuditRepository:
    """Persistence for the `audit_events` table. Insert and read only."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(self, event: AuditEvent) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    AuditEventTable(
                        id=event.id,
                        actor_id=event.actor_id,
                        action=event.action.value,
                        target_type=event.target_type,
                        target_id=event.target_id,
                        metadata_=dict(event.metadata),
                        ip_address=event.ip_address,
                        user_agent=event.user_agent,
                        created_at=event.created_at,
                    )
                )

    async def list_events(
        self,
        *,
        target_type: str | None = None,
        target_id: str | None = None,
        action: AuditAction | None = None,
        actor_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        statement = select(AuditEventTable)
        if target_type is not None:
            statement = statement.where(AuditEventTable.target_type == target_type)
        if target_id is not None:
            statement = statement.where(AuditEventTable.target_id == target_id)
        if action is not None:
            statement = statement.where(AuditEventTable.action == action.value)
        if actor_id is not None:
            statement = statement.where(AuditEventTable.actor_id == actor_id)
        statement = statement.order_by(AuditEventTable.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_event(row) for row in result.scalars().all()]

    @staticmethod
    def _table_to_event(row: AuditEventTable) -> AuditEvent:
        return AuditEvent(
            id=row.id,
            actor_id=row.actor_id,
            action=AuditAction(row.action),
            target_type=row.target_type,
            target_id=row.target_id,
            metadata=dict(row.metadata_ or {}),
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            created_at=ensure_datetime(row.created_at),
        )


class AuditLog:
    """Side-effect sink consumed by every state-changing service."""

    def __init__(self, repository: AuditRepository, *, registry: MetricsRegistry | None = None) -> None:
        self._repository = repository
        self._failures = (registry or metrics_registry).counter(AUDIT_WRITE_FAILURES)

    async def record(
        self,
        action: AuditAction,
        *,
        target_type: str,
        target_id: str,
        actor_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        provenance: Provenance | None = None,
    ) -> AuditEvent | None:
        provenance = provenance or Provenance()
        event = AuditEvent(
            id=str(uuid.uuid4()),
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            metadata=dict(metadata or {}),
            ip_address=provenance.ip_address,
            user_agent=provenance.user_agent,
            created_at=utcnow(),
        )
        try:
            await self._repository.add(event)
        except Exception:
            self._failures.inc()
            logger.exception("Failed to record audit event %s for %s %s", action.value, target_type, target_id)
            return None
        return event

    async def record_entries(self, entries: Sequence[AuditEntry], identity: Identity) -> None:
        for entry in entries:
            await self.record(
                entry.action,
                target_type=entry.target_type,
                target_id=entry.target_id,
                actor_id=entry.actor_id or identity.user_id,
                metadata=entry.metadata,
                provenance=identity.provenance,
            )

    @operation("list_audit_events")
    async def list_events(
        self,
        identity: Identity,
        *,
        target_type: str | None = None,
        target_id: str | None = None,
        action: AuditAction | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        authorize(identity, Capability.VIEW_AUDIT_LOG)
        return await self._repository.list_events(
            target_type=target_type,
            target_id=target_id,
            action=action,
            limit=max(1, min(limit, 500)),
        )

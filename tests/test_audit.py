from unittest.mock import AsyncMock

import pytest

from apps.api.core.errors import Err, ErrorKind, Ok
from apps.api.metrics import AUDIT_WRITE_FAILURES, metrics_registry
from apps.api.services.audit import AuditAction, AuditEntry, AuditLog, AuditRepository
from apps.api.services.permissions import Identity, Provenance, Role


@pytest.mark.asyncio
async def test_record_persists_event_with_provenance(session_factory):
    log = AuditLog(AuditRepository(session_factory))

    event = await log.record(
        AuditAction.LISTING_CREATED,
        target_type="listing",
        target_id="listing-1",
        actor_id="user-1",
        metadata={"quantity": 4},
        provenance=Provenance(ip_address="10.0.0.5", user_agent="pytest"),
    )

    assert event is not None
    stored = await AuditRepository(session_factory).list_events(target_id="listing-1")
    assert len(stored) == 1
    assert stored[0].action == AuditAction.LISTING_CREATED
    assert stored[0].metadata == {"quantity": 4}
    assert stored[0].ip_address == "10.0.0.5"
    assert stored[0].user_agent == "pytest"


@pytest.mark.asyncio
async def test_record_swallows_repository_failures():
    repository = AsyncMock()
    repository.add.side_effect = RuntimeError("database unavailable")
    log = AuditLog(repository)

    event = await log.record(AuditAction.MESSAGE_SENT, target_type="message", target_id="m1")

    assert event is None
    assert metrics_registry.counter(AUDIT_WRITE_FAILURES).value() == 1


@pytest.mark.asyncio
async def test_record_entries_defaults_actor_to_caller(session_factory):
    log = AuditLog(AuditRepository(session_factory))
    identity = Identity("admin-1", Role.ADMIN, Provenance(ip_address="127.0.0.1"))

    await log.record_entries(
        [
            AuditEntry(AuditAction.USER_LOCKED, "user", "u2"),
            AuditEntry(AuditAction.USER_REGISTERED, "user", "u3", actor_id="u3"),
        ],
        identity,
    )

    events = await AuditRepository(session_factory).list_events()
    actors = {event.target_id: event.actor_id for event in events}
    assert actors == {"u2": "admin-1", "u3": "u3"}


@pytest.mark.asyncio
async def test_list_events_is_admin_only(session_factory):
    log = AuditLog(AuditRepository(session_factory))
    await log.record(AuditAction.DISCUSSION_CREATED, target_type="discussion", target_id="d1")
    await log.record(AuditAction.DISCUSSION_LOCKED, target_type="discussion", target_id="d1")

    denied = await log.list_events(Identity("u1", Role.APPROVER))
    assert isinstance(denied, Err)
    assert denied.kind == ErrorKind.FORBIDDEN

    anonymous = await log.list_events(Identity.anonymous())
    assert isinstance(anonymous, Err)
    assert anonymous.kind == ErrorKind.UNAUTHORIZED

    allowed = await log.list_events(Identity("admin", Role.ADMIN), target_id="d1")
    assert isinstance(allowed, Ok)
    assert [event.action for event in allowed.value] == [
        AuditAction.DISCUSSION_LOCKED,
        AuditAction.DISCUSSION_CREATED,
    ]

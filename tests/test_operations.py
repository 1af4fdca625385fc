from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError

from apps.api.core.errors import Err, ErrorKind, NotFoundError, Ok
from apps.api.metrics import OPERATIONS_TOTAL, metrics_registry
from apps.api.services.audit import AuditAction, AuditEntry
from apps.api.services.operations import audited, operation
from apps.api.services.permissions import Identity, Role


def _describe(value):
    return [AuditEntry(AuditAction.LISTING_UPDATED, "listing", value)]


class _Service:
    def __init__(self):
        self.audit = AsyncMock()

    @audited("rename", _describe)
    async def rename(self, identity, target_id: str) -> str:
        return target_id

    @audited("rename_missing", _describe)
    async def rename_missing(self, identity, target_id: str) -> str:
        raise NotFoundError(f"{target_id} not found")

    @operation("insert_duplicate")
    async def insert_duplicate(self, identity) -> None:
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))


@pytest.mark.asyncio
async def test_success_is_wrapped_and_audited():
    service = _Service()
    identity = Identity("u1", Role.SELLER)

    result = await service.rename(identity, "listing-1")

    assert isinstance(result, Ok)
    assert result.ok and result.value == "listing-1"
    service.audit.record_entries.assert_awaited_once()
    entries, passed_identity = service.audit.record_entries.await_args.args
    assert entries[0].target_id == "listing-1"
    assert passed_identity is identity
    counter = metrics_registry.counter(OPERATIONS_TOTAL)
    assert counter.value(labels={"operation": "rename", "outcome": "ok"}) == 1


@pytest.mark.asyncio
async def test_marketplace_error_becomes_err_without_audit():
    service = _Service()

    result = await service.rename_missing(Identity("u1"), "listing-9")

    assert isinstance(result, Err)
    assert not result.ok
    assert result.kind == ErrorKind.NOT_FOUND
    assert result.message == "listing-9 not found"
    service.audit.record_entries.assert_not_awaited()
    counter = metrics_registry.counter(OPERATIONS_TOTAL)
    assert counter.value(labels={"operation": "rename_missing", "outcome": "NOT_FOUND"}) == 1


@pytest.mark.asyncio
async def test_integrity_error_is_classified_as_conflict():
    result = await _Service().insert_duplicate(Identity("u1"))

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_infrastructure_faults_propagate():
    class Broken:
        audit = AsyncMock()

        @operation("explode")
        async def explode(self, identity):
            raise ConnectionError("database unavailable")

    with pytest.raises(ConnectionError):
        await Broken().explode(Identity("u1"))

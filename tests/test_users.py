import pytest

from apps.api.core.errors import Err, ErrorKind, Ok
from apps.api.services.audit import AuditAction
from apps.api.services.permissions import Identity, Role
from apps.api.services.users import SUITE_AREAS, SuiteArea


@pytest.mark.asyncio
async def test_register_user_starts_as_guest(marketplace):
    result = await marketplace.user_service.register_user(
        Identity.anonymous(), email="  Owner@Example.com ", name="Casey Owner"
    )

    assert isinstance(result, Ok)
    user = result.value
    assert user.email == "owner@example.com"
    assert user.role == Role.GUEST
    assert user.show_in_directory is False
    events = await marketplace.audit._repository.list_events(target_id=user.id)
    assert [(event.action, event.actor_id) for event in events] == [(AuditAction.USER_REGISTERED, user.id)]


@pytest.mark.asyncio
async def test_register_rejects_duplicates_and_bad_email(marketplace):
    await marketplace.user_service.register_user(Identity.anonymous(), email="owner@example.com")

    duplicate = await marketplace.user_service.register_user(Identity.anonymous(), email="OWNER@example.com")
    invalid = await marketplace.user_service.register_user(Identity.anonymous(), email="not-an-email")

    assert isinstance(duplicate, Err) and duplicate.kind == ErrorKind.CONFLICT
    assert isinstance(invalid, Err) and invalid.kind == ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_update_settings(marketplace):
    member = await marketplace.identity(Role.SELLER, name="Casey")

    updated = await marketplace.user_service.update_settings(
        member, name=" Casey Owner ", phone="5550001111", show_in_directory=True
    )
    blank = await marketplace.user_service.update_settings(member, name="   ")
    empty = await marketplace.user_service.update_settings(member)
    anonymous = await marketplace.user_service.get_settings(Identity.anonymous())
    current = await marketplace.user_service.get_settings(member)

    assert updated.value.name == "Casey Owner"
    assert updated.value.phone == "5550001111"
    assert updated.value.show_in_directory is True
    assert blank.kind == ErrorKind.VALIDATION_ERROR
    assert empty.kind == ErrorKind.VALIDATION_ERROR
    assert anonymous.kind == ErrorKind.UNAUTHORIZED
    assert current.value.name == "Casey Owner"


@pytest.mark.asyncio
async def test_lock_rules(marketplace):
    admin = await marketplace.identity(Role.ADMIN)
    approver = await marketplace.identity(Role.APPROVER)
    member = await marketplace.identity(Role.SELLER)

    self_lock = await marketplace.user_service.set_user_lock(admin, admin.user_id, locked=True)
    not_admin = await marketplace.user_service.set_user_lock(approver, member.user_id, locked=True)
    missing = await marketplace.user_service.set_user_lock(admin, "no-such-user", locked=True)
    locked = await marketplace.user_service.set_user_lock(admin, member.user_id, locked=True)
    unlocked = await marketplace.user_service.set_user_lock(admin, member.user_id, locked=False)

    assert self_lock.kind == ErrorKind.FORBIDDEN
    assert not_admin.kind == ErrorKind.FORBIDDEN
    assert missing.kind == ErrorKind.NOT_FOUND
    assert locked.value.is_locked is True
    assert unlocked.value.is_locked is False
    actions = [event.action for event in await marketplace.audit._repository.list_events(target_id=member.user_id)]
    assert actions == [AuditAction.USER_UNLOCKED, AuditAction.USER_LOCKED]


@pytest.mark.asyncio
async def test_owner_directory_lists_opted_in_verified_owners(marketplace):
    admin = await marketplace.identity(Role.ADMIN)
    terrace = await marketplace.suite("UNT2")
    lower = await marketplace.suite("L5")
    zed = await marketplace.approved_seller(lower, name="Zed", show_in_directory=True)
    await marketplace.approved_seller(lower, name="Hidden", show_in_directory=False)
    locked = await marketplace.approved_seller(terrace, name="Locked", show_in_directory=True)
    amy = await marketplace.approved_seller(terrace, name="amy", show_in_directory=True)
    boss = await marketplace.approved_seller(terrace, approver=admin, name="Boss", show_in_directory=True)
    await marketplace.users.update_fields(boss.user_id, {"role": Role.ADMIN.value})
    await marketplace.users.update_fields(locked.user_id, {"is_locked": True})
    await marketplace.identity(Role.GUEST, name="Unverified", show_in_directory=True)

    result = await marketplace.user_service.list_owner_directory(zed)

    entries = result.value
    assert [entry.name for entry in entries] == ["Boss", "amy", "Zed"]
    assert entries[0].role == Role.ADMIN
    assert entries[1].user_id == amy.user_id
    assert entries[2].suites == ["L5"]


@pytest.mark.asyncio
async def test_seed_is_idempotent(marketplace):
    expected = sum(spec.last - spec.first + 1 for spec in SUITE_AREAS.values())

    again = await marketplace.catalog.seed_suites()
    suites = await marketplace.catalog.list_suites(Identity.anonymous())
    terraces = await marketplace.catalog.list_suites(Identity.anonymous(), area=SuiteArea.UPPER_SOUTH_TERRACE)

    assert again == 0
    assert len(suites.value) == expected
    assert [suite.display_name for suite in terraces.value][:3] == ["UST1", "UST2", "UST3"]
    assert all(suite.capacity == 8 for suite in suites.value)


@pytest.mark.asyncio
async def test_find_and_get_suite(marketplace):
    found = await marketplace.catalog.find_suite(Identity.anonymous(), SuiteArea.LOWER_FIRE, 90)
    missing = await marketplace.catalog.find_suite(Identity.anonymous(), SuiteArea.LOWER_FIRE, 91)
    by_id = await marketplace.catalog.get_suite(Identity.anonymous(), found.value.id)
    unknown = await marketplace.catalog.get_suite(Identity.anonymous(), "no-such-suite")

    assert found.value.display_name == "L90"
    assert missing.kind == ErrorKind.NOT_FOUND
    assert "L91" in missing.message
    assert by_id.value.number == 90
    assert unknown.kind == ErrorKind.NOT_FOUND

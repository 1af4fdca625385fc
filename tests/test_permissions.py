import pytest

from apps.api.core.errors import ForbiddenError, UnauthorizedError
from apps.api.services.permissions import (
    CAPABILITIES,
    Capability,
    Identity,
    Role,
    authorize,
    can,
    is_owner_or_admin,
    require_user,
)


def test_every_capability_has_a_role_set():
    assert set(CAPABILITIES) == set(Capability)


@pytest.mark.parametrize(
    ("role", "allowed"),
    [
        (Role.GUEST, False),
        (Role.SELLER, True),
        (Role.APPROVER, True),
        (Role.ADMIN, True),
    ],
)
def test_only_owners_author_discussions(role, allowed):
    assert can(Identity(user_id="u1", role=role), Capability.AUTHOR_DISCUSSION) is allowed


def test_reviewers_decide_applications():
    assert can(Identity("u1", Role.APPROVER), Capability.DECIDE_APPLICATION)
    assert can(Identity("u1", Role.ADMIN), Capability.DECIDE_APPLICATION)
    assert not can(Identity("u1", Role.SELLER), Capability.DECIDE_APPLICATION)


def test_anonymous_identity_has_no_capabilities():
    anonymous = Identity.anonymous()
    assert not anonymous.is_authenticated
    assert all(not can(anonymous, capability) for capability in Capability)


def test_authorize_rejects_anonymous_with_unauthorized():
    with pytest.raises(UnauthorizedError):
        authorize(Identity.anonymous(), Capability.SEND_MESSAGE)


def test_authorize_rejects_wrong_role_with_forbidden():
    with pytest.raises(ForbiddenError) as exc:
        authorize(Identity("u1", Role.GUEST), Capability.CREATE_LISTING)
    assert "approved seller" in exc.value.message


def test_authorize_returns_user_id():
    assert authorize(Identity("admin-1", Role.ADMIN), Capability.MODERATE_LISTING) == "admin-1"


def test_require_user():
    assert require_user(Identity("u1")) == "u1"
    with pytest.raises(UnauthorizedError):
        require_user(Identity.anonymous())


def test_owner_or_admin():
    assert is_owner_or_admin(Identity("u1", Role.SELLER), "u1")
    assert is_owner_or_admin(Identity("admin", Role.ADMIN), "u1")
    assert not is_owner_or_admin(Identity("u2", Role.APPROVER), "u1")
    assert not is_owner_or_admin(Identity.anonymous(), "u1")

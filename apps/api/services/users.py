"""User accounts, the suite catalog and the public owner directory."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Sequence

from sqlalchemy import select, update as sql_update
from sqlalchemy.exc import IntegrityError

from apps.api.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from apps.api.services.audit import AuditAction, AuditEntry, AuditLog
from apps.api.services.database import SessionFactory, ensure_datetime, utcnow
from apps.api.services.operations import audited, operation
from apps.api.services.permissions import Capability, Identity, Role, authorize
from packages.db.models import SellerApplicationTable, SuiteTable, UserTable

logger = logging.getLogger(__name__)


class SuiteArea(str, Enum):
    """Fixed seating zones of the venue."""

    LOWER_FIRE = "L"
    UPPER_NORTH_TERRACE = "UNT"
    UPPER_SOUTH_TERRACE = "UST"


@dataclass(frozen=True, slots=True)
class AreaSpec:
    label: str
    first: int
    last: int


SUITE_AREAS: Mapping[SuiteArea, AreaSpec] = {
    SuiteArea.LOWER_FIRE: AreaSpec("Lower Fire Suite", 1, 90),
    SuiteArea.UPPER_NORTH_TERRACE: AreaSpec("Upper North Terrace", 1, 20),
    SuiteArea.UPPER_SOUTH_TERRACE: AreaSpec("Upper South Terrace", 1, 20),
}
DEFAULT_SUITE_CAPACITY = 8


def suite_display_name(area: SuiteArea, number: int) -> str:
    return f"{area.value}{number}"


@dataclass(slots=True)
class Suite:
    id: str
    area: SuiteArea
    number: int
    display_name: str
    capacity: int
    is_active: bool = True


@dataclass(slots=True)
class User:
    id: str
    email: str
    name: str | None
    phone: str | None
    role: Role
    is_locked: bool
    show_in_directory: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class DirectoryEntry:
    """An opted-in verified owner with the suites they were approved for."""

    user_id: str
    name: str | None
    role: Role
    suites: list[str] = field(default_factory=list)


class SuiteRepository:
    """Persistence for the `suites` reference table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def seed(self, capacity: int = DEFAULT_SUITE_CAPACITY) -> int:
        """Insert every catalog suite that is missing; return the number added."""

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(select(SuiteTable.area, SuiteTable.number))
                existing = {(area, number) for area, number in result.all()}
                added = 0
                for area, spec in SUITE_AREAS.items():
                    for number in range(spec.first, spec.last + 1):
                        if (area.value, number) in existing:
                            continue
                        session.add(
                            SuiteTable(
                                id=str(uuid.uuid4()),
                                area=area.value,
                                number=number,
                                display_name=suite_display_name(area, number),
                                capacity=capacity,
                                is_active=True,
                            )
                        )
                        added += 1
        return added

    async def get(self, suite_id: str) -> Suite | None:
        async with self._session_factory() as session:
            row = await session.get(SuiteTable, suite_id)
        return None if row is None else self._table_to_suite(row)

    async def find(self, area: SuiteArea, number: int) -> Suite | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SuiteTable).where(SuiteTable.area == area.value, SuiteTable.number == number)
            )
            row = result.scalars().first()
        return None if row is None else self._table_to_suite(row)

    async def list(self, area: SuiteArea | None = None) -> list[Suite]:
        statement = select(SuiteTable).where(SuiteTable.is_active.is_(True))
        if area is not None:
            statement = statement.where(SuiteTable.area == area.value)
        statement = statement.order_by(SuiteTable.area, SuiteTable.number)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_suite(row) for row in result.scalars().all()]

    @staticmethod
    def _table_to_suite(row: SuiteTable) -> Suite:
        return Suite(
            id=row.id,
            area=SuiteArea(row.area),
            number=row.number,
            display_name=row.display_name,
            capacity=row.capacity,
            is_active=row.is_active,
        )


class UserRepository:
    """Persistence for the `users` table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(self, user: User) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    UserTable(
                        id=user.id,
                        email=user.email,
                        name=user.name,
                        phone=user.phone,
                        role=user.role.value,
                        is_locked=user.is_locked,
                        show_in_directory=user.show_in_directory,
                        created_at=user.created_at,
                        updated_at=user.updated_at,
                    )
                )

    async def get(self, user_id: str) -> User | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
        return None if row is None else self._table_to_user(row)

    async def get_by_email(self, email: str) -> User | None:
        async with self._session_factory() as session:
            result = await session.execute(select(UserTable).where(UserTable.email == email))
            row = result.scalars().first()
        return None if row is None else self._table_to_user(row)

    async def update_fields(self, user_id: str, values: Mapping[str, object]) -> User | None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    sql_update(UserTable)
                    .where(UserTable.id == user_id)
                    .values(**values, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return None
        return await self.get(user_id)

    async def list_directory(self) -> list[DirectoryEntry]:
        statement = (
            select(UserTable.id, UserTable.name, UserTable.role, SuiteTable.display_name)
            .join(SellerApplicationTable, SellerApplicationTable.user_id == UserTable.id)
            .join(SuiteTable, SuiteTable.id == SellerApplicationTable.suite_id)
            .where(
                SellerApplicationTable.status == "APPROVED",
                UserTable.show_in_directory.is_(True),
                UserTable.is_locked.is_(False),
            )
            .order_by(SuiteTable.area, SuiteTable.number)
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            rows = result.all()

        entries: dict[str, DirectoryEntry] = {}
        for user_id, name, role, display_name in rows:
            entry = entries.setdefault(user_id, DirectoryEntry(user_id=user_id, name=name, role=Role(role)))
            if display_name not in entry.suites:
                entry.suites.append(display_name)
        return sorted(
            entries.values(),
            key=lambda entry: (entry.role != Role.ADMIN, (entry.name or "").lower()),
        )

    @staticmethod
    def _table_to_user(row: UserTable) -> User:
        return User(
            id=row.id,
            email=row.email,
            name=row.name,
            phone=row.phone,
            role=Role(row.role),
            is_locked=row.is_locked,
            show_in_directory=row.show_in_directory,
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
        )


def _normalize_email(email: str) -> str:
    cleaned = (email or "").strip().lower()
    local, sep, domain = cleaned.partition("@")
    if not sep or not local or "." not in domain:
        raise ValidationError("A valid email address is required")
    return cleaned


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _describe_registration(user: User) -> Sequence[AuditEntry]:
    return [
        AuditEntry(
            AuditAction.USER_REGISTERED,
            "user",
            user.id,
            {"email": user.email},
            actor_id=user.id,
        )
    ]


def _describe_settings(user: User) -> Sequence[AuditEntry]:
    return [
        AuditEntry(
            AuditAction.USER_SETTINGS_UPDATED,
            "user",
            user.id,
            {"show_in_directory": user.show_in_directory},
        )
    ]


def _describe_lock(user: User) -> Sequence[AuditEntry]:
    action = AuditAction.USER_LOCKED if user.is_locked else AuditAction.USER_UNLOCKED
    return [AuditEntry(action, "user", user.id, {"email": user.email})]


class UserService:
    """Account self-service and admin account controls."""

    def __init__(self, repository: UserRepository, audit: AuditLog) -> None:
        self._repository = repository
        self.audit = audit

    async def get_user(self, user_id: str) -> User | None:
        """Raw lookup used by identity resolution; not an operation."""

        return await self._repository.get(user_id)

    @audited("register_user", _describe_registration)
    async def register_user(
        self, identity: Identity, *, email: str, name: str | None = None, phone: str | None = None
    ) -> User:
        normalized = _normalize_email(email)
        if await self._repository.get_by_email(normalized) is not None:
            raise ConflictError("An account with this email already exists")
        now = utcnow()
        user = User(
            id=str(uuid.uuid4()),
            email=normalized,
            name=_clean_optional(name),
            phone=_clean_optional(phone),
            role=Role.GUEST,
            is_locked=False,
            show_in_directory=False,
            created_at=now,
            updated_at=now,
        )
        await self._repository.add(user)
        logger.info("Registered user %s", user.id)
        return user

    @operation("get_user_settings")
    async def get_settings(self, identity: Identity) -> User:
        user_id = authorize(identity, Capability.MANAGE_OWN_ACCOUNT)
        user = await self._repository.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    @audited("update_user_settings", _describe_settings)
    async def update_settings(
        self,
        identity: Identity,
        *,
        name: str | None = None,
        phone: str | None = None,
        show_in_directory: bool | None = None,
    ) -> User:
        user_id = authorize(identity, Capability.MANAGE_OWN_ACCOUNT)
        values: dict[str, object] = {}
        if name is not None:
            cleaned = _clean_optional(name)
            if cleaned is None:
                raise ValidationError("Name cannot be blank")
            values["name"] = cleaned
        if phone is not None:
            values["phone"] = _clean_optional(phone)
        if show_in_directory is not None:
            values["show_in_directory"] = show_in_directory
        if not values:
            raise ValidationError("No settings to update")
        user = await self._repository.update_fields(user_id, values)
        if user is None:
            raise NotFoundError("User not found")
        return user

    @audited("set_user_lock", _describe_lock)
    async def set_user_lock(self, identity: Identity, user_id: str, *, locked: bool) -> User:
        admin_id = authorize(identity, Capability.LOCK_USER)
        if admin_id == user_id and locked:
            raise ForbiddenError("Administrators cannot lock their own account")
        user = await self._repository.update_fields(user_id, {"is_locked": locked})
        if user is None:
            raise NotFoundError("User not found")
        return user

    @operation("list_owner_directory")
    async def list_owner_directory(self, identity: Identity) -> list[DirectoryEntry]:
        return await self._repository.list_directory()


class SuiteCatalog:
    """Read access to the suite reference data."""

    def __init__(self, repository: SuiteRepository) -> None:
        self._repository = repository

    async def seed_suites(self) -> int:
        try:
            added = await self._repository.seed()
        except IntegrityError:
            # Another process seeded concurrently.
            logger.info("Suite catalog already seeded")
            return 0
        if added:
            logger.info("Seeded %d suites", added)
        return added

    @operation("list_suites")
    async def list_suites(self, identity: Identity, *, area: SuiteArea | None = None) -> list[Suite]:
        return await self._repository.list(area)

    @operation("get_suite")
    async def get_suite(self, identity: Identity, suite_id: str) -> Suite:
        suite = await self._repository.get(suite_id)
        if suite is None:
            raise NotFoundError("Suite not found")
        return suite

    @operation("find_suite")
    async def find_suite(self, identity: Identity, area: SuiteArea, number: int) -> Suite:
        suite = await self._repository.find(area, number)
        if suite is None:
            raise NotFoundError(f"Suite {suite_display_name(area, number)} not found")
        return suite

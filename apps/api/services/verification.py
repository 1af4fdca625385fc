"""Seller verification: suite ownership applications and their review."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping, Sequence

from sqlalchemy import func, select, update as sql_update

from apps.api.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from apps.api.services.audit import AuditAction, AuditEntry, AuditLog
from apps.api.services.database import SessionFactory, ensure_datetime, optional_datetime, utcnow
from apps.api.services.notifications import NotificationDispatcher, NotificationEvent
from apps.api.services.operations import audited, operation
from apps.api.services.permissions import Capability, Identity, Role, authorize, require_user
from apps.api.services.users import SuiteRepository
from packages.db.models import SellerApplicationTable, UserTable

logger = logging.getLogger(__name__)


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


OPEN_STATUSES = (ApplicationStatus.PENDING, ApplicationStatus.APPROVED)


@dataclass(slots=True)
class SellerApplication:
    """Request to be verified as the owner of a suite."""

    id: str
    user_id: str
    suite_id: str
    legal_name: str
    phone: str
    message: str
    invite_code: str | None
    status: ApplicationStatus
    decision_note: str | None
    decided_by: str | None
    decided_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ApplicationDecision:
    """Outcome of a review: the decided application and whether the applicant was promoted."""

    application: SellerApplication
    role_upgraded: bool


class ApplicationStateMachine:
    """PENDING is the only state with outgoing transitions."""

    _TRANSITIONS: Mapping[ApplicationStatus, Sequence[ApplicationStatus]] = {
        ApplicationStatus.PENDING: (ApplicationStatus.APPROVED, ApplicationStatus.DENIED),
        ApplicationStatus.APPROVED: (),
        ApplicationStatus.DENIED: (),
    }

    def can_transition(self, current: ApplicationStatus, target: ApplicationStatus) -> bool:
        return target in self._TRANSITIONS.get(current, ())

    def assert_transition(self, current: ApplicationStatus, target: ApplicationStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidStateError(f"Application has already been {current.value.lower()}")


class ApplicationRepository:
    """Persistence for `seller_applications` including the approval role upgrade."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(self, application: SellerApplication) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    SellerApplicationTable(
                        id=application.id,
                        user_id=application.user_id,
                        suite_id=application.suite_id,
                        legal_name=application.legal_name,
                        phone=application.phone,
                        message=application.message,
                        invite_code=application.invite_code,
                        status=application.status.value,
                        created_at=application.created_at,
                        updated_at=application.updated_at,
                    )
                )

    async def get(self, application_id: str) -> SellerApplication | None:
        async with self._session_factory() as session:
            row = await session.get(SellerApplicationTable, application_id)
        return None if row is None else self._table_to_application(row)

    async def find_open(self, user_id: str, suite_id: str) -> SellerApplication | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SellerApplicationTable).where(
                    SellerApplicationTable.user_id == user_id,
                    SellerApplicationTable.suite_id == suite_id,
                    SellerApplicationTable.status.in_([status.value for status in OPEN_STATUSES]),
                )
            )
            row = result.scalars().first()
        return None if row is None else self._table_to_application(row)

    async def has_approved(self, user_id: str, suite_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(SellerApplicationTable)
                .where(
                    SellerApplicationTable.user_id == user_id,
                    SellerApplicationTable.suite_id == suite_id,
                    SellerApplicationTable.status == ApplicationStatus.APPROVED.value,
                )
            )
            return (result.scalar_one() or 0) > 0

    async def list(
        self, *, user_id: str | None = None, status: ApplicationStatus | None = None
    ) -> list[SellerApplication]:
        statement = select(SellerApplicationTable)
        if user_id is not None:
            statement = statement.where(SellerApplicationTable.user_id == user_id)
        if status is not None:
            statement = statement.where(SellerApplicationTable.status == status.value)
        statement = statement.order_by(SellerApplicationTable.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_application(row) for row in result.scalars().all()]

    async def count(self, status: ApplicationStatus) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(SellerApplicationTable)
                .where(SellerApplicationTable.status == status.value)
            )
            return int(result.scalar_one() or 0)

    async def decide(
        self,
        application_id: str,
        *,
        status: ApplicationStatus,
        decided_by: str,
        note: str | None,
    ) -> ApplicationDecision | None:
        """Apply a decision to a still-pending application.

        Returns ``None`` when the application was no longer pending. On approval
        the applicant is promoted from GUEST to SELLER in the same transaction.
        """

        now = utcnow()
        role_upgraded = False
        async with self._session_factory() as session:
            async with session.begin():
                decided = await session.execute(
                    sql_update(SellerApplicationTable)
                    .where(
                        SellerApplicationTable.id == application_id,
                        SellerApplicationTable.status == ApplicationStatus.PENDING.value,
                    )
                    .values(
                        status=status.value,
                        decision_note=note,
                        decided_by=decided_by,
                        decided_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if decided.rowcount != 1:
                    return None
                if status == ApplicationStatus.APPROVED:
                    applicant = await session.execute(
                        select(SellerApplicationTable.user_id).where(SellerApplicationTable.id == application_id)
                    )
                    upgraded = await session.execute(
                        sql_update(UserTable)
                        .where(UserTable.id == applicant.scalar_one(), UserTable.role == Role.GUEST.value)
                        .values(role=Role.SELLER.value, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    role_upgraded = upgraded.rowcount == 1

        application = await self.get(application_id)
        if application is None:
            raise NotFoundError("Application not found")
        return ApplicationDecision(application=application, role_upgraded=role_upgraded)

    @staticmethod
    def _table_to_application(row: SellerApplicationTable) -> SellerApplication:
        return SellerApplication(
            id=row.id,
            user_id=row.user_id,
            suite_id=row.suite_id,
            legal_name=row.legal_name,
            phone=row.phone,
            message=row.message,
            invite_code=row.invite_code,
            status=ApplicationStatus(row.status),
            decision_note=row.decision_note,
            decided_by=row.decided_by,
            decided_at=optional_datetime(row.decided_at),
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
        )


def _describe_submission(application: SellerApplication) -> Sequence[AuditEntry]:
    return [
        AuditEntry(
            AuditAction.SELLER_APPLICATION_CREATED,
            "seller_application",
            application.id,
            {"suite_id": application.suite_id},
        )
    ]


def _describe_decision(decision: ApplicationDecision) -> Sequence[AuditEntry]:
    application = decision.application
    action = (
        AuditAction.SELLER_APPLICATION_APPROVED
        if application.status == ApplicationStatus.APPROVED
        else AuditAction.SELLER_APPLICATION_DENIED
    )
    entries = [
        AuditEntry(
            action,
            "seller_application",
            application.id,
            {"user_id": application.user_id, "suite_id": application.suite_id, "note": application.decision_note},
        )
    ]
    if decision.role_upgraded:
        entries.append(
            AuditEntry(
                AuditAction.USER_ROLE_CHANGED,
                "user",
                application.user_id,
                {"from": Role.GUEST.value, "to": Role.SELLER.value, "application_id": application.id},
            )
        )
    return entries


class VerificationService:
    """Submit, review and decide seller applications."""

    def __init__(
        self,
        repository: ApplicationRepository,
        suites: SuiteRepository,
        audit: AuditLog,
        *,
        notifications: NotificationDispatcher | None = None,
        state_machine: ApplicationStateMachine | None = None,
    ) -> None:
        self._repository = repository
        self._suites = suites
        self.audit = audit
        self._notifications = notifications or NotificationDispatcher()
        self._state_machine = state_machine or ApplicationStateMachine()

    @audited("submit_application", _describe_submission)
    async def submit_application(
        self,
        identity: Identity,
        *,
        suite_id: str,
        legal_name: str,
        phone: str,
        message: str,
        invite_code: str | None = None,
    ) -> SellerApplication:
        user_id = authorize(identity, Capability.SUBMIT_APPLICATION)
        legal_name = (legal_name or "").strip()
        phone = (phone or "").strip()
        message = (message or "").strip()
        if len(legal_name) < 2:
            raise ValidationError("Legal name must be at least 2 characters")
        if len(phone) < 10:
            raise ValidationError("Phone number must be at least 10 characters")
        if len(message) < 10:
            raise ValidationError("Message must be at least 10 characters")

        suite = await self._suites.get(suite_id)
        if suite is None or not suite.is_active:
            raise NotFoundError("Suite not found")
        existing = await self._repository.find_open(user_id, suite_id)
        if existing is not None:
            raise ConflictError(
                f"You already have a {existing.status.value.lower()} application for suite {suite.display_name}"
            )

        now = utcnow()
        application = SellerApplication(
            id=str(uuid.uuid4()),
            user_id=user_id,
            suite_id=suite_id,
            legal_name=legal_name,
            phone=phone,
            message=message,
            invite_code=(invite_code or "").strip() or None,
            status=ApplicationStatus.PENDING,
            decision_note=None,
            decided_by=None,
            decided_at=None,
            created_at=now,
            updated_at=now,
        )
        await self._repository.add(application)
        await self._notifications.dispatch(
            user_id,
            NotificationEvent.APPLICATION_RECEIVED,
            {"application_id": application.id, "suite": suite.display_name},
        )
        return application

    @audited("decide_application", _describe_decision)
    async def decide_application(
        self,
        identity: Identity,
        application_id: str,
        *,
        decision: ApplicationStatus,
        note: str | None = None,
    ) -> ApplicationDecision:
        reviewer_id = authorize(identity, Capability.DECIDE_APPLICATION)
        try:
            decision = ApplicationStatus(decision)
        except ValueError:
            raise ValidationError("Decision must be APPROVED or DENIED") from None
        if decision not in (ApplicationStatus.APPROVED, ApplicationStatus.DENIED):
            raise ValidationError("Decision must be APPROVED or DENIED")

        application = await self._repository.get(application_id)
        if application is None:
            raise NotFoundError("Application not found")
        self._state_machine.assert_transition(application.status, decision)

        outcome = await self._repository.decide(
            application_id,
            status=decision,
            decided_by=reviewer_id,
            note=(note or "").strip() or None,
        )
        if outcome is None:
            raise InvalidStateError("Application has already been decided")

        event = (
            NotificationEvent.APPLICATION_APPROVED
            if decision == ApplicationStatus.APPROVED
            else NotificationEvent.APPLICATION_DENIED
        )
        await self._notifications.dispatch(
            outcome.application.user_id,
            event,
            {"application_id": application_id, "note": outcome.application.decision_note},
        )
        logger.info("Application %s %s by %s", application_id, decision.value, reviewer_id)
        return outcome

    @operation("get_application")
    async def get_application(self, identity: Identity, application_id: str) -> SellerApplication:
        user_id = require_user(identity)
        application = await self._repository.get(application_id)
        if application is None:
            raise NotFoundError("Application not found")
        if application.user_id != user_id and identity.role not in (Role.APPROVER, Role.ADMIN):
            raise ForbiddenError("You can only view your own applications")
        return application

    @operation("list_my_applications")
    async def list_my_applications(self, identity: Identity) -> list[SellerApplication]:
        user_id = authorize(identity, Capability.MANAGE_OWN_ACCOUNT)
        return await self._repository.list(user_id=user_id)

    @operation("list_applications")
    async def list_applications(
        self, identity: Identity, *, status: ApplicationStatus | None = None
    ) -> list[SellerApplication]:
        authorize(identity, Capability.REVIEW_APPLICATIONS)
        return await self._repository.list(status=status)

    @operation("count_pending_applications")
    async def count_pending(self, identity: Identity) -> int:
        authorize(identity, Capability.REVIEW_APPLICATIONS)
        return await self._repository.count(ApplicationStatus.PENDING)

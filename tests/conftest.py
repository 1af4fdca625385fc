from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from apps.api.core.errors import Ok
from apps.api.metrics import metrics_registry
from apps.api.services.audit import AuditLog, AuditRepository
from apps.api.services.database import create_engine, create_session_factory, ensure_schema, utcnow
from apps.api.services.discussions import DiscussionRepository, DiscussionService
from apps.api.services.listings import DeliveryMethod, Listing, ListingRepository, ListingService
from apps.api.services.messages import MessageRepository, MessageService
from apps.api.services.notifications import NotificationDispatcher
from apps.api.services.permissions import Identity, Role
from apps.api.services.users import (
    Suite,
    SuiteArea,
    SuiteCatalog,
    SuiteRepository,
    User,
    UserRepository,
    UserService,
)
from apps.api.services.verification import ApplicationRepository, ApplicationStatus, VerificationService


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics_registry.reset()
    yield
    metrics_registry.reset()


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    # A file database gives every session its own connection, like a real server.
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'exchange.db'}")
    await ensure_schema(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


def future_event(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


@dataclass
class Marketplace:
    """All services over one database plus helpers to arrange test data."""

    users: UserRepository
    suites: SuiteRepository
    applications: ApplicationRepository
    listing_repository: ListingRepository
    audit: AuditLog
    notifier: AsyncMock
    user_service: UserService
    catalog: SuiteCatalog
    verification: VerificationService
    listings: ListingService
    messages: MessageService
    discussions: DiscussionService

    async def identity(self, role: Role = Role.GUEST, *, name: str | None = None, **flags) -> Identity:
        now = utcnow()
        user = User(
            id=str(uuid.uuid4()),
            email=f"{uuid.uuid4().hex[:10]}@example.com",
            name=name,
            phone=None,
            role=role,
            is_locked=flags.get("is_locked", False),
            show_in_directory=flags.get("show_in_directory", False),
            created_at=now,
            updated_at=now,
        )
        await self.users.add(user)
        return Identity(user_id=user.id, role=role)

    async def suite(self, display_name: str = "L12") -> Suite:
        area = SuiteArea.LOWER_FIRE
        for candidate in SuiteArea:
            if display_name.startswith(candidate.value) and display_name[len(candidate.value) :].isdigit():
                area = candidate
        suite = await self.suites.find(area, int(display_name[len(area.value) :]))
        assert suite is not None
        return suite

    async def approved_seller(self, suite: Suite, *, approver: Identity | None = None, **flags) -> Identity:
        guest = await self.identity(Role.GUEST, **flags)
        approver = approver or await self.identity(Role.APPROVER)
        submitted = await self.verification.submit_application(
            guest,
            suite_id=suite.id,
            legal_name="Jordan Owner",
            phone="5551234567",
            message="I hold the season lease for this suite.",
        )
        assert isinstance(submitted, Ok), submitted
        decided = await self.verification.decide_application(
            approver, submitted.value.id, decision=ApplicationStatus.APPROVED
        )
        assert isinstance(decided, Ok), decided
        return Identity(user_id=guest.user_id, role=Role.SELLER)

    async def listing(self, seller: Identity, suite: Suite, *, quantity: int = 4, **overrides) -> Listing:
        fields = {
            "suite_id": suite.id,
            "event_title": "Home Opener",
            "event_datetime": future_event(),
            "quantity": quantity,
            "price_per_seat": Decimal("125.00"),
            "delivery_method": DeliveryMethod.MOBILE_TRANSFER,
        }
        fields.update(overrides)
        result = await self.listings.create_listing(seller, **fields)
        assert isinstance(result, Ok), result
        return result.value


@pytest_asyncio.fixture
async def marketplace(session_factory) -> Marketplace:
    users = UserRepository(session_factory)
    suites = SuiteRepository(session_factory)
    applications = ApplicationRepository(session_factory)
    listing_repository = ListingRepository(session_factory)
    audit = AuditLog(AuditRepository(session_factory))
    notifier = AsyncMock()
    notifications = NotificationDispatcher(notifier)
    catalog = SuiteCatalog(suites)
    await catalog.seed_suites()

    return Marketplace(
        users=users,
        suites=suites,
        applications=applications,
        listing_repository=listing_repository,
        audit=audit,
        notifier=notifier,
        user_service=UserService(users, audit),
        catalog=catalog,
        verification=VerificationService(applications, suites, audit, notifications=notifications),
        listings=ListingService(
            listing_repository, applications, suites, audit, notifications=notifications
        ),
        messages=MessageService(MessageRepository(session_factory), listing_repository, audit, notifications=notifications),
        discussions=DiscussionService(DiscussionRepository(session_factory), audit),
    )

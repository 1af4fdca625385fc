"""Listing lifecycle: creation, partial sales, withdrawal and moderation.

Quantity changes go through a single conditional UPDATE so concurrent sales
against the same listing can never oversell it.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Sequence

from sqlalchemy import case, func, select, update as sql_update

from apps.api.core.errors import (
    ForbiddenError,
    InvalidQuantityError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from apps.api.metrics import TICKETS_SOLD, MetricsRegistry, metrics_registry
from apps.api.services.audit import AuditAction, AuditEntry, AuditLog
from apps.api.services.database import SessionFactory, ensure_datetime, optional_datetime, utcnow
from apps.api.services.notifications import NotificationDispatcher, NotificationEvent
from apps.api.services.operations import audited, operation
from apps.api.services.permissions import (
    Capability,
    Identity,
    authorize,
    is_owner_or_admin,
    require_user,
)
from apps.api.services.users import Suite, SuiteArea, SuiteRepository
from apps.api.services.verification import ApplicationRepository
from packages.db.models import ListingTable, SuiteTable

logger = logging.getLogger(__name__)


class ListingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    WITHDRAWN = "WITHDRAWN"
    MODERATED = "MODERATED"


class DeliveryMethod(str, Enum):
    MOBILE_TRANSFER = "MOBILE_TRANSFER"
    PAPER = "PAPER"
    PDF = "PDF"
    WILL_CALL = "WILL_CALL"
    OTHER = "OTHER"


@dataclass(slots=True)
class Listing:
    """Ticket listing for one event in one suite."""

    id: str
    seller_id: str
    suite_id: str
    slug: str
    event_title: str
    event_datetime: datetime
    quantity: int
    original_quantity: int
    price_per_seat: Decimal
    delivery_method: DeliveryMethod
    notes: str | None
    seat_numbers: str | None
    allow_messages: bool
    status: ListingStatus
    view_count: int
    sold_at: datetime | None
    sold_price_total: Decimal | None
    moderation_reason: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ListingChanges:
    """Editable listing fields; ``None`` leaves a field untouched."""

    event_title: str | None = None
    event_datetime: datetime | None = None
    price_per_seat: Decimal | None = None
    delivery_method: DeliveryMethod | None = None
    notes: str | None = None
    seat_numbers: str | None = None
    allow_messages: bool | None = None

    def provided(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self) if getattr(self, item.name) is not None}


@dataclass(slots=True)
class ListingFilters:
    """Search criteria for listing discovery."""

    status: ListingStatus | None = None
    suite_id: str | None = None
    area: SuiteArea | None = None
    seller_id: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(slots=True)
class SaleOutcome:
    """Result of recording a sale against a listing."""

    listing: Listing
    quantity_sold: int
    sold_out: bool


class ListingStateMachine:
    """Allowed listing status transitions. MODERATED is terminal."""

    _TRANSITIONS: Mapping[ListingStatus, Sequence[ListingStatus]] = {
        ListingStatus.ACTIVE: (ListingStatus.SOLD, ListingStatus.WITHDRAWN, ListingStatus.MODERATED),
        ListingStatus.SOLD: (ListingStatus.MODERATED,),
        ListingStatus.WITHDRAWN: (ListingStatus.MODERATED,),
        ListingStatus.MODERATED: (),
    }

    def can_transition(self, current: ListingStatus, target: ListingStatus) -> bool:
        return target in self._TRANSITIONS.get(current, ())

    def assert_transition(self, current: ListingStatus, target: ListingStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidStateError(f"Cannot change listing from {current.value} to {target.value}")

    def sources(self, target: ListingStatus) -> tuple[ListingStatus, ...]:
        return tuple(status for status, targets in self._TRANSITIONS.items() if target in targets)


_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(*parts: str) -> str:
    text = "-".join(part for part in parts if part)
    return _SLUG_PATTERN.sub("-", text.lower()).strip("-")[:200]


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class ListingRepository:
    """Persistence for the `listings` table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(self, listing: Listing) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    ListingTable(
                        id=listing.id,
                        seller_id=listing.seller_id,
                        suite_id=listing.suite_id,
                        slug=listing.slug,
                        event_title=listing.event_title,
                        event_datetime=listing.event_datetime,
                        quantity=listing.quantity,
                        original_quantity=listing.original_quantity,
                        price_per_seat=listing.price_per_seat,
                        delivery_method=listing.delivery_method.value,
                        notes=listing.notes,
                        seat_numbers=listing.seat_numbers,
                        allow_messages=listing.allow_messages,
                        status=listing.status.value,
                        view_count=listing.view_count,
                        created_at=listing.created_at,
                        updated_at=listing.updated_at,
                    )
                )

    async def get(self, listing_id: str) -> Listing | None:
        async with self._session_factory() as session:
            row = await session.get(ListingTable, listing_id)
        return None if row is None else self._table_to_listing(row)

    async def get_by_slug(self, slug: str) -> Listing | None:
        async with self._session_factory() as session:
            result = await session.execute(select(ListingTable).where(ListingTable.slug == slug))
            row = result.scalars().first()
        return None if row is None else self._table_to_listing(row)

    async def search(self, filters: ListingFilters) -> list[Listing]:
        if filters.status == ListingStatus.WITHDRAWN and filters.seller_id is None:
            # Withdrawn listings are only listed per seller.
            return []
        statement = select(ListingTable)
        if filters.status is not None:
            statement = statement.where(ListingTable.status == filters.status.value)
        elif filters.seller_id is not None:
            statement = statement.where(ListingTable.status != ListingStatus.MODERATED.value)
        else:
            statement = statement.where(
                ListingTable.status.in_([ListingStatus.ACTIVE.value, ListingStatus.SOLD.value])
            )
        statement = statement.where(ListingTable.status != ListingStatus.MODERATED.value)
        if filters.suite_id is not None:
            statement = statement.where(ListingTable.suite_id == filters.suite_id)
        if filters.seller_id is not None:
            statement = statement.where(ListingTable.seller_id == filters.seller_id)
        if filters.area is not None:
            statement = statement.join(SuiteTable, SuiteTable.id == ListingTable.suite_id).where(
                SuiteTable.area == filters.area.value
            )
        statement = (
            statement.order_by(ListingTable.event_datetime.asc(), ListingTable.created_at.asc())
            .offset(max(0, filters.offset))
            .limit(max(1, min(filters.limit, 200)))
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_listing(row) for row in result.scalars().all()]

    async def record_sale(self, listing_id: str, quantity: int, sale_total: Decimal) -> bool:
        """Atomically take ``quantity`` seats off an ACTIVE listing.

        The row only changes when enough seats remain; the listing flips to SOLD
        when the last seat goes. Returns whether the row was updated.
        """

        now = utcnow()
        sells_out = ListingTable.quantity == quantity
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    sql_update(ListingTable)
                    .where(
                        ListingTable.id == listing_id,
                        ListingTable.status == ListingStatus.ACTIVE.value,
                        ListingTable.quantity >= quantity,
                    )
                    .values(
                        quantity=ListingTable.quantity - quantity,
                        status=case((sells_out, ListingStatus.SOLD.value), else_=ListingTable.status),
                        sold_at=case((sells_out, now), else_=ListingTable.sold_at),
                        sold_price_total=func.coalesce(ListingTable.sold_price_total, 0) + sale_total,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def transition(
        self,
        listing_id: str,
        *,
        expected: Sequence[ListingStatus],
        target: ListingStatus,
        values: Mapping[str, Any] | None = None,
    ) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    sql_update(ListingTable)
                    .where(
                        ListingTable.id == listing_id,
                        ListingTable.status.in_([status.value for status in expected]),
                    )
                    .values(status=target.value, updated_at=utcnow(), **dict(values or {}))
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def update_active(self, listing_id: str, values: Mapping[str, Any]) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    sql_update(ListingTable)
                    .where(ListingTable.id == listing_id, ListingTable.status == ListingStatus.ACTIVE.value)
                    .values(updated_at=utcnow(), **dict(values))
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def increment_views(self, listing_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    sql_update(ListingTable)
                    .where(ListingTable.id == listing_id)
                    .values(view_count=ListingTable.view_count + 1)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def slug_exists(self, slug: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(ListingTable.id).where(ListingTable.slug == slug))
            return result.first() is not None

    @staticmethod
    def _table_to_listing(row: ListingTable) -> Listing:
        return Listing(
            id=row.id,
            seller_id=row.seller_id,
            suite_id=row.suite_id,
            slug=row.slug,
            event_title=row.event_title,
            event_datetime=ensure_datetime(row.event_datetime),
            quantity=row.quantity,
            original_quantity=row.original_quantity,
            price_per_seat=Decimal(str(row.price_per_seat)),
            delivery_method=DeliveryMethod(row.delivery_method),
            notes=row.notes,
            seat_numbers=row.seat_numbers,
            allow_messages=row.allow_messages,
            status=ListingStatus(row.status),
            view_count=row.view_count,
            sold_at=optional_datetime(row.sold_at),
            sold_price_total=None if row.sold_price_total is None else Decimal(str(row.sold_price_total)),
            moderation_reason=row.moderation_reason,
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
        )


def _describe_created(listing: Listing) -> Sequence[AuditEntry]:
    return [
        AuditEntry(
            AuditAction.LISTING_CREATED,
            "listing",
            listing.id,
            {"suite_id": listing.suite_id, "quantity": listing.original_quantity},
        )
    ]


def _describe_updated(listing: Listing) -> Sequence[AuditEntry]:
    return [AuditEntry(AuditAction.LISTING_UPDATED, "listing", listing.id, {"status": listing.status.value})]


def _describe_sale(outcome: SaleOutcome) -> Sequence[AuditEntry]:
    action = AuditAction.LISTING_MARKED_SOLD if outcome.sold_out else AuditAction.LISTING_UPDATED
    return [
        AuditEntry(
            action,
            "listing",
            outcome.listing.id,
            {"quantity_sold": outcome.quantity_sold, "remaining": outcome.listing.quantity},
        )
    ]


def _describe_withdrawn(listing: Listing) -> Sequence[AuditEntry]:
    return [AuditEntry(AuditAction.LISTING_WITHDRAWN, "listing", listing.id, {"remaining": listing.quantity})]


def _describe_moderated(listing: Listing) -> Sequence[AuditEntry]:
    return [
        AuditEntry(
            AuditAction.LISTING_MODERATED,
            "listing",
            listing.id,
            {"reason": listing.moderation_reason, "seller_id": listing.seller_id},
        )
    ]


class ListingService:
    """Listing lifecycle operations with ownership checks and inventory accounting."""

    def __init__(
        self,
        repository: ListingRepository,
        applications: ApplicationRepository,
        suites: SuiteRepository,
        audit: AuditLog,
        *,
        notifications: NotificationDispatcher | None = None,
        state_machine: ListingStateMachine | None = None,
        max_price_per_seat: Decimal | int = 10_000,
        registry: MetricsRegistry | None = None,
    ) -> None:
        self._repository = repository
        self._applications = applications
        self._suites = suites
        self.audit = audit
        self._notifications = notifications or NotificationDispatcher()
        self._state_machine = state_machine or ListingStateMachine()
        self._max_price = Decimal(max_price_per_seat)
        self._tickets_sold = (registry or metrics_registry).counter(TICKETS_SOLD)

    @audited("create_listing", _describe_created)
    async def create_listing(
        self,
        identity: Identity,
        *,
        suite_id: str,
        event_title: str,
        event_datetime: datetime,
        quantity: int,
        price_per_seat: Decimal | float | str,
        delivery_method: DeliveryMethod,
        notes: str | None = None,
        seat_numbers: str | None = None,
        allow_messages: bool = True,
    ) -> Listing:
        seller_id = authorize(identity, Capability.CREATE_LISTING)
        suite = await self._suites.get(suite_id)
        if suite is None:
            raise NotFoundError("Suite not found")
        if not await self._applications.has_approved(seller_id, suite_id):
            raise ForbiddenError(f"You are not a verified owner of suite {suite.display_name}")

        title = self._validate_title(event_title)
        event_at = self._validate_event_datetime(event_datetime)
        price = self._validate_price(price_per_seat)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= suite.capacity:
            raise ValidationError(f"Quantity must be between 1 and {suite.capacity}")

        now = utcnow()
        listing = Listing(
            id=str(uuid.uuid4()),
            seller_id=seller_id,
            suite_id=suite_id,
            slug=await self._unique_slug(suite, title, event_at),
            event_title=title,
            event_datetime=event_at,
            quantity=quantity,
            original_quantity=quantity,
            price_per_seat=price,
            delivery_method=self._validate_delivery_method(delivery_method),
            notes=self._validate_notes(notes),
            seat_numbers=(seat_numbers or "").strip() or None,
            allow_messages=allow_messages,
            status=ListingStatus.ACTIVE,
            view_count=0,
            sold_at=None,
            sold_price_total=None,
            moderation_reason=None,
            created_at=now,
            updated_at=now,
        )
        await self._repository.add(listing)
        logger.info("Listing %s created for suite %s", listing.id, suite.display_name)
        return listing

    @audited("update_listing", _describe_updated)
    async def update_listing(self, identity: Identity, listing_id: str, changes: ListingChanges) -> Listing:
        listing = await self._owned_listing(identity, listing_id, "edit")
        if listing.status != ListingStatus.ACTIVE:
            raise InvalidStateError(f"Only active listings can be edited (listing is {listing.status.value})")

        values = changes.provided()
        if not values:
            raise ValidationError("No changes provided")
        if "event_title" in values:
            values["event_title"] = self._validate_title(values["event_title"])
        if "event_datetime" in values:
            values["event_datetime"] = self._validate_event_datetime(values["event_datetime"])
        if "price_per_seat" in values:
            values["price_per_seat"] = self._validate_price(values["price_per_seat"])
        if "delivery_method" in values:
            values["delivery_method"] = self._validate_delivery_method(values["delivery_method"]).value
        if "notes" in values:
            values["notes"] = self._validate_notes(values["notes"])
        if "seat_numbers" in values:
            values["seat_numbers"] = values["seat_numbers"].strip() or None

        if not await self._repository.update_active(listing_id, values):
            raise InvalidStateError("Listing is no longer active")
        return await self._reload(listing_id)

    @audited("record_sale", _describe_sale)
    async def record_sale(
        self,
        identity: Identity,
        listing_id: str,
        quantity_sold: int,
        *,
        sale_total: Decimal | float | str | None = None,
    ) -> SaleOutcome:
        listing = await self._owned_listing(identity, listing_id, "record sales for")
        if isinstance(quantity_sold, bool) or not isinstance(quantity_sold, int) or quantity_sold < 1:
            raise InvalidQuantityError("Quantity sold must be at least 1")
        if quantity_sold > listing.quantity:
            raise InvalidQuantityError(
                f"Cannot sell {quantity_sold} tickets; only {listing.quantity} remaining"
            )
        if listing.status != ListingStatus.ACTIVE:
            raise InvalidStateError(f"Cannot record a sale on a {listing.status.value} listing")

        if sale_total is None:
            total = listing.price_per_seat * quantity_sold
        else:
            total = self._parse_amount(sale_total, "Sale total")
            if total < 0:
                raise ValidationError("Sale total cannot be negative")

        if not await self._repository.record_sale(listing_id, quantity_sold, total):
            current = await self._reload(listing_id)
            if current.status in (ListingStatus.WITHDRAWN, ListingStatus.MODERATED):
                raise InvalidStateError(f"Cannot record a sale on a {current.status.value} listing")
            raise InvalidQuantityError(
                f"Cannot sell {quantity_sold} tickets; only {current.quantity} remaining"
            )

        updated = await self._reload(listing_id)
        self._tickets_sold.inc(quantity_sold)
        return SaleOutcome(
            listing=updated,
            quantity_sold=quantity_sold,
            sold_out=updated.status == ListingStatus.SOLD,
        )

    @audited("withdraw_listing", _describe_withdrawn)
    async def withdraw_listing(self, identity: Identity, listing_id: str) -> Listing:
        listing = await self._owned_listing(identity, listing_id, "withdraw")
        self._state_machine.assert_transition(listing.status, ListingStatus.WITHDRAWN)
        if not await self._repository.transition(
            listing_id, expected=(ListingStatus.ACTIVE,), target=ListingStatus.WITHDRAWN
        ):
            raise InvalidStateError("Listing is no longer active")
        return await self._reload(listing_id)

    @audited("moderate_listing", _describe_moderated)
    async def moderate_listing(self, identity: Identity, listing_id: str, *, reason: str) -> Listing:
        authorize(identity, Capability.MODERATE_LISTING)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A moderation reason is required")
        listing = await self._repository.get(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        self._state_machine.assert_transition(listing.status, ListingStatus.MODERATED)
        if not await self._repository.transition(
            listing_id,
            expected=self._state_machine.sources(ListingStatus.MODERATED),
            target=ListingStatus.MODERATED,
            values={"moderation_reason": reason},
        ):
            raise InvalidStateError("Listing has already been moderated")
        moderated = await self._reload(listing_id)
        await self._notifications.dispatch(
            moderated.seller_id,
            NotificationEvent.LISTING_MODERATED,
            {"listing_id": listing_id, "reason": reason},
        )
        return moderated

    @operation("record_listing_view")
    async def record_view(self, identity: Identity, listing_id: str) -> None:
        if not await self._repository.increment_views(listing_id):
            raise NotFoundError("Listing not found")

    @operation("get_listing")
    async def get_listing(self, identity: Identity, listing_id: str) -> Listing:
        return self._visible(identity, await self._repository.get(listing_id))

    @operation("get_listing_by_slug")
    async def get_listing_by_slug(self, identity: Identity, slug: str) -> Listing:
        return self._visible(identity, await self._repository.get_by_slug(slug))

    @operation("search_listings")
    async def search_listings(self, identity: Identity, filters: ListingFilters | None = None) -> list[Listing]:
        return await self._repository.search(filters or ListingFilters())

    async def _owned_listing(self, identity: Identity, listing_id: str, verb: str) -> Listing:
        require_user(identity)
        listing = await self._repository.get(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        if not is_owner_or_admin(identity, listing.seller_id):
            raise ForbiddenError(f"You can only {verb} your own listings")
        return listing

    async def _reload(self, listing_id: str) -> Listing:
        listing = await self._repository.get(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        return listing

    @staticmethod
    def _visible(identity: Identity, listing: Listing | None) -> Listing:
        if listing is None:
            raise NotFoundError("Listing not found")
        if listing.status == ListingStatus.MODERATED and not is_owner_or_admin(identity, listing.seller_id):
            raise NotFoundError("Listing not found")
        return listing

    async def _unique_slug(self, suite: Suite, title: str, event_at: datetime) -> str:
        base = slugify(suite.display_name, title, event_at.strftime("%Y-%m-%d"))
        slug = base
        while await self._repository.slug_exists(slug):
            slug = f"{base}-{uuid.uuid4().hex[:6]}"
        return slug

    @staticmethod
    def _validate_title(title: str) -> str:
        title = (title or "").strip()
        if len(title) < 2:
            raise ValidationError("Event title must be at least 2 characters")
        if len(title) > 255:
            raise ValidationError("Event title must be at most 255 characters")
        return title

    @staticmethod
    def _validate_event_datetime(value: datetime) -> datetime:
        if not isinstance(value, datetime):
            raise ValidationError("Event date is required")
        value = _as_utc(value)
        if value <= utcnow():
            raise ValidationError("Event date must be in the future")
        return value

    @staticmethod
    def _validate_delivery_method(value: DeliveryMethod | str) -> DeliveryMethod:
        try:
            return DeliveryMethod(value)
        except ValueError:
            choices = ", ".join(method.value for method in DeliveryMethod)
            raise ValidationError(f"Delivery method must be one of {choices}") from None

    @staticmethod
    def _validate_notes(notes: str | None) -> str | None:
        notes = (notes or "").strip() or None
        if notes is not None and len(notes) > 1000:
            raise ValidationError("Notes must be at most 1000 characters")
        return notes

    def _validate_price(self, value: Decimal | float | str) -> Decimal:
        price = self._parse_amount(value, "Price per seat")
        if price <= 0:
            raise ValidationError("Price per seat must be greater than 0")
        if price > self._max_price:
            raise ValidationError(f"Price per seat cannot exceed {self._max_price}")
        return price

    @staticmethod
    def _parse_amount(value: Decimal | float | str, label: str) -> Decimal:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"{label} must be a number") from exc
        if not amount.is_finite():
            raise ValidationError(f"{label} must be a number")
        return amount.quantize(Decimal("0.01"))

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from apps.api.api.errors import unwrap
from apps.api.dependencies.auth import CurrentIdentity
from apps.api.dependencies.services import ListingServiceDep
from apps.api.services.listings import (
    DeliveryMethod,
    Listing,
    ListingChanges,
    ListingFilters,
    ListingStatus,
)
from apps.api.services.users import SuiteArea

router = APIRouter(prefix="/listings", tags=["listings"])


class ListingModel(BaseModel):
    id: str
    seller_id: str
    suite_id: str
    slug: str
    event_title: str
    event_datetime: str
    quantity: int
    original_quantity: int
    price_per_seat: str
    delivery_method: DeliveryMethod
    notes: str | None = None
    seat_numbers: str | None = None
    allow_messages: bool
    status: ListingStatus
    view_count: int
    sold_at: str | None = None
    sold_price_total: str | None = None
    moderation_reason: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, listing: Listing) -> "ListingModel":
        return cls(
            id=listing.id,
            seller_id=listing.seller_id,
            suite_id=listing.suite_id,
            slug=listing.slug,
            event_title=listing.event_title,
            event_datetime=listing.event_datetime.isoformat(),
            quantity=listing.quantity,
            original_quantity=listing.original_quantity,
            price_per_seat=str(listing.price_per_seat),
            delivery_method=listing.delivery_method,
            notes=listing.notes,
            seat_numbers=listing.seat_numbers,
            allow_messages=listing.allow_messages,
            status=listing.status,
            view_count=listing.view_count,
            sold_at=listing.sold_at.isoformat() if listing.sold_at else None,
            sold_price_total=None if listing.sold_price_total is None else str(listing.sold_price_total),
            moderation_reason=listing.moderation_reason,
            created_at=listing.created_at.isoformat(),
            updated_at=listing.updated_at.isoformat(),
        )


class ListingCreateRequest(BaseModel):
    suite_id: str
    event_title: str
    event_datetime: datetime
    quantity: int
    price_per_seat: Decimal
    delivery_method: DeliveryMethod
    notes: str | None = None
    seat_numbers: str | None = None
    allow_messages: bool = True


class ListingUpdateRequest(BaseModel):
    event_title: str | None = None
    event_datetime: datetime | None = None
    price_per_seat: Decimal | None = None
    delivery_method: DeliveryMethod | None = None
    notes: str | None = None
    seat_numbers: str | None = None
    allow_messages: bool | None = None


class SaleRequest(BaseModel):
    quantity: int
    sale_total: Decimal | None = None


class SaleModel(BaseModel):
    listing: ListingModel
    quantity_sold: int
    sold_out: bool


class ModerationRequest(BaseModel):
    reason: str = Field(min_length=1)


@router.post("", response_model=ListingModel, status_code=status.HTTP_201_CREATED)
async def create_listing(
    payload: ListingCreateRequest, service: ListingServiceDep, identity: CurrentIdentity
) -> ListingModel:
    listing = unwrap(
        await service.create_listing(
            identity,
            suite_id=payload.suite_id,
            event_title=payload.event_title,
            event_datetime=payload.event_datetime,
            quantity=payload.quantity,
            price_per_seat=payload.price_per_seat,
            delivery_method=payload.delivery_method,
            notes=payload.notes,
            seat_numbers=payload.seat_numbers,
            allow_messages=payload.allow_messages,
        )
    )
    return ListingModel.from_entity(listing)


@router.get("", response_model=list[ListingModel], summary="Browse listings")
async def search_listings(
    service: ListingServiceDep,
    identity: CurrentIdentity,
    status_filter: ListingStatus | None = Query(default=None, alias="status"),
    suite_id: str | None = None,
    area: SuiteArea | None = None,
    seller_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ListingModel]:
    filters = ListingFilters(
        status=status_filter, suite_id=suite_id, area=area, seller_id=seller_id, limit=limit, offset=offset
    )
    return [ListingModel.from_entity(item) for item in unwrap(await service.search_listings(identity, filters))]


@router.get("/by-slug/{slug}", response_model=ListingModel)
async def get_listing_by_slug(slug: str, service: ListingServiceDep, identity: CurrentIdentity) -> ListingModel:
    listing = unwrap(await service.get_listing_by_slug(identity, slug))
    return await _view(service, identity, listing)


@router.get("/{listing_id}", response_model=ListingModel)
async def get_listing(listing_id: str, service: ListingServiceDep, identity: CurrentIdentity) -> ListingModel:
    listing = unwrap(await service.get_listing(identity, listing_id))
    return await _view(service, identity, listing)


@router.patch("/{listing_id}", response_model=ListingModel)
async def update_listing(
    listing_id: str, payload: ListingUpdateRequest, service: ListingServiceDep, identity: CurrentIdentity
) -> ListingModel:
    changes = ListingChanges(**payload.model_dump(exclude_unset=True))
    return ListingModel.from_entity(unwrap(await service.update_listing(identity, listing_id, changes)))


@router.post("/{listing_id}/sales", response_model=SaleModel, summary="Record tickets sold")
async def record_sale(
    listing_id: str, payload: SaleRequest, service: ListingServiceDep, identity: CurrentIdentity
) -> SaleModel:
    outcome = unwrap(
        await service.record_sale(identity, listing_id, payload.quantity, sale_total=payload.sale_total)
    )
    return SaleModel(
        listing=ListingModel.from_entity(outcome.listing),
        quantity_sold=outcome.quantity_sold,
        sold_out=outcome.sold_out,
    )


@router.post("/{listing_id}/withdraw", response_model=ListingModel)
async def withdraw_listing(listing_id: str, service: ListingServiceDep, identity: CurrentIdentity) -> ListingModel:
    return ListingModel.from_entity(unwrap(await service.withdraw_listing(identity, listing_id)))


@router.post("/{listing_id}/moderate", response_model=ListingModel)
async def moderate_listing(
    listing_id: str, payload: ModerationRequest, service: ListingServiceDep, identity: CurrentIdentity
) -> ListingModel:
    return ListingModel.from_entity(
        unwrap(await service.moderate_listing(identity, listing_id, reason=payload.reason))
    )


async def _view(service, identity, listing: Listing) -> ListingModel:
    # View counting is best effort; the listing was already found.
    result = await service.record_view(identity, listing.id)
    if result.ok:
        listing.view_count += 1
    return ListingModel.from_entity(listing)

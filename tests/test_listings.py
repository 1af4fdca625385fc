import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from apps.api.core.errors import Err, ErrorKind, Ok
from apps.api.metrics import AUDIT_WRITE_FAILURES, TICKETS_SOLD, metrics_registry
from apps.api.services.audit import AuditAction
from apps.api.services.listings import (
    DeliveryMethod,
    ListingChanges,
    ListingFilters,
    ListingStateMachine,
    ListingStatus,
    slugify,
)
from apps.api.services.notifications import NotificationEvent
from apps.api.services.permissions import Identity, Role
from conftest import future_event


def test_state_machine_transitions():
    machine = ListingStateMachine()
    assert machine.can_transition(ListingStatus.ACTIVE, ListingStatus.SOLD)
    assert machine.can_transition(ListingStatus.ACTIVE, ListingStatus.WITHDRAWN)
    assert machine.can_transition(ListingStatus.SOLD, ListingStatus.MODERATED)
    assert machine.can_transition(ListingStatus.WITHDRAWN, ListingStatus.MODERATED)
    assert not machine.can_transition(ListingStatus.SOLD, ListingStatus.ACTIVE)
    assert not machine.can_transition(ListingStatus.WITHDRAWN, ListingStatus.ACTIVE)
    assert not machine.can_transition(ListingStatus.MODERATED, ListingStatus.ACTIVE)
    assert set(machine.sources(ListingStatus.MODERATED)) == {
        ListingStatus.ACTIVE,
        ListingStatus.SOLD,
        ListingStatus.WITHDRAWN,
    }


def test_slugify_collapses_separators():
    assert slugify("L12", "Home Opener!", "2026-11-01") == "l12-home-opener-2026-11-01"


@pytest.mark.asyncio
async def test_create_listing_sets_original_quantity(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)

    listing = await marketplace.listing(seller, suite, quantity=4)

    assert listing.status == ListingStatus.ACTIVE
    assert listing.quantity == listing.original_quantity == 4
    assert listing.view_count == 0
    assert listing.slug.startswith("l12-home-opener-")
    assert listing.price_per_seat == Decimal("125.00")
    events = await marketplace.audit._repository.list_events(target_id=listing.id)
    assert [event.action for event in events] == [AuditAction.LISTING_CREATED]


@pytest.mark.asyncio
async def test_create_listing_requires_approved_application_for_suite(marketplace):
    suite = await marketplace.suite("L12")
    other_suite = await marketplace.suite("L13")
    seller = await marketplace.approved_seller(suite)
    guest = await marketplace.identity(Role.GUEST)

    wrong_suite = await marketplace.listings.create_listing(
        seller,
        suite_id=other_suite.id,
        event_title="Home Opener",
        event_datetime=future_event(),
        quantity=2,
        price_per_seat="80",
        delivery_method=DeliveryMethod.PDF,
    )
    not_seller = await marketplace.listings.create_listing(
        guest,
        suite_id=suite.id,
        event_title="Home Opener",
        event_datetime=future_event(),
        quantity=2,
        price_per_seat="80",
        delivery_method=DeliveryMethod.PDF,
    )

    assert isinstance(wrong_suite, Err) and wrong_suite.kind == ErrorKind.FORBIDDEN
    assert isinstance(not_seller, Err) and not_seller.kind == ErrorKind.FORBIDDEN


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"quantity": 0},
        {"quantity": 9},
        {"price_per_seat": Decimal("0")},
        {"price_per_seat": Decimal("10000.01")},
        {"event_title": "X"},
        {"event_datetime": datetime(2020, 1, 1, tzinfo=timezone.utc)},
        {"notes": "n" * 1001},
        {"delivery_method": "CARRIER_PIGEON"},
    ],
)
async def test_create_listing_validates_fields(marketplace, overrides):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    fields = {
        "suite_id": suite.id,
        "event_title": "Home Opener",
        "event_datetime": future_event(),
        "quantity": 2,
        "price_per_seat": Decimal("50"),
        "delivery_method": DeliveryMethod.PAPER,
    }
    fields.update(overrides)

    result = await marketplace.listings.create_listing(seller, **fields)

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_partial_sale_keeps_listing_active(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite, quantity=4)

    result = await marketplace.listings.record_sale(seller, listing.id, 3)

    assert isinstance(result, Ok)
    assert result.value.sold_out is False
    assert result.value.listing.quantity == 1
    assert result.value.listing.original_quantity == 4
    assert result.value.listing.status == ListingStatus.ACTIVE
    assert result.value.listing.sold_price_total == Decimal("375.00")
    events = await marketplace.audit._repository.list_events(target_id=listing.id)
    assert events[0].action == AuditAction.LISTING_UPDATED
    assert metrics_registry.counter(TICKETS_SOLD).value() == 3


@pytest.mark.asyncio
async def test_full_sale_marks_sold_and_further_sales_fail(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite, quantity=4)

    sold = await marketplace.listings.record_sale(seller, listing.id, 4, sale_total="450")
    again = await marketplace.listings.record_sale(seller, listing.id, 1)

    assert sold.value.sold_out is True
    assert sold.value.listing.quantity == 0
    assert sold.value.listing.status == ListingStatus.SOLD
    assert sold.value.listing.sold_at is not None
    assert sold.value.listing.sold_price_total == Decimal("450.00")
    assert isinstance(again, Err)
    assert again.kind == ErrorKind.INVALID_QUANTITY
    events = await marketplace.audit._repository.list_events(target_id=listing.id)
    assert events[0].action == AuditAction.LISTING_MARKED_SOLD


@pytest.mark.asyncio
async def test_sale_commits_when_audit_write_fails(marketplace, monkeypatch):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite, quantity=2)
    monkeypatch.setattr(
        marketplace.audit._repository, "add", AsyncMock(side_effect=RuntimeError("audit store offline"))
    )

    result = await marketplace.listings.record_sale(seller, listing.id, 2)

    assert isinstance(result, Ok)
    assert result.value.sold_out is True
    stored = await marketplace.listing_repository.get(listing.id)
    assert stored.quantity == 0
    assert stored.status == ListingStatus.SOLD
    assert metrics_registry.counter(AUDIT_WRITE_FAILURES).value() == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity_sold", [0, -1, 5])
async def test_out_of_range_sale_fails_and_leaves_quantity(marketplace, quantity_sold):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite, quantity=4)

    result = await marketplace.listings.record_sale(seller, listing.id, quantity_sold)

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.INVALID_QUANTITY
    current = await marketplace.listing_repository.get(listing.id)
    assert current.quantity == 4
    assert current.status == ListingStatus.ACTIVE


@pytest.mark.asyncio
async def test_concurrent_sales_of_last_ticket(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    admin = await marketplace.identity(Role.ADMIN)
    listing = await marketplace.listing(seller, suite, quantity=1)

    results = await asyncio.gather(
        marketplace.listings.record_sale(seller, listing.id, 1),
        marketplace.listings.record_sale(admin, listing.id, 1),
    )

    successes = [result for result in results if result.ok]
    failures = [result for result in results if not result.ok]
    assert len(successes) == 1
    assert len(failures) == 1
    assert failures[0].kind == ErrorKind.INVALID_QUANTITY
    current = await marketplace.listing_repository.get(listing.id)
    assert current.quantity == 0
    assert current.status == ListingStatus.SOLD


@pytest.mark.asyncio
async def test_quantity_stays_within_bounds_across_concurrent_sales(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite, quantity=5)

    results = await asyncio.gather(
        *(marketplace.listings.record_sale(seller, listing.id, 2) for _ in range(4))
    )

    sold = sum(result.value.quantity_sold for result in results if result.ok)
    current = await marketplace.listing_repository.get(listing.id)
    assert sold == 4
    assert current.quantity == 1
    assert 0 <= current.quantity <= current.original_quantity


@pytest.mark.asyncio
async def test_non_owner_cannot_withdraw(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    other_seller = await marketplace.approved_seller(await marketplace.suite("L20"))
    listing = await marketplace.listing(seller, suite)

    result = await marketplace.listings.withdraw_listing(other_seller, listing.id)

    assert isinstance(result, Err)
    assert result.kind == ErrorKind.FORBIDDEN
    assert (await marketplace.listing_repository.get(listing.id)).status == ListingStatus.ACTIVE


@pytest.mark.asyncio
async def test_withdraw_freezes_quantity_and_blocks_sales(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite, quantity=4)
    await marketplace.listings.record_sale(seller, listing.id, 1)

    withdrawn = await marketplace.listings.withdraw_listing(seller, listing.id)
    sale = await marketplace.listings.record_sale(seller, listing.id, 1)
    twice = await marketplace.listings.withdraw_listing(seller, listing.id)

    assert withdrawn.value.status == ListingStatus.WITHDRAWN
    assert withdrawn.value.quantity == 3
    assert sale.kind == ErrorKind.INVALID_STATE
    assert twice.kind == ErrorKind.INVALID_STATE


@pytest.mark.asyncio
async def test_moderation_is_admin_only_and_terminal(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    admin = await marketplace.identity(Role.ADMIN)
    listing = await marketplace.listing(seller, suite, quantity=2)
    await marketplace.listings.record_sale(seller, listing.id, 2)

    by_seller = await marketplace.listings.moderate_listing(seller, listing.id, reason="Spam")
    moderated = await marketplace.listings.moderate_listing(admin, listing.id, reason="Duplicate listing")
    again = await marketplace.listings.moderate_listing(admin, listing.id, reason="Duplicate listing")

    assert by_seller.kind == ErrorKind.FORBIDDEN
    assert moderated.value.status == ListingStatus.MODERATED
    assert moderated.value.moderation_reason == "Duplicate listing"
    assert again.kind == ErrorKind.INVALID_STATE
    events = [call.args[1] for call in marketplace.notifier.notify.await_args_list]
    assert NotificationEvent.LISTING_MODERATED in events


@pytest.mark.asyncio
async def test_moderated_listings_are_hidden_from_discovery(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    admin = await marketplace.identity(Role.ADMIN)
    buyer = await marketplace.identity(Role.GUEST)
    visible = await marketplace.listing(seller, suite, event_title="Rivalry Night")
    hidden = await marketplace.listing(seller, suite, event_title="Season Finale")
    await marketplace.listings.moderate_listing(admin, hidden.id, reason="Policy violation")

    browse = await marketplace.listings.search_listings(Identity.anonymous())
    by_buyer = await marketplace.listings.get_listing(buyer, hidden.id)
    by_owner = await marketplace.listings.get_listing(seller, hidden.id)

    assert [item.id for item in browse.value] == [visible.id]
    assert by_buyer.kind == ErrorKind.NOT_FOUND
    assert by_owner.value.status == ListingStatus.MODERATED


@pytest.mark.asyncio
async def test_withdrawn_listings_are_only_listed_per_seller(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    withdrawn = await marketplace.listing(seller, suite)
    await marketplace.listings.withdraw_listing(seller, withdrawn.id)

    anyone = await marketplace.listings.search_listings(
        Identity.anonymous(), ListingFilters(status=ListingStatus.WITHDRAWN)
    )
    own = await marketplace.listings.search_listings(
        seller, ListingFilters(status=ListingStatus.WITHDRAWN, seller_id=seller.user_id)
    )

    assert anyone.value == []
    assert [item.id for item in own.value] == [withdrawn.id]


@pytest.mark.asyncio
async def test_search_filters_and_orders_by_event_date(marketplace):
    suite = await marketplace.suite("L12")
    terrace = await marketplace.suite("UNT4")
    seller = await marketplace.approved_seller(suite)
    terrace_seller = await marketplace.approved_seller(terrace)
    later = await marketplace.listing(seller, suite, event_datetime=future_event(60))
    sooner = await marketplace.listing(seller, suite, event_datetime=future_event(10))
    terrace_listing = await marketplace.listing(terrace_seller, terrace)
    withdrawn = await marketplace.listing(seller, suite, event_datetime=future_event(20))
    await marketplace.listings.withdraw_listing(seller, withdrawn.id)

    everything = await marketplace.listings.search_listings(Identity.anonymous())
    lower_bowl = await marketplace.listings.search_listings(
        Identity.anonymous(), ListingFilters(area=suite.area)
    )
    by_seller = await marketplace.listings.search_listings(
        Identity.anonymous(), ListingFilters(seller_id=seller.user_id)
    )

    assert withdrawn.id not in [item.id for item in everything.value]
    assert [item.id for item in lower_bowl.value] == [sooner.id, later.id]
    assert terrace_listing.id in [item.id for item in everything.value]
    assert {item.id for item in by_seller.value} == {sooner.id, later.id, withdrawn.id}


@pytest.mark.asyncio
async def test_record_view_increments_count(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite)

    await marketplace.listings.record_view(Identity.anonymous(), listing.id)
    await marketplace.listings.record_view(Identity.anonymous(), listing.id)
    missing = await marketplace.listings.record_view(Identity.anonymous(), "missing")

    assert (await marketplace.listing_repository.get(listing.id)).view_count == 2
    assert missing.kind == ErrorKind.NOT_FOUND
    assert await marketplace.audit._repository.list_events(target_id=listing.id, action=AuditAction.LISTING_UPDATED) == []


@pytest.mark.asyncio
async def test_update_listing_edits_active_listing_only(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite, quantity=2)

    updated = await marketplace.listings.update_listing(
        seller,
        listing.id,
        ListingChanges(price_per_seat=Decimal("99.50"), allow_messages=False, notes="Parking pass included"),
    )
    empty = await marketplace.listings.update_listing(seller, listing.id, ListingChanges())
    await marketplace.listings.record_sale(seller, listing.id, 2)
    after_sale = await marketplace.listings.update_listing(
        seller, listing.id, ListingChanges(event_title="Renamed")
    )

    assert updated.value.price_per_seat == Decimal("99.50")
    assert updated.value.allow_messages is False
    assert updated.value.notes == "Parking pass included"
    assert updated.value.quantity == 2
    assert empty.kind == ErrorKind.VALIDATION_ERROR
    assert after_sale.kind == ErrorKind.INVALID_STATE


@pytest.mark.asyncio
async def test_update_listing_rejects_unknown_delivery_method(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    listing = await marketplace.listing(seller, suite)

    bad = await marketplace.listings.update_listing(
        seller, listing.id, ListingChanges(delivery_method="CARRIER_PIGEON")
    )
    good = await marketplace.listings.update_listing(seller, listing.id, ListingChanges(delivery_method="PDF"))

    assert bad.kind == ErrorKind.VALIDATION_ERROR
    assert good.value.delivery_method == DeliveryMethod.PDF


@pytest.mark.asyncio
async def test_get_listing_by_slug(marketplace):
    suite = await marketplace.suite("L12")
    seller = await marketplace.approved_seller(suite)
    first = await marketplace.listing(seller, suite)
    second = await marketplace.listing(seller, suite, event_datetime=first.event_datetime + timedelta(seconds=1))

    found = await marketplace.listings.get_listing_by_slug(Identity.anonymous(), second.slug)

    assert first.slug != second.slug
    assert found.value.id == second.id

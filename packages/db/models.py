"""SQLModel table definitions for the suite exchange data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


_OPEN_APPLICATION_STATUSES = text("status IN ('PENDING', 'APPROVED')")


class UserTable(SQLModel, table=True):
    """Marketplace accounts. Role is the only authorization axis."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    role: str = Field(default="GUEST", sa_column=Column(String(20), nullable=False))
    is_locked: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    show_in_directory: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class SuiteTable(SQLModel, table=True):
    """Physical suites; immutable reference data."""

    __tablename__ = "suites"
    __table_args__ = (UniqueConstraint("area", "number", name="uq_suites_area_number"),)

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    area: str = Field(sa_column=Column(String(10), nullable=False))
    number: int = Field(sa_column=Column(Integer, nullable=False))
    display_name: str = Field(sa_column=Column(String(20), nullable=False))
    capacity: int = Field(default=8, sa_column=Column(Integer, nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))


class SellerApplicationTable(SQLModel, table=True):
    """Requests from a user to be verified as the owner of a suite."""

    __tablename__ = "seller_applications"
    __table_args__ = (
        # At most one open (pending or approved) application per user and suite.
        Index(
            "uq_seller_applications_open",
            "user_id",
            "suite_id",
            unique=True,
            sqlite_where=_OPEN_APPLICATION_STATUSES,
            postgresql_where=_OPEN_APPLICATION_STATUSES,
        ),
    )

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    user_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False, index=True))
    suite_id: str = Field(sa_column=Column(String(36), ForeignKey("suites.id"), nullable=False))
    legal_name: str = Field(sa_column=Column(String(255), nullable=False))
    phone: str = Field(sa_column=Column(String(50), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    invite_code: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    decision_note: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    decided_by: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    decided_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ListingTable(SQLModel, table=True):
    """Ticket listings offered by verified suite owners."""

    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint(
            "quantity >= 0 AND quantity <= original_quantity",
            name="ck_listings_quantity_bounds",
        ),
    )

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    seller_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False, index=True))
    suite_id: str = Field(sa_column=Column(String(36), ForeignKey("suites.id"), nullable=False, index=True))
    slug: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    event_title: str = Field(sa_column=Column(String(255), nullable=False))
    event_datetime: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    original_quantity: int = Field(sa_column=Column(Integer, nullable=False))
    price_per_seat: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    delivery_method: str = Field(sa_column=Column(String(30), nullable=False))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    seat_numbers: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    allow_messages: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    view_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    sold_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    sold_price_total: Decimal | None = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    moderation_reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class MessageTable(SQLModel, table=True):
    """Buyer/seller correspondence, always scoped to one listing."""

    __tablename__ = "messages"
    __table_args__ = (CheckConstraint("from_user_id <> to_user_id", name="ck_messages_distinct_parties"),)

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    listing_id: str = Field(
        sa_column=Column(String(36), ForeignKey("listings.id"), nullable=False, index=True)
    )
    from_user_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False, index=True))
    to_user_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False, index=True))
    body: str = Field(sa_column=Column(Text, nullable=False))
    is_read: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class DiscussionTable(SQLModel, table=True):
    """Owner-only discussion board threads."""

    __tablename__ = "discussions"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    author_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False))
    title: str = Field(sa_column=Column(String(200), nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(default="General", sa_column=Column(String(50), nullable=False))
    is_pinned: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    is_locked: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    view_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    reply_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_activity_at: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class DiscussionReplyTable(SQLModel, table=True):
    """Replies on a discussion; deletion is soft."""

    __tablename__ = "discussion_replies"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    discussion_id: str = Field(
        sa_column=Column(
            String(36), ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    author_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    is_deleted: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    deleted_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditEventTable(SQLModel, table=True):
    """Append-only trail of state-changing actions."""

    __tablename__ = "audit_events"
    __table_args__ = (Index("ix_audit_events_target", "target_type", "target_id"),)

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    actor_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True, index=True))
    action: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    target_type: str = Field(sa_column=Column(String(50), nullable=False))
    target_id: str = Field(sa_column=Column(String(36), nullable=False))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    ip_address: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    user_agent: str | None = Field(default=None, sa_column=Column(String(500), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))

"""Initial marketplace schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'GUEST'")),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("show_in_directory", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "suites",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("area", sa.String(length=10), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(length=20), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default=sa.text("8")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("area", "number", name="uq_suites_area_number"),
    )

    op.create_table(
        "seller_applications",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("suite_id", sa.String(length=36), sa.ForeignKey("suites.id"), nullable=False),
        sa.Column("legal_name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("invite_code", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("decision_note", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.String(length=36), nullable=True),
        sa.Column("decided_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_seller_applications_user_id", "seller_applications", ["user_id"])
    op.create_index("ix_seller_applications_status", "seller_applications", ["status"])
    op.create_index(
        "uq_seller_applications_open",
        "seller_applications",
        ["user_id", "suite_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'APPROVED')"),
    )

    op.create_table(
        "listings",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("seller_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("suite_id", sa.String(length=36), sa.ForeignKey("suites.id"), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("event_title", sa.String(length=255), nullable=False),
        sa.Column("event_datetime", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("original_quantity", sa.Integer(), nullable=False),
        sa.Column("price_per_seat", sa.Numeric(10, 2), nullable=False),
        sa.Column("delivery_method", sa.String(length=30), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("seat_numbers", sa.String(length=255), nullable=True),
        sa.Column("allow_messages", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sold_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("sold_price_total", sa.Numeric(12, 2), nullable=True),
        sa.Column("moderation_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint(
            "quantity >= 0 AND quantity <= original_quantity", name="ck_listings_quantity_bounds"
        ),
    )
    op.create_index("ix_listings_seller_id", "listings", ["seller_id"])
    op.create_index("ix_listings_suite_id", "listings", ["suite_id"])
    op.create_index("ix_listings_status", "listings", ["status"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("listing_id", sa.String(length=36), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("from_user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("to_user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("from_user_id <> to_user_id", name="ck_messages_distinct_parties"),
    )
    op.create_index("ix_messages_listing_id", "messages", ["listing_id"])
    op.create_index("ix_messages_to_user_id", "messages", ["to_user_id"])
    op.create_index("ix_messages_from_user_id", "messages", ["from_user_id"])

    op.create_table(
        "discussions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("author_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False, server_default=sa.text("'General'")),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reply_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_activity_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "discussion_replies",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "discussion_id",
            sa.String(length=36),
            sa.ForeignKey("discussions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("author_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_discussion_replies_discussion_id", "discussion_replies", ["discussion_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=False),
        sa.Column("target_id", sa.String(length=36), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_events_actor_id", "audit_events", ["actor_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_target", "audit_events", ["target_type", "target_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_target", table_name="audit_events")
    op.drop_index("ix_audit_events_action", table_name="audit_events")
    op.drop_index("ix_audit_events_actor_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_discussion_replies_discussion_id", table_name="discussion_replies")
    op.drop_table("discussion_replies")
    op.drop_table("discussions")
    op.drop_index("ix_messages_from_user_id", table_name="messages")
    op.drop_index("ix_messages_to_user_id", table_name="messages")
    op.drop_index("ix_messages_listing_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_listings_status", table_name="listings")
    op.drop_index("ix_listings_suite_id", table_name="listings")
    op.drop_index("ix_listings_seller_id", table_name="listings")
    op.drop_table("listings")
    op.drop_index("uq_seller_applications_open", table_name="seller_applications")
    op.drop_index("ix_seller_applications_status", table_name="seller_applications")
    op.drop_index("ix_seller_applications_user_id", table_name="seller_applications")
    op.drop_table("seller_applications")
    op.drop_table("suites")
    op.drop_table("users")

"""Database models and utilities."""

from .models import (
    AuditEventTable,
    DiscussionReplyTable,
    DiscussionTable,
    ListingTable,
    MessageTable,
    SellerApplicationTable,
    SuiteTable,
    UserTable,
)

__all__ = [
    "AuditEventTable",
    "DiscussionReplyTable",
    "DiscussionTable",
    "ListingTable",
    "MessageTable",
    "SellerApplicationTable",
    "SuiteTable",
    "UserTable",
]

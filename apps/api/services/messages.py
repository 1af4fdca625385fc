"""Buyer/seller messages scoped to a listing.

Messages are stored flat; conversations are grouped by (listing, counterpart)
when they are read back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence

from sqlalchemy import func, or_, select, update as sql_update

from apps.api.core.errors import (
    ForbiddenError,
    InvalidTargetError,
    NotFoundError,
    ValidationError,
)
from apps.api.services.audit import AuditAction, AuditEntry, AuditLog
from apps.api.services.database import SessionFactory, ensure_datetime, utcnow
from apps.api.services.listings import ListingRepository, ListingStatus
from apps.api.services.notifications import NotificationDispatcher, NotificationEvent
from apps.api.services.operations import audited, operation
from apps.api.services.permissions import Capability, Identity, authorize
from packages.db.models import MessageTable

logger = logging.getLogger(__name__)


class MessageFilter(str, Enum):
    INBOX = "inbox"
    SENT = "sent"
    ALL = "all"


@dataclass(slots=True)
class Message:
    """Direct message between a buyer and a seller about a listing."""

    id: str
    listing_id: str
    from_user_id: str
    to_user_id: str
    body: str
    is_read: bool
    created_at: datetime


@dataclass(slots=True)
class Thread:
    """Messages exchanged with one counterpart about one listing."""

    listing_id: str
    counterpart_id: str
    messages: list[Message] = field(default_factory=list)
    unread_count: int = 0

    @property
    def last_message_at(self) -> datetime:
        return self.messages[-1].created_at


@dataclass(slots=True)
class ThreadListing:
    """A user's messages, grouped into threads, with the unread total."""

    messages: list[Message]
    threads: list[Thread]
    unread_count: int


class MessageRepository:
    """Persistence for the `messages` table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(self, message: Message) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    MessageTable(
                        id=message.id,
                        listing_id=message.listing_id,
                        from_user_id=message.from_user_id,
                        to_user_id=message.to_user_id,
                        body=message.body,
                        is_read=message.is_read,
                        created_at=message.created_at,
                    )
                )

    async def get(self, message_id: str) -> Message | None:
        async with self._session_factory() as session:
            row = await session.get(MessageTable, message_id)
        return None if row is None else self._table_to_message(row)

    async def latest_sender_to(self, listing_id: str, recipient_id: str) -> str | None:
        """Return who most recently wrote to ``recipient_id`` about the listing."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(MessageTable.from_user_id)
                .where(MessageTable.listing_id == listing_id, MessageTable.to_user_id == recipient_id)
                .order_by(MessageTable.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def has_written(self, listing_id: str, sender_id: str, recipient_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MessageTable.id)
                .where(
                    MessageTable.listing_id == listing_id,
                    MessageTable.from_user_id == sender_id,
                    MessageTable.to_user_id == recipient_id,
                )
                .limit(1)
            )
            return result.first() is not None

    async def mark_read(self, message_id: str, recipient_id: str) -> int:
        return await self._mark(MessageTable.id == message_id, recipient_id)

    async def mark_all_read(self, recipient_id: str) -> int:
        return await self._mark(None, recipient_id)

    async def _mark(self, condition, recipient_id: str) -> int:
        statement = sql_update(MessageTable).where(
            MessageTable.to_user_id == recipient_id, MessageTable.is_read.is_(False)
        )
        if condition is not None:
            statement = statement.where(condition)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    statement.values(is_read=True).execution_options(synchronize_session=False)
                )
                return result.rowcount

    async def list_for_user(self, user_id: str, direction: MessageFilter) -> list[Message]:
        if direction == MessageFilter.INBOX:
            condition = MessageTable.to_user_id == user_id
        elif direction == MessageFilter.SENT:
            condition = MessageTable.from_user_id == user_id
        else:
            condition = or_(MessageTable.to_user_id == user_id, MessageTable.from_user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(MessageTable).where(condition).order_by(MessageTable.created_at.asc(), MessageTable.id)
            )
            return [self._table_to_message(row) for row in result.scalars().all()]

    async def unread_count(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(MessageTable)
                .where(MessageTable.to_user_id == user_id, MessageTable.is_read.is_(False))
            )
            return int(result.scalar_one() or 0)

    @staticmethod
    def _table_to_message(row: MessageTable) -> Message:
        return Message(
            id=row.id,
            listing_id=row.listing_id,
            from_user_id=row.from_user_id,
            to_user_id=row.to_user_id,
            body=row.body,
            is_read=row.is_read,
            created_at=ensure_datetime(row.created_at),
        )


def group_threads(user_id: str, messages: Sequence[Message]) -> list[Thread]:
    """Group messages by (listing, counterpart), most recently active first."""

    threads: dict[tuple[str, str], Thread] = {}
    for message in messages:
        counterpart = message.to_user_id if message.from_user_id == user_id else message.from_user_id
        thread = threads.setdefault(
            (message.listing_id, counterpart),
            Thread(listing_id=message.listing_id, counterpart_id=counterpart),
        )
        thread.messages.append(message)
        if message.to_user_id == user_id and not message.is_read:
            thread.unread_count += 1
    return sorted(threads.values(), key=lambda thread: thread.last_message_at, reverse=True)


def _describe_sent(message: Message) -> Sequence[AuditEntry]:
    return [
        AuditEntry(
            AuditAction.MESSAGE_SENT,
            "message",
            message.id,
            {"listing_id": message.listing_id, "to_user_id": message.to_user_id},
        )
    ]


class MessageService:
    def __init__(
        self,
        repository: MessageRepository,
        listings: ListingRepository,
        audit: AuditLog,
        *,
        notifications: NotificationDispatcher | None = None,
        min_length: int = 10,
        max_length: int = 1000,
    ) -> None:
        self._repository = repository
        self._listings = listings
        self.audit = audit
        self._notifications = notifications or NotificationDispatcher()
        self._min_length = min_length
        self._max_length = max_length

    @audited("send_message", _describe_sent)
    async def send_message(
        self,
        identity: Identity,
        listing_id: str,
        body: str,
        *,
        to_user_id: str | None = None,
    ) -> Message:
        """Write to a listing's seller, or as the seller reply to a buyer."""

        sender_id = authorize(identity, Capability.SEND_MESSAGE)
        body = (body or "").strip()
        if not self._min_length <= len(body) <= self._max_length:
            raise ValidationError(
                f"Message must be between {self._min_length} and {self._max_length} characters"
            )

        listing = await self._listings.get(listing_id)
        if listing is None or listing.status == ListingStatus.MODERATED:
            raise NotFoundError("Listing not found")

        if sender_id != listing.seller_id:
            if to_user_id is not None and to_user_id != listing.seller_id:
                raise InvalidTargetError("Messages about a listing can only be sent to its seller")
            if not listing.allow_messages:
                raise ForbiddenError("The seller is not accepting messages for this listing")
            recipient_id = listing.seller_id
        elif to_user_id is not None:
            if to_user_id == sender_id or not await self._repository.has_written(listing_id, to_user_id, sender_id):
                raise InvalidTargetError("That user has not contacted you about this listing")
            recipient_id = to_user_id
        else:
            latest = await self._repository.latest_sender_to(listing_id, sender_id)
            if latest is None:
                raise InvalidTargetError("There is no conversation on this listing to reply to")
            recipient_id = latest

        message = Message(
            id=str(uuid.uuid4()),
            listing_id=listing_id,
            from_user_id=sender_id,
            to_user_id=recipient_id,
            body=body,
            is_read=False,
            created_at=utcnow(),
        )
        await self._repository.add(message)
        await self._notifications.dispatch(
            recipient_id,
            NotificationEvent.NEW_MESSAGE,
            {"listing_id": listing_id, "message_id": message.id, "from_user_id": sender_id},
        )
        return message

    @operation("mark_messages_read")
    async def mark_read(
        self, identity: Identity, message_id: str | None = None, *, mark_all: bool = False
    ) -> int:
        """Flip unread messages addressed to the caller; returns how many changed."""

        user_id = authorize(identity, Capability.READ_MESSAGES)
        if mark_all:
            return await self._repository.mark_all_read(user_id)
        if message_id is None:
            raise ValidationError("A message id is required unless marking all messages")
        message = await self._repository.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.to_user_id != user_id:
            raise ForbiddenError("Only the recipient can mark a message as read")
        return await self._repository.mark_read(message_id, user_id)

    @operation("list_threads")
    async def list_threads(
        self, identity: Identity, direction: MessageFilter = MessageFilter.ALL
    ) -> ThreadListing:
        user_id = authorize(identity, Capability.READ_MESSAGES)
        try:
            direction = MessageFilter(direction)
        except ValueError:
            raise ValidationError("Filter must be inbox, sent or all") from None
        messages = await self._repository.list_for_user(user_id, direction)
        return ThreadListing(
            messages=messages,
            threads=group_threads(user_id, messages),
            unread_count=await self._repository.unread_count(user_id),
        )

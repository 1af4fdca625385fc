"""Owner discussion board."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, update as sql_update

from apps.api.core.errors import ForbiddenError, LockedError, NotFoundError, ValidationError
from apps.api.services.audit import AuditAction, AuditEntry, AuditLog
from apps.api.services.database import SessionFactory, ensure_datetime, optional_datetime, utcnow
from apps.api.services.operations import audited, operation
from apps.api.services.permissions import Capability, Identity, authorize, is_owner_or_admin, require_user
from packages.db.models import DiscussionReplyTable, DiscussionTable

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"


@dataclass(slots=True)
class Discussion:
    """Community discussion topic."""

    id: str
    author_id: str
    title: str
    content: str
    category: str
    is_pinned: bool
    is_locked: bool
    view_count: int
    reply_count: int
    last_activity_at: datetime
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class DiscussionReply:
    """Reply posted to a discussion; soft deleted."""

    id: str
    discussion_id: str
    author_id: str
    content: str
    is_deleted: bool
    deleted_at: datetime | None
    created_at: datetime


@dataclass(slots=True)
class DiscussionView:
    """A discussion together with its visible replies."""

    discussion: Discussion
    replies: list[DiscussionReply]


class DiscussionRepository:
    """Persistence for `discussions` and `discussion_replies`.

    Reply writes and the parent's ``reply_count`` change in one transaction, so
    the counter always matches the number of live replies.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(self, discussion: Discussion) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    DiscussionTable(
                        id=discussion.id,
                        author_id=discussion.author_id,
                        title=discussion.title,
                        content=discussion.content,
                        category=discussion.category,
                        is_pinned=discussion.is_pinned,
                        is_locked=discussion.is_locked,
                        view_count=discussion.view_count,
                        reply_count=discussion.reply_count,
                        last_activity_at=discussion.last_activity_at,
                        created_at=discussion.created_at,
                        updated_at=discussion.updated_at,
                    )
                )

    async def get(self, discussion_id: str) -> Discussion | None:
        async with self._session_factory() as session:
            row = await session.get(DiscussionTable, discussion_id)
        return None if row is None else self._table_to_discussion(row)

    async def list(self, category: str | None = None) -> list[Discussion]:
        statement = select(DiscussionTable)
        if category is not None:
            statement = statement.where(DiscussionTable.category == category)
        statement = statement.order_by(
            DiscussionTable.is_pinned.desc(), DiscussionTable.last_activity_at.desc()
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_discussion(row) for row in result.scalars().all()]

    async def list_replies(self, discussion_id: str) -> list[DiscussionReply]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DiscussionReplyTable)
                .where(
                    DiscussionReplyTable.discussion_id == discussion_id,
                    DiscussionReplyTable.is_deleted.is_(False),
                )
                .order_by(DiscussionReplyTable.created_at.asc())
            )
            return [self._table_to_reply(row) for row in result.scalars().all()]

    async def get_reply(self, reply_id: str) -> DiscussionReply | None:
        async with self._session_factory() as session:
            row = await session.get(DiscussionReplyTable, reply_id)
        return None if row is None else self._table_to_reply(row)

    async def increment_views(self, discussion_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    sql_update(DiscussionTable)
                    .where(DiscussionTable.id == discussion_id)
                    .values(view_count=DiscussionTable.view_count + 1)
                    .execution_options(synchronize_session=False)
                )

    async def add_reply(self, reply: DiscussionReply) -> bool:
        """Insert the reply if the discussion is still open; returns False otherwise."""

        async with self._session_factory() as session:
            async with session.begin():
                bumped = await session.execute(
                    sql_update(DiscussionTable)
                    .where(DiscussionTable.id == reply.discussion_id, DiscussionTable.is_locked.is_(False))
                    .values(
                        reply_count=DiscussionTable.reply_count + 1,
                        last_activity_at=reply.created_at,
                        updated_at=reply.created_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                if bumped.rowcount != 1:
                    return False
                session.add(
                    DiscussionReplyTable(
                        id=reply.id,
                        discussion_id=reply.discussion_id,
                        author_id=reply.author_id,
                        content=reply.content,
                        is_deleted=False,
                        created_at=reply.created_at,
                    )
                )
        return True

    async def delete_reply(self, reply: DiscussionReply) -> bool:
        now = utcnow()
        async with self._session_factory() as session:
            async with session.begin():
                deleted = await session.execute(
                    sql_update(DiscussionReplyTable)
                    .where(DiscussionReplyTable.id == reply.id, DiscussionReplyTable.is_deleted.is_(False))
                    .values(is_deleted=True, deleted_at=now)
                    .execution_options(synchronize_session=False)
                )
                if deleted.rowcount != 1:
                    return False
                await session.execute(
                    sql_update(DiscussionTable)
                    .where(DiscussionTable.id == reply.discussion_id)
                    .values(reply_count=DiscussionTable.reply_count - 1, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
        return True

    async def set_locked(self, discussion_id: str, locked: bool) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    sql_update(DiscussionTable)
                    .where(DiscussionTable.id == discussion_id)
                    .values(is_locked=locked, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    @staticmethod
    def _table_to_discussion(row: DiscussionTable) -> Discussion:
        return Discussion(
            id=row.id,
            author_id=row.author_id,
            title=row.title,
            content=row.content,
            category=row.category,
            is_pinned=row.is_pinned,
            is_locked=row.is_locked,
            view_count=row.view_count,
            reply_count=row.reply_count,
            last_activity_at=ensure_datetime(row.last_activity_at),
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _table_to_reply(row: DiscussionReplyTable) -> DiscussionReply:
        return DiscussionReply(
            id=row.id,
            discussion_id=row.discussion_id,
            author_id=row.author_id,
            content=row.content,
            is_deleted=row.is_deleted,
            deleted_at=optional_datetime(row.deleted_at),
            created_at=ensure_datetime(row.created_at),
        )


def _describe_discussion(discussion: Discussion) -> Sequence[AuditEntry]:
    return [
        AuditEntry(
            AuditAction.DISCUSSION_CREATED,
            "discussion",
            discussion.id,
            {"title": discussion.title, "category": discussion.category},
        )
    ]


def _describe_reply(reply: DiscussionReply) -> Sequence[AuditEntry]:
    action = AuditAction.DISCUSSION_REPLY_DELETED if reply.is_deleted else AuditAction.DISCUSSION_REPLY_CREATED
    return [AuditEntry(action, "discussion_reply", reply.id, {"discussion_id": reply.discussion_id})]


def _describe_lock(discussion: Discussion) -> Sequence[AuditEntry]:
    action = AuditAction.DISCUSSION_LOCKED if discussion.is_locked else AuditAction.DISCUSSION_UNLOCKED
    return [AuditEntry(action, "discussion", discussion.id)]


class DiscussionService:
    """Board operations; only verified owners may write."""

    def __init__(
        self,
        repository: DiscussionRepository,
        audit: AuditLog,
        *,
        reply_min_length: int = 10,
        reply_max_length: int = 2000,
    ) -> None:
        self._repository = repository
        self.audit = audit
        self._reply_min = reply_min_length
        self._reply_max = reply_max_length

    @audited("create_discussion", _describe_discussion)
    async def create_discussion(
        self,
        identity: Identity,
        *,
        title: str,
        content: str,
        category: str | None = None,
    ) -> Discussion:
        author_id = authorize(identity, Capability.AUTHOR_DISCUSSION)
        title = (title or "").strip()
        content = (content or "").strip()
        if not 5 <= len(title) <= 200:
            raise ValidationError("Title must be between 5 and 200 characters")
        if not 20 <= len(content) <= 5000:
            raise ValidationError("Content must be between 20 and 5000 characters")

        now = utcnow()
        discussion = Discussion(
            id=str(uuid.uuid4()),
            author_id=author_id,
            title=title,
            content=content,
            category=(category or "").strip() or DEFAULT_CATEGORY,
            is_pinned=False,
            is_locked=False,
            view_count=0,
            reply_count=0,
            last_activity_at=now,
            created_at=now,
            updated_at=now,
        )
        await self._repository.add(discussion)
        return discussion

    @operation("list_discussions")
    async def list_discussions(self, identity: Identity, *, category: str | None = None) -> list[Discussion]:
        return await self._repository.list(category)

    @operation("view_discussion")
    async def view_discussion(self, identity: Identity, discussion_id: str) -> DiscussionView:
        if await self._repository.get(discussion_id) is None:
            raise NotFoundError("Discussion not found")
        await self._repository.increment_views(discussion_id)
        discussion = await self._repository.get(discussion_id)
        if discussion is None:
            raise NotFoundError("Discussion not found")
        return DiscussionView(discussion=discussion, replies=await self._repository.list_replies(discussion_id))

    @audited("post_reply", _describe_reply)
    async def post_reply(self, identity: Identity, discussion_id: str, content: str) -> DiscussionReply:
        author_id = authorize(identity, Capability.AUTHOR_DISCUSSION)
        content = (content or "").strip()
        if not self._reply_min <= len(content) <= self._reply_max:
            raise ValidationError(
                f"Reply must be between {self._reply_min} and {self._reply_max} characters"
            )
        discussion = await self._repository.get(discussion_id)
        if discussion is None:
            raise NotFoundError("Discussion not found")
        if discussion.is_locked:
            raise LockedError("This discussion is locked")

        reply = DiscussionReply(
            id=str(uuid.uuid4()),
            discussion_id=discussion_id,
            author_id=author_id,
            content=content,
            is_deleted=False,
            deleted_at=None,
            created_at=utcnow(),
        )
        if not await self._repository.add_reply(reply):
            if await self._repository.get(discussion_id) is None:
                raise NotFoundError("Discussion not found")
            raise LockedError("This discussion is locked")
        return reply

    @audited("delete_reply", _describe_reply)
    async def delete_reply(self, identity: Identity, reply_id: str) -> DiscussionReply:
        require_user(identity)
        reply = await self._repository.get_reply(reply_id)
        if reply is None or reply.is_deleted:
            raise NotFoundError("Reply not found")
        if not is_owner_or_admin(identity, reply.author_id):
            raise ForbiddenError("You can only delete your own replies")
        if not await self._repository.delete_reply(reply):
            raise NotFoundError("Reply not found")
        deleted = await self._repository.get_reply(reply_id)
        if deleted is None:
            raise NotFoundError("Reply not found")
        return deleted

    @audited("set_discussion_lock", _describe_lock)
    async def set_discussion_lock(self, identity: Identity, discussion_id: str, *, locked: bool) -> Discussion:
        authorize(identity, Capability.MODERATE_DISCUSSION)
        if not await self._repository.set_locked(discussion_id, locked):
            raise NotFoundError("Discussion not found")
        discussion = await self._repository.get(discussion_id)
        if discussion is None:
            raise NotFoundError("Discussion not found")
        return discussion

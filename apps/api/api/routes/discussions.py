from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel

from apps.api.api.errors import unwrap
from apps.api.dependencies.auth import CurrentIdentity
from apps.api.dependencies.services import DiscussionServiceDep
from apps.api.services.discussions import Discussion, DiscussionReply

router = APIRouter(prefix="/discussions", tags=["discussions"])


class DiscussionModel(BaseModel):
    id: str
    author_id: str
    title: str
    content: str
    category: str
    is_pinned: bool
    is_locked: bool
    view_count: int
    reply_count: int
    last_activity_at: str
    created_at: str

    @classmethod
    def from_entity(cls, discussion: Discussion) -> "DiscussionModel":
        return cls(
            id=discussion.id,
            author_id=discussion.author_id,
            title=discussion.title,
            content=discussion.content,
            category=discussion.category,
            is_pinned=discussion.is_pinned,
            is_locked=discussion.is_locked,
            view_count=discussion.view_count,
            reply_count=discussion.reply_count,
            last_activity_at=discussion.last_activity_at.isoformat(),
            created_at=discussion.created_at.isoformat(),
        )


class ReplyModel(BaseModel):
    id: str
    discussion_id: str
    author_id: str
    content: str
    is_deleted: bool
    created_at: str

    @classmethod
    def from_entity(cls, reply: DiscussionReply) -> "ReplyModel":
        return cls(
            id=reply.id,
            discussion_id=reply.discussion_id,
            author_id=reply.author_id,
            content=reply.content,
            is_deleted=reply.is_deleted,
            created_at=reply.created_at.isoformat(),
        )


class DiscussionDetailModel(DiscussionModel):
    replies: list[ReplyModel]


class DiscussionCreateRequest(BaseModel):
    title: str
    content: str
    category: str | None = None


class ReplyCreateRequest(BaseModel):
    content: str


class LockRequest(BaseModel):
    locked: bool = True


@router.get("", response_model=list[DiscussionModel])
async def list_discussions(
    service: DiscussionServiceDep, identity: CurrentIdentity, category: str | None = None
) -> list[DiscussionModel]:
    discussions = unwrap(await service.list_discussions(identity, category=category))
    return [DiscussionModel.from_entity(item) for item in discussions]


@router.post("", response_model=DiscussionModel, status_code=status.HTTP_201_CREATED)
async def create_discussion(
    payload: DiscussionCreateRequest, service: DiscussionServiceDep, identity: CurrentIdentity
) -> DiscussionModel:
    discussion = unwrap(
        await service.create_discussion(
            identity, title=payload.title, content=payload.content, category=payload.category
        )
    )
    return DiscussionModel.from_entity(discussion)


@router.get("/{discussion_id}", response_model=DiscussionDetailModel)
async def view_discussion(
    discussion_id: str, service: DiscussionServiceDep, identity: CurrentIdentity
) -> DiscussionDetailModel:
    view = unwrap(await service.view_discussion(identity, discussion_id))
    return DiscussionDetailModel(
        **DiscussionModel.from_entity(view.discussion).model_dump(),
        replies=[ReplyModel.from_entity(item) for item in view.replies],
    )


@router.post("/{discussion_id}/replies", response_model=ReplyModel, status_code=status.HTTP_201_CREATED)
async def post_reply(
    discussion_id: str, payload: ReplyCreateRequest, service: DiscussionServiceDep, identity: CurrentIdentity
) -> ReplyModel:
    return ReplyModel.from_entity(unwrap(await service.post_reply(identity, discussion_id, payload.content)))


@router.delete("/replies/{reply_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reply(reply_id: str, service: DiscussionServiceDep, identity: CurrentIdentity) -> None:
    unwrap(await service.delete_reply(identity, reply_id))


@router.post("/{discussion_id}/lock", response_model=DiscussionModel)
async def set_discussion_lock(
    discussion_id: str, payload: LockRequest, service: DiscussionServiceDep, identity: CurrentIdentity
) -> DiscussionModel:
    return DiscussionModel.from_entity(
        unwrap(await service.set_discussion_lock(identity, discussion_id, locked=payload.locked))
    )

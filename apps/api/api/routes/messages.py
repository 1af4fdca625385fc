from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from apps.api.api.errors import unwrap
from apps.api.dependencies.auth import CurrentIdentity
from apps.api.dependencies.services import MessageServiceDep
from apps.api.services.messages import Message, MessageFilter, Thread

router = APIRouter(prefix="/messages", tags=["messages"])


class MessageModel(BaseModel):
    id: str
    listing_id: str
    from_user_id: str
    to_user_id: str
    body: str
    is_read: bool
    created_at: str

    @classmethod
    def from_entity(cls, message: Message) -> "MessageModel":
        return cls(
            id=message.id,
            listing_id=message.listing_id,
            from_user_id=message.from_user_id,
            to_user_id=message.to_user_id,
            body=message.body,
            is_read=message.is_read,
            created_at=message.created_at.isoformat(),
        )


class ThreadModel(BaseModel):
    listing_id: str
    counterpart_id: str
    unread_count: int
    last_message_at: str
    messages: list[MessageModel] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, thread: Thread) -> "ThreadModel":
        return cls(
            listing_id=thread.listing_id,
            counterpart_id=thread.counterpart_id,
            unread_count=thread.unread_count,
            last_message_at=thread.last_message_at.isoformat(),
            messages=[MessageModel.from_entity(item) for item in thread.messages],
        )


class ThreadListingModel(BaseModel):
    unread_count: int
    messages: list[MessageModel]
    threads: list[ThreadModel]


class MessageCreateRequest(BaseModel):
    listing_id: str
    body: str
    to_user_id: str | None = None


class MarkReadRequest(BaseModel):
    message_id: str | None = None
    mark_all: bool = False


@router.post("", response_model=MessageModel, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreateRequest, service: MessageServiceDep, identity: CurrentIdentity
) -> MessageModel:
    message = unwrap(
        await service.send_message(identity, payload.listing_id, payload.body, to_user_id=payload.to_user_id)
    )
    return MessageModel.from_entity(message)


@router.get("", response_model=ThreadListingModel, summary="Inbox, sent or all messages grouped by thread")
async def list_threads(
    service: MessageServiceDep, identity: CurrentIdentity, filter: MessageFilter = MessageFilter.ALL
) -> ThreadListingModel:
    listing = unwrap(await service.list_threads(identity, filter))
    return ThreadListingModel(
        unread_count=listing.unread_count,
        messages=[MessageModel.from_entity(item) for item in listing.messages],
        threads=[ThreadModel.from_entity(item) for item in listing.threads],
    )


@router.post("/read", summary="Mark one or all messages as read")
async def mark_read(payload: MarkReadRequest, service: MessageServiceDep, identity: CurrentIdentity) -> dict[str, int]:
    updated = unwrap(await service.mark_read(identity, payload.message_id, mark_all=payload.mark_all))
    return {"updated": updated}

from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from apps.api.api.errors import unwrap
from apps.api.dependencies.auth import CurrentIdentity
from apps.api.dependencies.services import UserServiceDep
from apps.api.services.permissions import Role
from apps.api.services.users import DirectoryEntry, User

router = APIRouter(prefix="/users", tags=["users"])
owners_router = APIRouter(prefix="/owners", tags=["users"])


class UserModel(BaseModel):
    id: str
    email: str
    name: str | None = None
    phone: str | None = None
    role: Role
    is_locked: bool
    show_in_directory: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, user: User) -> "UserModel":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            phone=user.phone,
            role=user.role,
            is_locked=user.is_locked,
            show_in_directory=user.show_in_directory,
            created_at=user.created_at.isoformat(),
            updated_at=user.updated_at.isoformat(),
        )


class RegisterRequest(BaseModel):
    email: str
    name: str | None = None
    phone: str | None = None


class SettingsUpdateRequest(BaseModel):
    name: str | None = None
    phone: str | None = None
    show_in_directory: bool | None = None


class LockRequest(BaseModel):
    locked: bool = True


class DirectoryEntryModel(BaseModel):
    user_id: str
    name: str | None = None
    role: Role
    suites: list[str] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, entry: DirectoryEntry) -> "DirectoryEntryModel":
        return cls(user_id=entry.user_id, name=entry.name, role=entry.role, suites=list(entry.suites))


@router.post("", response_model=UserModel, status_code=status.HTTP_201_CREATED, summary="Register an account")
async def register_user(payload: RegisterRequest, service: UserServiceDep, identity: CurrentIdentity) -> UserModel:
    user = unwrap(
        await service.register_user(identity, email=payload.email, name=payload.name, phone=payload.phone)
    )
    return UserModel.from_entity(user)


@router.get("/me", response_model=UserModel, summary="Current account settings")
async def get_my_settings(service: UserServiceDep, identity: CurrentIdentity) -> UserModel:
    return UserModel.from_entity(unwrap(await service.get_settings(identity)))


@router.patch("/me", response_model=UserModel)
async def update_my_settings(
    payload: SettingsUpdateRequest, service: UserServiceDep, identity: CurrentIdentity
) -> UserModel:
    user = unwrap(
        await service.update_settings(
            identity,
            name=payload.name,
            phone=payload.phone,
            show_in_directory=payload.show_in_directory,
        )
    )
    return UserModel.from_entity(user)


@router.post("/{user_id}/lock", response_model=UserModel, summary="Lock or unlock an account")
async def set_user_lock(
    user_id: str, payload: LockRequest, service: UserServiceDep, identity: CurrentIdentity
) -> UserModel:
    return UserModel.from_entity(unwrap(await service.set_user_lock(identity, user_id, locked=payload.locked)))


@owners_router.get("", response_model=list[DirectoryEntryModel], summary="Verified owner directory")
async def list_owners(service: UserServiceDep, identity: CurrentIdentity) -> list[DirectoryEntryModel]:
    entries = unwrap(await service.list_owner_directory(identity))
    return [DirectoryEntryModel.from_entity(entry) for entry in entries]

from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from apps.api.api.errors import unwrap
from apps.api.dependencies.auth import CurrentIdentity
from apps.api.dependencies.services import VerificationServiceDep
from apps.api.services.verification import ApplicationStatus, SellerApplication

router = APIRouter(prefix="/applications", tags=["verification"])


class ApplicationModel(BaseModel):
    id: str
    user_id: str
    suite_id: str
    legal_name: str
    phone: str
    message: str
    invite_code: str | None = None
    status: ApplicationStatus
    decision_note: str | None = None
    decided_by: str | None = None
    decided_at: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, application: SellerApplication) -> "ApplicationModel":
        return cls(
            id=application.id,
            user_id=application.user_id,
            suite_id=application.suite_id,
            legal_name=application.legal_name,
            phone=application.phone,
            message=application.message,
            invite_code=application.invite_code,
            status=application.status,
            decision_note=application.decision_note,
            decided_by=application.decided_by,
            decided_at=application.decided_at.isoformat() if application.decided_at else None,
            created_at=application.created_at.isoformat(),
            updated_at=application.updated_at.isoformat(),
        )


class DecisionModel(BaseModel):
    application: ApplicationModel
    role_upgraded: bool


class ApplicationCreateRequest(BaseModel):
    suite_id: str
    legal_name: str
    phone: str
    message: str
    invite_code: str | None = None


class DecisionRequest(BaseModel):
    decision: ApplicationStatus
    note: str | None = None


@router.post("", response_model=ApplicationModel, status_code=status.HTTP_201_CREATED)
async def submit_application(
    payload: ApplicationCreateRequest, service: VerificationServiceDep, identity: CurrentIdentity
) -> ApplicationModel:
    application = unwrap(
        await service.submit_application(
            identity,
            suite_id=payload.suite_id,
            legal_name=payload.legal_name,
            phone=payload.phone,
            message=payload.message,
            invite_code=payload.invite_code,
        )
    )
    return ApplicationModel.from_entity(application)


@router.get("/mine", response_model=list[ApplicationModel], summary="Applications submitted by the caller")
async def list_my_applications(service: VerificationServiceDep, identity: CurrentIdentity) -> list[ApplicationModel]:
    return [ApplicationModel.from_entity(item) for item in unwrap(await service.list_my_applications(identity))]


@router.get("/pending-count", summary="Number of applications awaiting review")
async def count_pending(service: VerificationServiceDep, identity: CurrentIdentity) -> dict[str, int]:
    return {"pending": unwrap(await service.count_pending(identity))}


@router.get("", response_model=list[ApplicationModel], summary="Review queue")
async def list_applications(
    service: VerificationServiceDep,
    identity: CurrentIdentity,
    status_filter: ApplicationStatus | None = Query(default=None, alias="status"),
) -> list[ApplicationModel]:
    applications = unwrap(await service.list_applications(identity, status=status_filter))
    return [ApplicationModel.from_entity(item) for item in applications]


@router.get("/{application_id}", response_model=ApplicationModel)
async def get_application(
    application_id: str, service: VerificationServiceDep, identity: CurrentIdentity
) -> ApplicationModel:
    return ApplicationModel.from_entity(unwrap(await service.get_application(identity, application_id)))


@router.post("/{application_id}/decision", response_model=DecisionModel)
async def decide_application(
    application_id: str,
    payload: DecisionRequest,
    service: VerificationServiceDep,
    identity: CurrentIdentity,
) -> DecisionModel:
    outcome = unwrap(
        await service.decide_application(
            identity, application_id, decision=payload.decision, note=payload.note
        )
    )
    return DecisionModel(
        application=ApplicationModel.from_entity(outcome.application),
        role_upgraded=outcome.role_upgraded,
    )

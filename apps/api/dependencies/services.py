"""Resolve services wired onto ``app.state`` during startup."""

from typing import Annotated, Any, Callable, Coroutine

from fastapi import Depends, HTTPException, Request

from apps.api.services.audit import AuditLog
from apps.api.services.discussions import DiscussionService
from apps.api.services.listings import ListingService
from apps.api.services.messages import MessageService
from apps.api.services.users import SuiteCatalog, UserService
from apps.api.services.verification import VerificationService


def _from_state(attribute: str, label: str) -> Callable[[Request], Coroutine[Any, Any, Any]]:
    async def dependency(request: Request) -> Any:
        service = getattr(request.app.state, attribute, None)
        if service is None:
            raise HTTPException(status_code=503, detail=f"{label} service is not available")
        return service

    dependency.__name__ = f"get_{attribute}"
    return dependency


get_user_service = _from_state("user_service", "User")
get_suite_catalog = _from_state("suite_catalog", "Suite")
get_verification_service = _from_state("verification_service", "Verification")
get_listing_service = _from_state("listing_service", "Listing")
get_message_service = _from_state("message_service", "Message")
get_discussion_service = _from_state("discussion_service", "Discussion")
get_audit_log = _from_state("audit_log", "Audit")

UserServiceDep = Annotated[UserService, Depends(get_user_service)]
SuiteCatalogDep = Annotated[SuiteCatalog, Depends(get_suite_catalog)]
VerificationServiceDep = Annotated[VerificationService, Depends(get_verification_service)]
ListingServiceDep = Annotated[ListingService, Depends(get_listing_service)]
MessageServiceDep = Annotated[MessageService, Depends(get_message_service)]
DiscussionServiceDep = Annotated[DiscussionService, Depends(get_discussion_service)]
AuditLogDep = Annotated[AuditLog, Depends(get_audit_log)]

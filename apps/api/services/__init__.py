"""Service layer exports."""

from .audit import AuditAction, AuditEntry, AuditEvent, AuditLog, AuditRepository
from .discussions import DiscussionRepository, DiscussionService
from .listings import ListingRepository, ListingService, ListingStatus
from .messages import MessageRepository, MessageService
from .notifications import LoggingNotifier, NotificationDispatcher, NotificationEvent
from .permissions import Identity, Provenance, Role
from .users import SuiteCatalog, SuiteRepository, UserRepository, UserService
from .verification import ApplicationRepository, ApplicationStatus, VerificationService

__all__ = [
    "ApplicationRepository",
    "ApplicationStatus",
    "AuditAction",
    "AuditEntry",
    "AuditEvent",
    "AuditLog",
    "AuditRepository",
    "DiscussionRepository",
    "DiscussionService",
    "Identity",
    "ListingRepository",
    "ListingService",
    "ListingStatus",
    "LoggingNotifier",
    "MessageRepository",
    "MessageService",
    "NotificationDispatcher",
    "NotificationEvent",
    "Provenance",
    "Role",
    "SuiteCatalog",
    "SuiteRepository",
    "UserRepository",
    "UserService",
    "VerificationService",
]

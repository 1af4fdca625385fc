import logging
from contextlib import asynccontextmanager
from decimal import Decimal

from fastapi import FastAPI

from apps.api.api.errors import install_error_handlers
from apps.api.api.routes import applications, audit, discussions, listings, messages, metrics, ping, suites, users
from apps.api.core.config import Settings, get_settings
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.dependencies.auth import TokenIdentityResolver
from apps.api.middleware.identity import IdentityMiddleware
from apps.api.services.audit import AuditLog, AuditRepository
from apps.api.services.database import SessionFactory, create_engine, create_session_factory, ensure_schema
from apps.api.services.discussions import DiscussionRepository, DiscussionService
from apps.api.services.listings import ListingRepository, ListingService
from apps.api.services.messages import MessageRepository, MessageService
from apps.api.services.notifications import NotificationDispatcher, Notifier
from apps.api.services.users import SuiteCatalog, SuiteRepository, UserRepository, UserService
from apps.api.services.verification import ApplicationRepository, VerificationService

logger = logging.getLogger(__name__)


def wire_services(
    app: FastAPI,
    session_factory: SessionFactory,
    settings: Settings,
    *,
    notifier: Notifier | None = None,
) -> None:
    """Build repositories and services on top of ``session_factory`` and attach them to ``app.state``."""

    audit_log = AuditLog(AuditRepository(session_factory))
    notifications = NotificationDispatcher(notifier)
    suite_repository = SuiteRepository(session_factory)
    application_repository = ApplicationRepository(session_factory)
    listing_repository = ListingRepository(session_factory)
    user_service = UserService(UserRepository(session_factory), audit_log)

    app.state.audit_log = audit_log
    app.state.user_service = user_service
    app.state.suite_catalog = SuiteCatalog(suite_repository)
    app.state.verification_service = VerificationService(
        application_repository, suite_repository, audit_log, notifications=notifications
    )
    app.state.listing_service = ListingService(
        listing_repository,
        application_repository,
        suite_repository,
        audit_log,
        notifications=notifications,
        max_price_per_seat=Decimal(settings.max_price_per_seat),
    )
    app.state.message_service = MessageService(
        MessageRepository(session_factory),
        listing_repository,
        audit_log,
        notifications=notifications,
        min_length=settings.message_min_length,
        max_length=settings.message_max_length,
    )
    app.state.discussion_service = DiscussionService(
        DiscussionRepository(session_factory),
        audit_log,
        reply_min_length=settings.reply_min_length,
        reply_max_length=settings.reply_max_length,
    )
    app.state.identity_resolver = TokenIdentityResolver(settings.token_map(), user_service)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    db_engine = create_engine(settings.database_url, echo=settings.database_echo)
    app.state.db_engine = db_engine
    try:
        await ensure_schema(db_engine)
        session_factory = create_session_factory(db_engine)
        wire_services(app, session_factory, settings)
        if settings.seed_suites_on_startup:
            await app.state.suite_catalog.seed_suites()
        logger.info("Suite exchange API started (%s)", settings.environment)
        yield
    finally:
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(IdentityMiddleware)
    install_error_handlers(app)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(users.router)
    app.include_router(users.owners_router)
    app.include_router(suites.router)
    app.include_router(applications.router)
    app.include_router(listings.router)
    app.include_router(messages.router)
    app.include_router(discussions.router)
    app.include_router(audit.router)
    return app


app = create_app()

"""Fire-and-forget user notifications.

Delivery (email, push) is owned by an external collaborator; the marketplace
only signals that a user should hear about an event.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Protocol

from apps.api.metrics import NOTIFICATION_FAILURES, MetricsRegistry, metrics_registry

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    APPLICATION_RECEIVED = "APPLICATION_RECEIVED"
    APPLICATION_APPROVED = "APPLICATION_APPROVED"
    APPLICATION_DENIED = "APPLICATION_DENIED"
    NEW_MESSAGE = "NEW_MESSAGE"
    LISTING_MODERATED = "LISTING_MODERATED"


class Notifier(Protocol):
    async def notify(self, user_id: str, event: NotificationEvent, payload: Mapping[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default notifier that only writes the signal to the log."""

    async def notify(self, user_id: str, event: NotificationEvent, payload: Mapping[str, Any]) -> None:
        logger.info("Notify user %s of %s: %s", user_id, event.value, dict(payload))


class NotificationDispatcher:
    """Wrap a notifier so delivery problems never reach the caller."""

    def __init__(self, notifier: Notifier | None = None, *, registry: MetricsRegistry | None = None) -> None:
        self._notifier = notifier or LoggingNotifier()
        self._failures = (registry or metrics_registry).counter(NOTIFICATION_FAILURES)

    async def dispatch(
        self, user_id: str, event: NotificationEvent, payload: Mapping[str, Any] | None = None
    ) -> bool:
        try:
            await self._notifier.notify(user_id, event, dict(payload or {}))
        except Exception:
            self._failures.inc()
            logger.exception("Failed to notify user %s of %s", user_id, event.value)
            return False
        return True

"""Boundary wrapper shared by every public marketplace operation.

Service methods raise :class:`MarketplaceError` subclasses internally. The
``operation``/``audited`` decorators turn them into tagged :class:`Err`
results, wrap successes in :class:`Ok`, and for state-changing operations
emit audit entries after the primary write has committed.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, TypeVar

from sqlalchemy.exc import IntegrityError

from apps.api.core.errors import ConflictError, Err, MarketplaceError, Ok, Result
from apps.api.core.logging import get_tracer
from apps.api.metrics import OPERATION_DURATION, OPERATIONS_TOTAL, metrics_registry, track_duration

if TYPE_CHECKING:
    from apps.api.services.audit import AuditEntry
    from apps.api.services.permissions import Identity

logger = logging.getLogger(__name__)

T = TypeVar("T")
Describer = Callable[[Any], "Iterable[AuditEntry]"]


def operation(
    name: str, *, describe: Describer | None = None
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[Result[T]]]]:
    """Run a service coroutine as a marketplace operation returning a tagged result.

    The wrapped method must take the caller :class:`Identity` as its first
    argument after ``self``. When ``describe`` is given, the owning service must
    expose an ``audit`` attribute (an ``AuditLog``); the entries returned by
    ``describe(value)`` are recorded only after a successful call.
    """

    counter = metrics_registry.counter(OPERATIONS_TOTAL, label_names=("operation", "outcome"))
    duration = metrics_registry.distribution(OPERATION_DURATION, label_names=("operation",))

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[Result[T]]]:
        @functools.wraps(func)
        async def wrapper(self: Any, identity: "Identity", *args: Any, **kwargs: Any) -> Result[T]:
            with get_tracer().start_as_current_span(f"marketplace.{name}") as span:
                span.set_attribute("marketplace.role", identity.role.value)
                try:
                    with track_duration(duration, labels={"operation": name}):
                        value = await func(self, identity, *args, **kwargs)
                except MarketplaceError as exc:
                    return _reject(name, exc, counter, span)
                except IntegrityError as exc:
                    logger.warning("%s hit a constraint violation: %s", name, exc.orig)
                    return _reject(
                        name, ConflictError("The record was changed by another request"), counter, span
                    )

                if describe is not None:
                    await self.audit.record_entries(list(describe(value)), identity)
                counter.inc(labels={"operation": name, "outcome": "ok"})
                return Ok(value)

        return wrapper

    return decorator


def audited(
    name: str, describe: Describer
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[Result[T]]]]:
    """Shorthand for a state-changing :func:`operation` with an audit describer."""

    return operation(name, describe=describe)


def _reject(name: str, error: MarketplaceError, counter: Any, span: Any) -> Err:
    span.set_attribute("marketplace.error", error.kind.value)
    counter.inc(labels={"operation": name, "outcome": error.kind.value})
    logger.info("%s rejected: %s", name, error)
    return Err(error)

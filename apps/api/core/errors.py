"""Error taxonomy and tagged operation results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Stable error kinds shared by every marketplace operation."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    LOCKED = "LOCKED"
    INVALID_TARGET = "INVALID_TARGET"


class MarketplaceError(Exception):
    """Base error carrying a stable kind and a user-facing message."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class UnauthorizedError(MarketplaceError):
    """Raised when an operation requires an authenticated identity."""

    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(MarketplaceError):
    """Raised when the identity lacks the role or ownership required."""

    kind = ErrorKind.FORBIDDEN


class NotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""

    kind = ErrorKind.NOT_FOUND


class InvalidStateError(MarketplaceError):
    """Raised when a state machine transition is not allowed."""

    kind = ErrorKind.INVALID_STATE


class InvalidQuantityError(MarketplaceError):
    """Raised when a sale quantity is outside the available range."""

    kind = ErrorKind.INVALID_QUANTITY


class ValidationError(MarketplaceError):
    """Raised when input fields violate their constraints."""

    kind = ErrorKind.VALIDATION_ERROR


class ConflictError(MarketplaceError):
    """Raised on duplicates or when a concurrent update won the race."""

    kind = ErrorKind.CONFLICT


class LockedError(MarketplaceError):
    """Raised when writing to a locked discussion."""

    kind = ErrorKind.LOCKED


class InvalidTargetError(MarketplaceError):
    """Raised when a message has no resolvable recipient."""

    kind = ErrorKind.INVALID_TARGET


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful operation outcome."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    """Failed operation outcome wrapping a classified error."""

    error: MarketplaceError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def message(self) -> str:
        return self.error.message


Result = Union[Ok[T], Err]

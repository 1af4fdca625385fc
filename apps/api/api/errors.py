"""Translate tagged operation results into HTTP responses."""

from __future__ import annotations

from typing import Mapping, TypeVar

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.api.core.errors import Err, ErrorKind, MarketplaceError, Result

T = TypeVar("T")

STATUS_BY_KIND: Mapping[ErrorKind, int] = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.LOCKED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.INVALID_QUANTITY: 400,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.INVALID_TARGET: 400,
    ErrorKind.CONFLICT: 409,
}

_KIND_BY_STATUS: Mapping[int, ErrorKind] = {
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
}


class OperationFailed(Exception):
    """Raised by route handlers when a service returned ``Err``."""

    def __init__(self, error: MarketplaceError) -> None:
        super().__init__(error.message)
        self.error = error

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND.get(self.error.kind, 400)


def unwrap(result: Result[T]) -> T:
    """Return the value of an ``Ok`` or raise ``OperationFailed`` for an ``Err``."""

    if isinstance(result, Err):
        raise OperationFailed(result.error)
    return result.value


def error_body(kind: str, detail: str) -> dict[str, str]:
    return {"error": kind, "detail": detail}


async def _operation_failed_handler(request: Request, exc: OperationFailed) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error.kind.value, exc.error.message),
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = _KIND_BY_STATUS.get(exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(kind.value if kind else "HTTP_ERROR", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OperationFailed, _operation_failed_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)

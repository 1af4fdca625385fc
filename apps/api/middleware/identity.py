"""Request provenance capture for FastAPI."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from apps.api.core.errors import ErrorKind
from apps.api.dependencies.auth import provenance_from_request


class IdentityMiddleware(BaseHTTPMiddleware):
    """Record where the request came from and reject non-bearer credentials.

    Token resolution itself happens in the ``get_identity`` dependency; the
    middleware only stores the provenance that audit events copy.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() != "bearer" or not credentials.strip():
                return JSONResponse(
                    status_code=401,
                    content={
                        "error": ErrorKind.UNAUTHORIZED.value,
                        "detail": "Invalid authentication credentials",
                    },
                )

        request.state.provenance = provenance_from_request(request)
        return await call_next(request)

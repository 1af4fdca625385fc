from typing import Annotated, Mapping, Protocol

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from apps.api.services.permissions import Identity, Provenance


class UserLookup(Protocol):
    async def get_user(self, user_id: str): ...


bearer_scheme = HTTPBearer(auto_error=False)


def provenance_from_request(request: Request) -> Provenance:
    """Client address and user agent, honouring the first X-Forwarded-For hop."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    else:
        ip_address = request.client.host if request.client is not None else None
    return Provenance(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


class TokenIdentityResolver:
    """Map an already-issued bearer token to the caller's identity.

    Tokens only name a user; the role and the lock flag always come from the
    user record so role changes apply on the next request.
    """

    def __init__(self, token_map: Mapping[str, str], users: UserLookup) -> None:
        self._token_map = dict(token_map)
        self._users = users

    async def resolve(self, token: str | None, provenance: Provenance | None = None) -> Identity:
        if token is None:
            return Identity.anonymous(provenance)

        user_id = self._token_map.get(token)
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid authentication credentials")
        user = await self._users.get_user(user_id)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid authentication credentials")
        if user.is_locked:
            raise HTTPException(status_code=403, detail="Account is locked")
        return Identity(user_id=user.id, role=user.role, provenance=provenance or Provenance())


async def get_identity_resolver(request: Request) -> TokenIdentityResolver:
    resolver = getattr(request.app.state, "identity_resolver", None)
    if resolver is None:
        raise HTTPException(status_code=503, detail="Identity resolution is not available")
    return resolver


async def get_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
    resolver: Annotated[TokenIdentityResolver, Depends(get_identity_resolver)],
) -> Identity:
    """Resolve the caller once per request and cache it on ``request.state``."""

    cached = getattr(request.state, "identity", None)
    if isinstance(cached, Identity):
        return cached

    provenance = getattr(request.state, "provenance", None)
    if not isinstance(provenance, Provenance):
        provenance = provenance_from_request(request)
    token = credentials.credentials if credentials is not None else None
    identity = await resolver.resolve(token, provenance)
    request.state.identity = identity
    return identity


CurrentIdentity = Annotated[Identity, Depends(get_identity)]

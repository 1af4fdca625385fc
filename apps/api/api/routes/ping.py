from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from apps.api.dependencies.auth import CurrentIdentity
from apps.api.services.database import ping as ping_database

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/db", summary="Database readiness probe")
async def ping_db(request: Request) -> dict[str, str]:
    engine = getattr(request.app.state, "db_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    try:
        await ping_database(engine)
    except (SQLAlchemyError, OSError) as exc:
        raise HTTPException(status_code=503, detail="Database is unavailable") from exc
    return {"status": "ok"}


@router.get("/whoami", summary="Echo the resolved identity")
async def whoami(identity: CurrentIdentity) -> dict[str, str | None]:
    return {"user_id": identity.user_id, "role": identity.role.value}

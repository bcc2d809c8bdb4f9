from typing import Any, AsyncIterator

from fastapi import Header, HTTPException, Request

from .config import ADMIN_TOKEN
from .database import SessionLocal


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


async def get_db() -> AsyncIterator[Any]:
    async with SessionLocal() as db:
        yield db


def require_user_id(x_user_id: str | None = Header(default=None)) -> str:
    value = (x_user_id or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail="X-User-Id header required")
    return value


def require_admin(
    x_admin_token: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> str | None:
    validate_admin_token(x_admin_token, ADMIN_TOKEN)
    actor = (x_user_id or "").strip()
    return actor or None


def get_gateway(request: Request):
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Platform gateway not ready")
    return gateway


def get_presence_tracker(request: Request):
    tracker = getattr(request.app.state, "presence_tracker", None)
    if tracker is None:
        raise HTTPException(status_code=503, detail="Presence tracking not ready")
    return tracker

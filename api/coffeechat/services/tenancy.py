from __future__ import annotations

import logging
from typing import Any

from .. import repo
from ..errors import invalid, not_now
from .windows import SignupWindow, resolve_window

logger = logging.getLogger(__name__)


def is_configured(settings: dict[str, Any] | None) -> bool:
    if not settings:
        return False
    return bool(settings.get("announcements_channel_id")) and bool(settings.get("pairings_channel_id"))


async def get_tenant_settings(db, tenant_id: str) -> dict[str, Any] | None:
    return await repo.get_tenant_settings(db, tenant_id)


async def is_tenant_configured(db, tenant_id: str) -> bool:
    return is_configured(await repo.get_tenant_settings(db, tenant_id))


async def require_configured_tenant(db, tenant_id: str) -> dict[str, Any]:
    settings = await repo.get_tenant_settings(db, tenant_id)
    if not is_configured(settings):
        raise not_now("Coffee chats are not set up for this community yet. Ask an admin to run setup.")
    return settings


async def list_configured_tenants(db) -> list[dict[str, Any]]:
    return await repo.list_configured_tenants(db)


async def upsert_tenant_settings(
    db,
    tenant_id: str,
    *,
    announcements_channel_id: str,
    pairings_channel_id: str,
    moderator_role_id: str | None = None,
    ping_role_id: str | None = None,
) -> dict[str, Any]:
    if not str(announcements_channel_id or "").strip() or not str(pairings_channel_id or "").strip():
        raise invalid("Both an announcements channel and a pairings channel are required.")
    settings = await repo.upsert_tenant_settings(
        db,
        tenant_id,
        announcements_channel_id=str(announcements_channel_id).strip(),
        pairings_channel_id=str(pairings_channel_id).strip(),
        moderator_role_id=moderator_role_id,
        ping_role_id=ping_role_id,
    )
    logger.info("[%s] tenant settings saved", tenant_id)
    return settings


def tenant_window(settings: dict[str, Any] | None) -> SignupWindow:
    return resolve_window(settings)


def validate_schedule(day_of_week: Any, start_hour: Any, end_hour: Any) -> tuple[int, int, int]:
    try:
        day, start, end = int(day_of_week), int(start_hour), int(end_hour)
    except (TypeError, ValueError):
        raise invalid("Schedule values must be whole numbers.")
    if not 0 <= day <= 6:
        raise invalid("Day of week must be between 0 (Sunday) and 6 (Saturday).")
    if not 0 <= start <= 23:
        raise invalid("Start hour must be between 0 and 23.")
    if not 1 <= end <= 23:
        raise invalid("End hour must be between 1 and 23.")
    if end <= start:
        raise invalid("End hour must be after start hour.")
    return day, start, end


async def update_schedule(db, tenant_id: str, day_of_week: Any, start_hour: Any, end_hour: Any) -> SignupWindow:
    day, start, end = validate_schedule(day_of_week, start_hour, end_hour)
    await require_configured_tenant(db, tenant_id)
    row = await repo.update_tenant_schedule(db, tenant_id, day, start, end)
    logger.info("[%s] signup schedule updated day=%s start=%s end=%s", tenant_id, day, start, end)
    return resolve_window(row)

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from .. import repo
from ..config import LEADERBOARD_SIZE, SLOT_PREFIX, TIMEZONE_BUCKETS, TOTAL_SLOTS
from ..errors import already_done, invalid, not_allowed, not_now
from . import copy_templates
from .matching import slot_label
from .platform import PlatformGateway, deliver_safely, resolve_slot_safely
from .tenancy import require_configured_tenant, tenant_window
from .windows import describe_window, format_date, get_week_start_date, is_window_open

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def penalty_active(profile: dict[str, Any] | None, now: datetime) -> bool:
    if not profile or not profile.get("penalty_expires_at"):
        return False
    return _aware(profile["penalty_expires_at"]) > _aware(now)


def normalize_bucket(value: Any) -> str:
    bucket = str(value or "").strip().upper()
    if bucket not in TIMEZONE_BUCKETS:
        raise invalid(f"Timezone must be one of: {', '.join(TIMEZONE_BUCKETS)}.")
    return bucket


async def join(db, tenant_id: str, user_id: str, display_name: str | None, timezone_bucket: Any, now: datetime) -> dict[str, Any]:
    settings = await require_configured_tenant(db, tenant_id)
    bucket = normalize_bucket(timezone_bucket)
    if not is_window_open(now, settings):
        raise not_now(f"Signups are only open {describe_window(settings)}.")

    profile = await repo.get_profile(db, tenant_id, user_id)
    if penalty_active(profile, now):
        raise not_allowed(
            "You're currently unable to sign up due to a no-show penalty. "
            f"Your penalty expires on {format_date(profile['penalty_expires_at'])}."
        )
    if await repo.is_signed_up(db, tenant_id, user_id):
        raise already_done("You're already signed up for this week's coffee chat!")

    await repo.upsert_profile(db, tenant_id, user_id, display_name, bucket)
    if not await repo.add_signup(db, tenant_id, user_id):
        raise already_done("You're already signed up for this week's coffee chat!")
    logger.info("[%s] %s signed up (%s)", tenant_id, user_id, bucket)
    return {"status": "signed_up", "user_id": user_id, "timezone_bucket": bucket}


async def leave(db, tenant_id: str, user_id: str, now: datetime) -> dict[str, Any]:
    settings = await require_configured_tenant(db, tenant_id)
    if not is_window_open(now, settings):
        raise not_now(
            f"Withdrawals are only allowed during the signup window ({describe_window(settings)}). "
            "Matches have already been created; coordinate directly with your partner."
        )
    if not await repo.remove_signup(db, tenant_id, user_id):
        raise already_done("You're not signed up for this week's coffee chat.")
    logger.info("[%s] %s withdrew", tenant_id, user_id)
    return {"status": "withdrawn", "user_id": user_id}


async def get_status(db, tenant_id: str, user_id: str, now: datetime) -> dict[str, Any]:
    await require_configured_tenant(db, tenant_id)
    profile = await repo.get_profile(db, tenant_id, user_id)
    pairing = await repo.get_pairing_for_user(db, tenant_id, user_id)

    current: dict[str, Any] | None = None
    if pairing:
        members = copy_templates.pairing_members(pairing)
        current = {
            "pairing_id": pairing["id"],
            "partners": [m for m in members if m != user_id],
            "is_trio": len(members) == 3,
            "slot_label": pairing["assigned_slot_label"],
            "slot_ref": pairing.get("assigned_slot_ref"),
            "needs_coordination": bool(pairing.get("needs_coordination")),
            "completed_at": pairing.get("completed_at"),
            "completion_method": pairing.get("completion_method"),
        }

    return {
        "user_id": user_id,
        "signed_up": await repo.is_signed_up(db, tenant_id, user_id),
        "timezone_bucket": profile.get("timezone_bucket") if profile else None,
        "penalty_expires_at": profile["penalty_expires_at"] if penalty_active(profile, now) else None,
        "pairing": current,
    }


async def get_leaderboard(db, tenant_id: str, limit: int = LEADERBOARD_SIZE) -> list[dict[str, Any]]:
    await require_configured_tenant(db, tenant_id)
    rows = await repo.leaderboard(db, tenant_id, max(1, int(limit)))
    return [{"rank": idx + 1, "user_id": r["user_id"], "chat_count": int(r["chat_count"])} for idx, r in enumerate(rows)]


# -- admin -------------------------------------------------------------------


async def admin_add_signup(db, tenant_id: str, user_id: str, display_name: str | None, timezone_bucket: Any) -> dict[str, Any]:
    await require_configured_tenant(db, tenant_id)
    bucket = normalize_bucket(timezone_bucket)
    if await repo.is_signed_up(db, tenant_id, user_id):
        raise already_done(f"<@{user_id}> is already signed up for this week's coffee chat.")
    await repo.upsert_profile(db, tenant_id, user_id, display_name, bucket)
    await repo.add_signup(db, tenant_id, user_id)
    logger.info("[%s] admin added %s to signups (%s)", tenant_id, user_id, bucket)
    return {"status": "signed_up", "user_id": user_id, "timezone_bucket": bucket}


async def list_signups(db, tenant_id: str) -> dict[str, Any]:
    await require_configured_tenant(db, tenant_id)
    rows = await repo.list_signups_with_profiles(db, tenant_id)
    by_bucket: dict[str, list[str]] = {}
    for row in rows:
        by_bucket.setdefault(row.get("timezone_bucket") or "Unknown", []).append(row["user_id"])
    return {"total": len(rows), "by_bucket": by_bucket}


async def reset_signups(db, tenant_id: str) -> int:
    await require_configured_tenant(db, tenant_id)
    cleared = await repo.clear_signups(db, tenant_id)
    logger.info("[%s] admin cleared %s signups", tenant_id, cleared)
    return cleared


async def create_manual_pairing(
    db,
    gateway: PlatformGateway,
    tenant_id: str,
    members: list[str],
    slot_number: int,
    now: datetime,
    created_by: str | None = None,
) -> dict[str, Any]:
    await require_configured_tenant(db, tenant_id)
    members = [str(m).strip() for m in members if m and str(m).strip()]
    if len(members) not in (2, 3):
        raise invalid("A pairing needs two or three members.")
    if len(set(members)) != len(members):
        raise invalid("You cannot pair a user with themselves. Please select different users.")
    if not 1 <= int(slot_number) <= TOTAL_SLOTS:
        raise invalid(f"Slot number must be between 1 and {TOTAL_SLOTS}.")

    label = slot_label(int(slot_number), SLOT_PREFIX)
    resolution = await resolve_slot_safely(gateway, tenant_id, label)
    pairing = await repo.create_pairing(
        db,
        tenant_id,
        user_a=members[0],
        user_b=members[1],
        user_c=members[2] if len(members) > 2 else None,
        slot_label=label,
        slot_ref=resolution.ref,
        needs_coordination=False,
        week_of=get_week_start_date(now),
    )
    logger.info("[%s] manual pairing %s created by %s", tenant_id, pairing["id"], created_by or "admin")
    return pairing


async def announce_now(db, gateway: PlatformGateway, tenant_id: str) -> bool:
    settings = await require_configured_tenant(db, tenant_id)
    content = copy_templates.signup_announcement(settings, tenant_window(settings))
    return await deliver_safely(
        gateway.post_announcement(tenant_id, settings["announcements_channel_id"], content),
        "signup announcement",
        tenant_id,
    )

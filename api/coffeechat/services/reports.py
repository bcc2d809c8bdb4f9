from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from .. import repo
from ..config import PENALTY_WEEKS
from ..errors import already_done, invalid, not_allowed
from . import copy_templates
from .platform import PlatformGateway, deliver_safely
from .roster import penalty_active
from .state_machine import ReportAction, ReportStatus, transition_report_status
from .tenancy import require_configured_tenant
from .windows import format_date

logger = logging.getLogger(__name__)


async def file_report(
    db,
    tenant_id: str,
    reporter_id: str,
    reported_id: str,
    now: datetime,
    *,
    pairing_id: int | None = None,
    gateway: PlatformGateway | None = None,
) -> tuple[dict[str, Any], bool] | None:
    """File a no-show report against the reporter's own partner.

    Returns (report, created). An identical pending report is returned with
    created=False instead of inserting a second row. None means the reporter
    has no pairing this week.
    """
    settings = await require_configured_tenant(db, tenant_id)
    if reporter_id == reported_id:
        raise invalid("You cannot report yourself.")

    pairing = await repo.get_pairing_for_user(db, tenant_id, reporter_id)
    if not pairing:
        return None
    if pairing_id is not None and int(pairing_id) != int(pairing["id"]):
        raise not_allowed("You can only report members of your own pairing.")
    if reported_id not in copy_templates.pairing_members(pairing):
        raise not_allowed("You can only report your assigned partner from this week's pairing.")

    existing = await repo.get_pending_report(db, tenant_id, pairing["id"], reporter_id, reported_id)
    if existing:
        return existing, False

    report = await repo.create_report(db, tenant_id, pairing["id"], reporter_id, reported_id)
    if report is None:
        # lost the insert race to an identical report
        existing = await repo.get_pending_report(db, tenant_id, pairing["id"], reporter_id, reported_id)
        return existing, False

    await db.commit()
    logger.info("[%s] %s reported %s for no-show (report %s)", tenant_id, reporter_id, reported_id, report["id"])
    if gateway is not None:
        await deliver_safely(
            gateway.post_announcement(
                tenant_id,
                settings["announcements_channel_id"],
                copy_templates.report_filed_notice(report, settings.get("moderator_role_id")),
            ),
            "no-show report notice",
            tenant_id,
        )
    return report, True


async def apply_penalty(db, tenant_id: str, user_id: str, now: datetime, display_name: str | None = None) -> datetime:
    expires_at = now + timedelta(weeks=PENALTY_WEEKS)
    await repo.set_penalty(db, tenant_id, user_id, expires_at, display_name)
    logger.info("[%s] penalty applied to %s until %s", tenant_id, user_id, expires_at.isoformat())
    return expires_at


async def remove_penalty(db, tenant_id: str, user_id: str) -> bool:
    removed = await repo.clear_penalty(db, tenant_id, user_id)
    if removed:
        logger.info("[%s] penalty removed from %s", tenant_id, user_id)
    return removed


async def expire_all_pending(db, tenant_id: str, now: datetime) -> int:
    expired = await repo.expire_pending_reports(db, tenant_id, now)
    if expired:
        logger.info("[%s] expired %s pending reports", tenant_id, expired)
    return expired


async def resolve_report(
    db,
    tenant_id: str,
    report_id: int,
    action: ReportAction | str,
    reviewer_id: str | None,
    now: datetime,
    note: str | None = None,
) -> dict[str, Any] | None:
    action = ReportAction(action)
    report = await repo.get_report(db, tenant_id, report_id)
    if not report:
        return None
    if ReportStatus(report["status"]) != ReportStatus.PENDING:
        raise already_done(f"Report #{report_id} is already {report['status']}.")

    target = transition_report_status(report["status"], action)
    resolved = await repo.resolve_report(db, tenant_id, report_id, target.value, reviewer_id, note, now)
    if resolved is None:
        # another reviewer resolved it first; their outcome stands
        return await repo.get_report(db, tenant_id, report_id)

    if target == ReportStatus.RESOLVED_PENALIZED:
        await apply_penalty(db, tenant_id, resolved["reported_id"], now)
    logger.info("[%s] report %s -> %s by %s", tenant_id, report_id, target.value, reviewer_id)
    return resolved


async def punish(
    db,
    tenant_id: str,
    user_id: str,
    reviewer_id: str | None,
    now: datetime,
    *,
    report_id: int | None = None,
    gateway: PlatformGateway | None = None,
) -> dict[str, Any] | None:
    await require_configured_tenant(db, tenant_id)
    if report_id is not None:
        report = await repo.get_report(db, tenant_id, report_id)
        if report and report["status"] != ReportStatus.PENDING.value:
            report = None
    else:
        report = await repo.get_latest_pending_report_for_user(db, tenant_id, user_id)
    if not report:
        return None
    if report["reported_id"] != user_id:
        raise invalid(f"Report #{report['id']} is for <@{report['reported_id']}>, not <@{user_id}>.")

    resolved = await resolve_report(
        db, tenant_id, report["id"], ReportAction.PENALIZE, reviewer_id, now, note=f"Penalty applied to {user_id}."
    )
    await db.commit()
    profile = await repo.get_profile(db, tenant_id, user_id)
    expires_at = profile.get("penalty_expires_at") if profile else None
    if gateway is not None and expires_at:
        await deliver_safely(
            gateway.send_direct(tenant_id, user_id, copy_templates.penalty_dm(format_date(expires_at))),
            "penalty notice",
            tenant_id,
        )
    return {"report": resolved, "penalty_expires_at": expires_at}


async def dismiss_report(db, tenant_id: str, report_id: int, reviewer_id: str | None, now: datetime) -> dict[str, Any] | None:
    await require_configured_tenant(db, tenant_id)
    return await resolve_report(db, tenant_id, report_id, ReportAction.DISMISS, reviewer_id, now, note="Dismissed by moderator.")


async def unpunish(db, tenant_id: str, user_id: str, now: datetime) -> bool:
    await require_configured_tenant(db, tenant_id)
    profile = await repo.get_profile(db, tenant_id, user_id)
    if not penalty_active(profile, now):
        raise already_done(f"<@{user_id}> does not have an active penalty.")
    return await remove_penalty(db, tenant_id, user_id)

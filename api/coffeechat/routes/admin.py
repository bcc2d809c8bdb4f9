from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_db, get_gateway, require_admin
from ..schemas import AdminSignupRequest, ManualPairingRequest, PunishRequest, ScheduleUpdate, TenantSetupRequest
from ..services import copy_templates, reports, roster, scheduler, tenancy
from ..services.platform import deliver_safely
from ..services.windows import describe_window

router = APIRouter()


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.put("/admin/tenants/{tenant_id}/settings")
async def admin_setup(tenant_id: str, payload: TenantSetupRequest, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    settings = await tenancy.upsert_tenant_settings(
        db,
        tenant_id,
        announcements_channel_id=payload.announcements_channel_id,
        pairings_channel_id=payload.pairings_channel_id,
        moderator_role_id=payload.moderator_role_id,
        ping_role_id=payload.ping_role_id,
    )
    await db.commit()
    return {"status": "configured", "settings": settings}


@router.get("/admin/tenants/{tenant_id}/settings")
async def admin_settings(tenant_id: str, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    settings = await tenancy.get_tenant_settings(db, tenant_id)
    if not settings:
        raise HTTPException(status_code=404, detail="Tenant not configured")
    window = tenancy.tenant_window(settings)
    return {"settings": settings, "schedule": describe_window(window)}


@router.put("/admin/tenants/{tenant_id}/schedule")
async def admin_update_schedule(tenant_id: str, payload: ScheduleUpdate, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    window = await tenancy.update_schedule(db, tenant_id, payload.day_of_week, payload.start_hour, payload.end_hour)
    await db.commit()
    return {
        "day_of_week": window.day_of_week,
        "start_hour": window.start_hour,
        "end_hour": window.end_hour,
        "description": describe_window(window),
    }


@router.post("/admin/tenants/{tenant_id}/announce")
async def admin_announce(tenant_id: str, actor=Depends(require_admin), db=Depends(get_db), gateway=Depends(get_gateway)) -> dict[str, Any]:
    delivered = await roster.announce_now(db, gateway, tenant_id)
    return {"status": "sent" if delivered else "delivery_failed"}


@router.get("/admin/tenants/{tenant_id}/signups")
async def admin_list_signups(tenant_id: str, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    return await roster.list_signups(db, tenant_id)


@router.post("/admin/tenants/{tenant_id}/signups")
async def admin_add_signup(tenant_id: str, payload: AdminSignupRequest, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    result = await roster.admin_add_signup(db, tenant_id, payload.user_id.strip(), payload.display_name, payload.timezone_bucket)
    await db.commit()
    return result


@router.delete("/admin/tenants/{tenant_id}/signups")
async def admin_reset_signups(tenant_id: str, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    cleared = await roster.reset_signups(db, tenant_id)
    await db.commit()
    return {"status": "cleared", "cleared": cleared}


@router.post("/admin/tenants/{tenant_id}/match")
async def admin_rematch(
    tenant_id: str,
    force: bool = False,
    actor=Depends(require_admin),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
) -> dict[str, Any]:
    outcome = await scheduler.rematch(db, gateway, tenant_id, _now(), force=force)
    await db.commit()
    return {
        "status": outcome.status,
        "forced": force,
        "eligible_count": outcome.eligible_count,
        "pairings": outcome.pairings,
    }


@router.post("/admin/tenants/{tenant_id}/pairings")
async def admin_manual_pairing(
    tenant_id: str,
    payload: ManualPairingRequest,
    actor=Depends(require_admin),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
) -> dict[str, Any]:
    pairing = await roster.create_manual_pairing(db, gateway, tenant_id, payload.user_ids, payload.slot_number, _now(), created_by=actor)
    await db.commit()
    settings = await tenancy.get_tenant_settings(db, tenant_id)
    await deliver_safely(
        gateway.post_announcement(tenant_id, settings["pairings_channel_id"], copy_templates.manual_pairing_notice(pairing, actor)),
        "manual pairing notice",
        tenant_id,
    )
    return {"status": "created", "pairing": pairing}


@router.post("/admin/tenants/{tenant_id}/punish")
async def admin_punish(
    tenant_id: str,
    payload: PunishRequest,
    actor=Depends(require_admin),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
) -> dict[str, Any]:
    result = await reports.punish(db, tenant_id, payload.user_id.strip(), actor, _now(), report_id=payload.report_id, gateway=gateway)
    if result is None:
        detail = (
            f"No pending report found with ID {payload.report_id}."
            if payload.report_id is not None
            else f"No pending reports found for {payload.user_id}."
        )
        raise HTTPException(status_code=404, detail=detail)
    return {"status": "penalized", **result}


@router.post("/admin/tenants/{tenant_id}/reports/{report_id}/dismiss")
async def admin_dismiss_report(tenant_id: str, report_id: int, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    report = await reports.dismiss_report(db, tenant_id, report_id, actor, _now())
    if report is None:
        raise HTTPException(status_code=404, detail=f"No pending report found with ID {report_id}.")
    await db.commit()
    return {"status": "dismissed", "report": report}


@router.delete("/admin/tenants/{tenant_id}/penalties/{user_id}")
async def admin_unpunish(tenant_id: str, user_id: str, actor=Depends(require_admin), db=Depends(get_db)) -> dict[str, Any]:
    await reports.unpunish(db, tenant_id, user_id, _now())
    await db.commit()
    return {"status": "penalty_removed", "user_id": user_id}

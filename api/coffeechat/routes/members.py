from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..config import LEADERBOARD_SIZE
from ..deps import get_db, get_gateway, require_user_id
from ..schemas import JoinRequest, ReportRequest
from ..services import completion, reports, roster, tenancy
from ..services.windows import describe_window

router = APIRouter()


@router.get("/tenants/{tenant_id}/schedule")
async def member_schedule(tenant_id: str, db=Depends(get_db)) -> dict[str, Any]:
    settings = await tenancy.require_configured_tenant(db, tenant_id)
    window = tenancy.tenant_window(settings)
    return {
        "day_of_week": window.day_of_week,
        "start_hour": window.start_hour,
        "end_hour": window.end_hour,
        "description": describe_window(window),
    }


@router.post("/tenants/{tenant_id}/signup")
async def member_join(
    tenant_id: str,
    payload: JoinRequest,
    user_id: str = Depends(require_user_id),
    db=Depends(get_db),
) -> dict[str, Any]:
    result = await roster.join(db, tenant_id, user_id, payload.display_name, payload.timezone_bucket, datetime.now(timezone.utc))
    await db.commit()
    return result


@router.delete("/tenants/{tenant_id}/signup")
async def member_leave(tenant_id: str, user_id: str = Depends(require_user_id), db=Depends(get_db)) -> dict[str, Any]:
    result = await roster.leave(db, tenant_id, user_id, datetime.now(timezone.utc))
    await db.commit()
    return result


@router.get("/tenants/{tenant_id}/status")
async def member_status(tenant_id: str, user_id: str = Depends(require_user_id), db=Depends(get_db)) -> dict[str, Any]:
    return await roster.get_status(db, tenant_id, user_id, datetime.now(timezone.utc))


@router.get("/tenants/{tenant_id}/leaderboard")
async def member_leaderboard(tenant_id: str, limit: int = LEADERBOARD_SIZE, db=Depends(get_db)) -> dict[str, Any]:
    return {"leaders": await roster.get_leaderboard(db, tenant_id, limit)}


@router.post("/tenants/{tenant_id}/reports")
async def member_report(
    tenant_id: str,
    payload: ReportRequest,
    user_id: str = Depends(require_user_id),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
) -> dict[str, Any]:
    filed = await reports.file_report(
        db,
        tenant_id,
        user_id,
        payload.reported_user_id.strip(),
        datetime.now(timezone.utc),
        pairing_id=payload.pairing_id,
        gateway=gateway,
    )
    if filed is None:
        raise HTTPException(status_code=404, detail="You don't have a coffee chat pairing this week.")
    report, created = filed
    await db.commit()
    return {"status": "created" if created else "already_pending", "report": report}


@router.post("/tenants/{tenant_id}/complete")
async def member_complete(
    tenant_id: str,
    user_id: str = Depends(require_user_id),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
) -> dict[str, Any]:
    done = await completion.complete_explicit(db, tenant_id, user_id, datetime.now(timezone.utc), gateway=gateway)
    if done is None:
        raise HTTPException(status_code=404, detail="You don't have a coffee chat pairing this week.")
    pairing, created = done
    await db.commit()
    return {"status": "completed" if created else "already_completed", "pairing": pairing}

from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import text

PAIRING_COLUMNS = """
    id, tenant_id, user_a, user_b, user_c, assigned_slot_label, assigned_slot_ref,
    needs_coordination, week_of, created_at, completed_at, completion_method
"""

REPORT_COLUMNS = """
    id, tenant_id, pairing_id, reporter_id, reported_id, status,
    reviewed_by, reviewed_at, note, created_at
"""


def _row(result) -> dict[str, Any] | None:
    row = result.mappings().first()
    return dict(row) if row else None


def _rows(result) -> list[dict[str, Any]]:
    return [dict(r) for r in result.mappings().all()]


# -- tenant settings ---------------------------------------------------------


async def get_tenant_settings(db, tenant_id: str) -> dict[str, Any] | None:
    result = await db.execute(
        text("SELECT * FROM tenant_settings WHERE tenant_id=:tenant_id"),
        {"tenant_id": tenant_id},
    )
    return _row(result)


async def list_configured_tenants(db) -> list[dict[str, Any]]:
    result = await db.execute(
        text(
            """
            SELECT *
            FROM tenant_settings
            WHERE announcements_channel_id IS NOT NULL
              AND pairings_channel_id IS NOT NULL
            ORDER BY tenant_id
            """
        )
    )
    return _rows(result)


async def upsert_tenant_settings(
    db,
    tenant_id: str,
    *,
    announcements_channel_id: str,
    pairings_channel_id: str,
    moderator_role_id: str | None = None,
    ping_role_id: str | None = None,
) -> dict[str, Any]:
    result = await db.execute(
        text(
            """
            INSERT INTO tenant_settings (tenant_id, announcements_channel_id, pairings_channel_id, moderator_role_id, ping_role_id)
            VALUES (:tenant_id, :announcements_channel_id, :pairings_channel_id, :moderator_role_id, :ping_role_id)
            ON CONFLICT (tenant_id)
            DO UPDATE SET
              announcements_channel_id = EXCLUDED.announcements_channel_id,
              pairings_channel_id = EXCLUDED.pairings_channel_id,
              moderator_role_id = EXCLUDED.moderator_role_id,
              ping_role_id = EXCLUDED.ping_role_id,
              updated_at = NOW()
            RETURNING *
            """
        ),
        {
            "tenant_id": tenant_id,
            "announcements_channel_id": announcements_channel_id,
            "pairings_channel_id": pairings_channel_id,
            "moderator_role_id": moderator_role_id,
            "ping_role_id": ping_role_id,
        },
    )
    return _row(result)


async def update_tenant_schedule(db, tenant_id: str, day_of_week: int, start_hour: int, end_hour: int) -> dict[str, Any] | None:
    result = await db.execute(
        text(
            """
            UPDATE tenant_settings
            SET signup_day_of_week=:day_of_week,
                signup_start_hour=:start_hour,
                signup_end_hour=:end_hour,
                updated_at=NOW()
            WHERE tenant_id=:tenant_id
            RETURNING *
            """
        ),
        {"tenant_id": tenant_id, "day_of_week": day_of_week, "start_hour": start_hour, "end_hour": end_hour},
    )
    return _row(result)


# -- member profiles and penalties ------------------------------------------


async def get_profile(db, tenant_id: str, user_id: str) -> dict[str, Any] | None:
    result = await db.execute(
        text("SELECT * FROM member_profile WHERE tenant_id=:tenant_id AND user_id=:user_id"),
        {"tenant_id": tenant_id, "user_id": user_id},
    )
    return _row(result)


async def upsert_profile(db, tenant_id: str, user_id: str, display_name: str | None, timezone_bucket: str) -> dict[str, Any]:
    result = await db.execute(
        text(
            """
            INSERT INTO member_profile (tenant_id, user_id, display_name, timezone_bucket)
            VALUES (:tenant_id, :user_id, :display_name, :timezone_bucket)
            ON CONFLICT (tenant_id, user_id)
            DO UPDATE SET
              display_name = COALESCE(EXCLUDED.display_name, member_profile.display_name),
              timezone_bucket = EXCLUDED.timezone_bucket,
              updated_at = NOW()
            RETURNING *
            """
        ),
        {"tenant_id": tenant_id, "user_id": user_id, "display_name": display_name, "timezone_bucket": timezone_bucket},
    )
    return _row(result)


async def set_penalty(db, tenant_id: str, user_id: str, expires_at: datetime, display_name: str | None = None) -> dict[str, Any]:
    result = await db.execute(
        text(
            """
            INSERT INTO member_profile (tenant_id, user_id, display_name, penalty_expires_at)
            VALUES (:tenant_id, :user_id, :display_name, :expires_at)
            ON CONFLICT (tenant_id, user_id)
            DO UPDATE SET
              penalty_expires_at = EXCLUDED.penalty_expires_at,
              display_name = COALESCE(EXCLUDED.display_name, member_profile.display_name),
              updated_at = NOW()
            RETURNING *
            """
        ),
        {"tenant_id": tenant_id, "user_id": user_id, "display_name": display_name, "expires_at": expires_at},
    )
    return _row(result)


async def clear_penalty(db, tenant_id: str, user_id: str) -> bool:
    result = await db.execute(
        text(
            """
            UPDATE member_profile
            SET penalty_expires_at=NULL, updated_at=NOW()
            WHERE tenant_id=:tenant_id
              AND user_id=:user_id
              AND penalty_expires_at IS NOT NULL
            """
        ),
        {"tenant_id": tenant_id, "user_id": user_id},
    )
    return int(result.rowcount or 0) > 0


# -- signups -----------------------------------------------------------------


async def add_signup(db, tenant_id: str, user_id: str) -> bool:
    result = await db.execute(
        text(
            """
            INSERT INTO signup (tenant_id, user_id)
            VALUES (:tenant_id, :user_id)
            ON CONFLICT (tenant_id, user_id) DO NOTHING
            """
        ),
        {"tenant_id": tenant_id, "user_id": user_id},
    )
    return int(result.rowcount or 0) > 0


async def remove_signup(db, tenant_id: str, user_id: str) -> bool:
    result = await db.execute(
        text("DELETE FROM signup WHERE tenant_id=:tenant_id AND user_id=:user_id"),
        {"tenant_id": tenant_id, "user_id": user_id},
    )
    return int(result.rowcount or 0) > 0


async def is_signed_up(db, tenant_id: str, user_id: str) -> bool:
    result = await db.execute(
        text("SELECT 1 FROM signup WHERE tenant_id=:tenant_id AND user_id=:user_id"),
        {"tenant_id": tenant_id, "user_id": user_id},
    )
    return result.first() is not None


async def list_signups_with_profiles(db, tenant_id: str) -> list[dict[str, Any]]:
    result = await db.execute(
        text(
            """
            SELECT s.user_id, p.display_name, p.timezone_bucket, p.penalty_expires_at
            FROM signup s
            JOIN member_profile p
              ON p.tenant_id = s.tenant_id
             AND p.user_id = s.user_id
            WHERE s.tenant_id=:tenant_id
            ORDER BY s.created_at
            """
        ),
        {"tenant_id": tenant_id},
    )
    return _rows(result)


async def clear_signups(db, tenant_id: str) -> int:
    result = await db.execute(text("DELETE FROM signup WHERE tenant_id=:tenant_id"), {"tenant_id": tenant_id})
    return int(result.rowcount or 0)


# -- pairings ----------------------------------------------------------------


async def create_pairing(
    db,
    tenant_id: str,
    *,
    user_a: str,
    user_b: str,
    user_c: str | None,
    slot_label: str,
    slot_ref: str | None,
    needs_coordination: bool,
    week_of: date,
) -> dict[str, Any]:
    result = await db.execute(
        text(
            f"""
            INSERT INTO pairing (tenant_id, user_a, user_b, user_c, assigned_slot_label, assigned_slot_ref, needs_coordination, week_of)
            VALUES (:tenant_id, :user_a, :user_b, :user_c, :slot_label, :slot_ref, :needs_coordination, :week_of)
            RETURNING {PAIRING_COLUMNS}
            """
        ),
        {
            "tenant_id": tenant_id,
            "user_a": user_a,
            "user_b": user_b,
            "user_c": user_c,
            "slot_label": slot_label,
            "slot_ref": slot_ref,
            "needs_coordination": needs_coordination,
            "week_of": week_of,
        },
    )
    return _row(result)


async def get_pairing(db, tenant_id: str, pairing_id: int) -> dict[str, Any] | None:
    result = await db.execute(
        text(f"SELECT {PAIRING_COLUMNS} FROM pairing WHERE tenant_id=:tenant_id AND id=:id"),
        {"tenant_id": tenant_id, "id": pairing_id},
    )
    return _row(result)


async def get_pairing_for_user(db, tenant_id: str, user_id: str) -> dict[str, Any] | None:
    result = await db.execute(
        text(
            f"""
            SELECT {PAIRING_COLUMNS}
            FROM pairing
            WHERE tenant_id=:tenant_id
              AND (user_a=:user_id OR user_b=:user_id OR user_c=:user_id)
            ORDER BY id DESC
            LIMIT 1
            """
        ),
        {"tenant_id": tenant_id, "user_id": user_id},
    )
    return _row(result)


async def list_pairings(db, tenant_id: str) -> list[dict[str, Any]]:
    result = await db.execute(
        text(f"SELECT {PAIRING_COLUMNS} FROM pairing WHERE tenant_id=:tenant_id ORDER BY id"),
        {"tenant_id": tenant_id},
    )
    return _rows(result)


async def list_incomplete_pairings(db, tenant_id: str) -> list[dict[str, Any]]:
    result = await db.execute(
        text(f"SELECT {PAIRING_COLUMNS} FROM pairing WHERE tenant_id=:tenant_id AND completed_at IS NULL ORDER BY id"),
        {"tenant_id": tenant_id},
    )
    return _rows(result)


async def count_completed_pairings(db, tenant_id: str) -> int:
    result = await db.execute(
        text("SELECT COUNT(1) FROM pairing WHERE tenant_id=:tenant_id AND completed_at IS NOT NULL"),
        {"tenant_id": tenant_id},
    )
    return int(result.scalar() or 0)


async def clear_pairings(db, tenant_id: str) -> int:
    result = await db.execute(text("DELETE FROM pairing WHERE tenant_id=:tenant_id"), {"tenant_id": tenant_id})
    return int(result.rowcount or 0)


async def complete_pairing(db, tenant_id: str, pairing_id: int, method: str, completed_at: datetime) -> dict[str, Any] | None:
    """Set the completion once; returns None when another writer got there first."""
    result = await db.execute(
        text(
            f"""
            UPDATE pairing
            SET completed_at=:completed_at, completion_method=:method
            WHERE tenant_id=:tenant_id
              AND id=:id
              AND completed_at IS NULL
            RETURNING {PAIRING_COLUMNS}
            """
        ),
        {"tenant_id": tenant_id, "id": pairing_id, "method": method, "completed_at": completed_at},
    )
    return _row(result)


# -- history ledger ----------------------------------------------------------


async def record_history(db, tenant_id: str, members: Iterable[str], week_of: date) -> bool:
    ordered = sorted(m for m in members if m)
    result = await db.execute(
        text(
            """
            INSERT INTO pairing_history (tenant_id, user_a, user_b, user_c, week_of)
            VALUES (:tenant_id, :user_a, :user_b, :user_c, :week_of)
            ON CONFLICT (tenant_id, user_a, user_b, COALESCE(user_c, ''), week_of) DO NOTHING
            """
        ),
        {
            "tenant_id": tenant_id,
            "user_a": ordered[0],
            "user_b": ordered[1],
            "user_c": ordered[2] if len(ordered) > 2 else None,
            "week_of": week_of,
        },
    )
    return int(result.rowcount or 0) > 0


async def fetch_history_since(db, tenant_id: str, since: date) -> list[dict[str, Any]]:
    result = await db.execute(
        text(
            """
            SELECT user_a, user_b, user_c, week_of
            FROM pairing_history
            WHERE tenant_id=:tenant_id
              AND week_of >= :since
            ORDER BY week_of DESC
            """
        ),
        {"tenant_id": tenant_id, "since": since},
    )
    return _rows(result)


async def clear_history_for_week(db, tenant_id: str, week_of: date) -> int:
    result = await db.execute(
        text("DELETE FROM pairing_history WHERE tenant_id=:tenant_id AND week_of=:week_of"),
        {"tenant_id": tenant_id, "week_of": week_of},
    )
    return int(result.rowcount or 0)


async def leaderboard(db, tenant_id: str, limit: int) -> list[dict[str, Any]]:
    result = await db.execute(
        text(
            """
            SELECT member AS user_id, COUNT(1) AS chat_count
            FROM (
              SELECT user_a AS member FROM pairing_history WHERE tenant_id=:tenant_id
              UNION ALL
              SELECT user_b FROM pairing_history WHERE tenant_id=:tenant_id
              UNION ALL
              SELECT user_c FROM pairing_history WHERE tenant_id=:tenant_id AND user_c IS NOT NULL
            ) members
            GROUP BY member
            ORDER BY chat_count DESC, member
            LIMIT :limit
            """
        ),
        {"tenant_id": tenant_id, "limit": limit},
    )
    return _rows(result)


# -- no-show reports ---------------------------------------------------------


async def create_report(db, tenant_id: str, pairing_id: int, reporter_id: str, reported_id: str) -> dict[str, Any] | None:
    """Insert a pending report; None if an identical one is already pending."""
    result = await db.execute(
        text(
            f"""
            INSERT INTO no_show_report (tenant_id, pairing_id, reporter_id, reported_id, status)
            VALUES (:tenant_id, :pairing_id, :reporter_id, :reported_id, 'pending')
            ON CONFLICT (pairing_id, reporter_id, reported_id) WHERE status = 'pending' DO NOTHING
            RETURNING {REPORT_COLUMNS}
            """
        ),
        {"tenant_id": tenant_id, "pairing_id": pairing_id, "reporter_id": reporter_id, "reported_id": reported_id},
    )
    return _row(result)


async def get_pending_report(db, tenant_id: str, pairing_id: int, reporter_id: str, reported_id: str) -> dict[str, Any] | None:
    result = await db.execute(
        text(
            f"""
            SELECT {REPORT_COLUMNS}
            FROM no_show_report
            WHERE tenant_id=:tenant_id
              AND pairing_id=:pairing_id
              AND reporter_id=:reporter_id
              AND reported_id=:reported_id
              AND status='pending'
            """
        ),
        {"tenant_id": tenant_id, "pairing_id": pairing_id, "reporter_id": reporter_id, "reported_id": reported_id},
    )
    return _row(result)


async def get_report(db, tenant_id: str, report_id: int) -> dict[str, Any] | None:
    result = await db.execute(
        text(f"SELECT {REPORT_COLUMNS} FROM no_show_report WHERE tenant_id=:tenant_id AND id=:id"),
        {"tenant_id": tenant_id, "id": report_id},
    )
    return _row(result)


async def get_latest_pending_report_for_user(db, tenant_id: str, reported_id: str) -> dict[str, Any] | None:
    result = await db.execute(
        text(
            f"""
            SELECT {REPORT_COLUMNS}
            FROM no_show_report
            WHERE tenant_id=:tenant_id
              AND reported_id=:reported_id
              AND status='pending'
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """
        ),
        {"tenant_id": tenant_id, "reported_id": reported_id},
    )
    return _row(result)


async def count_pending_reports(db, tenant_id: str) -> int:
    result = await db.execute(
        text("SELECT COUNT(1) FROM no_show_report WHERE tenant_id=:tenant_id AND status='pending'"),
        {"tenant_id": tenant_id},
    )
    return int(result.scalar() or 0)


async def resolve_report(
    db,
    tenant_id: str,
    report_id: int,
    status: str,
    reviewed_by: str | None,
    note: str | None,
    reviewed_at: datetime,
) -> dict[str, Any] | None:
    result = await db.execute(
        text(
            f"""
            UPDATE no_show_report
            SET status=:status, reviewed_by=:reviewed_by, reviewed_at=:reviewed_at, note=:note
            WHERE tenant_id=:tenant_id
              AND id=:id
              AND status='pending'
            RETURNING {REPORT_COLUMNS}
            """
        ),
        {
            "tenant_id": tenant_id,
            "id": report_id,
            "status": status,
            "reviewed_by": reviewed_by,
            "reviewed_at": reviewed_at,
            "note": note,
        },
    )
    return _row(result)


async def expire_pending_reports(db, tenant_id: str, expired_at: datetime) -> int:
    result = await db.execute(
        text(
            """
            UPDATE no_show_report
            SET status='expired', reviewed_at=:expired_at, note=COALESCE(note, 'Expired at weekly reset.')
            WHERE tenant_id=:tenant_id
              AND status='pending'
            """
        ),
        {"tenant_id": tenant_id, "expired_at": expired_at},
    )
    return int(result.rowcount or 0)


# -- scheduled job markers ---------------------------------------------------


async def fetch_job_runs(db, tenant_id: str, week_of: date) -> set[str]:
    result = await db.execute(
        text("SELECT job_type FROM scheduled_job_run WHERE tenant_id=:tenant_id AND week_of=:week_of"),
        {"tenant_id": tenant_id, "week_of": week_of},
    )
    return {str(r["job_type"]) for r in result.mappings().all()}


async def mark_job_run(db, tenant_id: str, job_type: str, week_of: date) -> None:
    await db.execute(
        text(
            """
            INSERT INTO scheduled_job_run (tenant_id, job_type, week_of)
            VALUES (:tenant_id, :job_type, :week_of)
            ON CONFLICT (tenant_id, job_type, week_of) DO NOTHING
            """
        ),
        {"tenant_id": tenant_id, "job_type": job_type, "week_of": week_of},
    )

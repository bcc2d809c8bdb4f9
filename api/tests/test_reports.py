from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from coffeechat.errors import RejectedOperation, RejectionKind
from coffeechat.services import reports, roster, scheduler

CT = ZoneInfo("America/Chicago")
NOW = datetime(2026, 10, 16, 15, 0, tzinfo=CT)
TENANT = "t1"


async def _pair(fake_repo, db, a="alice", b="bob", c=None):
    return await fake_repo.create_pairing(
        db,
        TENANT,
        user_a=a,
        user_b=b,
        user_c=c,
        slot_label="Coffee Chat VC 1",
        slot_ref=None,
        needs_coordination=False,
        week_of=date(2026, 10, 12),
    )


@pytest.mark.asyncio
async def test_duplicate_report_returns_existing(configured, db, gateway):
    pairing = await _pair(configured, db)

    first, created = await reports.file_report(db, TENANT, "alice", "bob", NOW, gateway=gateway)
    again, created_again = await reports.file_report(db, TENANT, "alice", "bob", NOW, gateway=gateway)

    assert created is True
    assert created_again is False
    assert again["id"] == first["id"]
    assert first["pairing_id"] == pairing["id"]
    assert len(configured.reports) == 1
    assert len(gateway.announcements) == 1
    assert "#1" in gateway.announcements[0][2]


@pytest.mark.asyncio
async def test_report_requires_own_partner(configured, db):
    await _pair(configured, db, "alice", "bob")
    await _pair(configured, db, "carol", "dan")

    with pytest.raises(RejectedOperation) as exc:
        await reports.file_report(db, TENANT, "alice", "carol", NOW)
    assert exc.value.kind == RejectionKind.NOT_ALLOWED

    with pytest.raises(RejectedOperation) as exc:
        await reports.file_report(db, TENANT, "alice", "alice", NOW)
    assert exc.value.kind == RejectionKind.INVALID


@pytest.mark.asyncio
async def test_report_without_pairing_is_not_found(configured, db):
    assert await reports.file_report(db, TENANT, "alice", "bob", NOW) is None


@pytest.mark.asyncio
async def test_trio_member_can_report_either_partner(configured, db):
    await _pair(configured, db, "alice", "bob", "cyd")
    report, created = await reports.file_report(db, TENANT, "cyd", "alice", NOW)
    assert created and report["reported_id"] == "alice"


@pytest.mark.asyncio
async def test_report_notice_failure_does_not_lose_report(configured, db, gateway):
    await _pair(configured, db)
    gateway.fail_deliveries = True
    report, created = await reports.file_report(db, TENANT, "alice", "bob", NOW, gateway=gateway)
    assert created
    assert configured.reports[report["id"]]["status"] == "pending"


@pytest.mark.asyncio
async def test_penalize_resolves_once_and_sets_expiry(configured, db):
    await _pair(configured, db)
    report, _ = await reports.file_report(db, TENANT, "alice", "bob", NOW)

    resolved = await reports.resolve_report(db, TENANT, report["id"], "penalize", "mod1", NOW)
    assert resolved["status"] == "resolved_penalized"
    assert configured.profiles[(TENANT, "bob")]["penalty_expires_at"] == NOW + timedelta(weeks=2)

    with pytest.raises(RejectedOperation) as exc:
        await reports.resolve_report(db, TENANT, report["id"], "dismiss", "mod2", NOW)
    assert exc.value.kind == RejectionKind.ALREADY_DONE
    assert configured.reports[report["id"]]["status"] == "resolved_penalized"


@pytest.mark.asyncio
async def test_resolve_unknown_report_is_not_found(configured, db):
    assert await reports.resolve_report(db, TENANT, 99, "dismiss", "mod", NOW) is None


@pytest.mark.asyncio
async def test_apply_penalty_overwrites_rather_than_stacks(configured, db):
    await reports.apply_penalty(db, TENANT, "bob", NOW)
    later = NOW + timedelta(days=3)
    expires = await reports.apply_penalty(db, TENANT, "bob", later)
    assert expires == later + timedelta(weeks=2)
    assert configured.profiles[(TENANT, "bob")]["penalty_expires_at"] == expires


@pytest.mark.asyncio
async def test_punish_uses_latest_pending_report_and_checks_target(configured, db, gateway):
    await _pair(configured, db)
    report, _ = await reports.file_report(db, TENANT, "alice", "bob", NOW)

    with pytest.raises(RejectedOperation) as exc:
        await reports.punish(db, TENANT, "alice", "mod", NOW, report_id=report["id"])
    assert exc.value.kind == RejectionKind.INVALID

    result = await reports.punish(db, TENANT, "bob", "mod", NOW, gateway=gateway)
    assert result["report"]["status"] == "resolved_penalized"
    assert result["penalty_expires_at"] == NOW + timedelta(weeks=2)
    assert gateway.directs and gateway.directs[0][1] == "bob"

    assert await reports.punish(db, TENANT, "bob", "mod", NOW) is None


@pytest.mark.asyncio
async def test_dismiss_and_unpunish(configured, db):
    await _pair(configured, db)
    report, _ = await reports.file_report(db, TENANT, "alice", "bob", NOW)
    dismissed = await reports.dismiss_report(db, TENANT, report["id"], "mod", NOW)
    assert dismissed["status"] == "resolved_dismissed"
    assert configured.profiles.get((TENANT, "bob")) is None

    with pytest.raises(RejectedOperation) as exc:
        await reports.unpunish(db, TENANT, "bob", NOW)
    assert exc.value.kind == RejectionKind.ALREADY_DONE

    await reports.apply_penalty(db, TENANT, "bob", NOW)
    assert await reports.unpunish(db, TENANT, "bob", NOW) is True
    assert configured.profiles[(TENANT, "bob")]["penalty_expires_at"] is None


@pytest.mark.asyncio
async def test_weekly_reset_expires_every_pending_report(configured, db):
    await _pair(configured, db, "alice", "bob")
    await _pair(configured, db, "carol", "dan")
    await reports.file_report(db, TENANT, "alice", "bob", NOW)
    await reports.file_report(db, TENANT, "dan", "carol", NOW)
    await configured.add_signup(db, TENANT, "alice")

    await scheduler.weekly_reset(db, TENANT, NOW)

    assert await configured.count_pending_reports(db, TENANT) == 0
    assert {r["status"] for r in configured.reports.values()} == {"expired"}
    assert configured.signups.get(TENANT, []) == []
    assert await configured.list_pairings(db, TENANT) == []


@pytest.mark.asyncio
async def test_penalized_member_cannot_join(configured, db):
    await reports.apply_penalty(db, TENANT, "bob", NOW - timedelta(days=1))

    with pytest.raises(RejectedOperation) as exc:
        await roster.join(db, TENANT, "bob", "Bob", "AMERICAS", NOW)
    assert exc.value.kind == RejectionKind.NOT_ALLOWED
    assert not await configured.is_signed_up(db, TENANT, "bob")


@pytest.mark.asyncio
async def test_expired_penalty_allows_join(configured, db):
    await reports.apply_penalty(db, TENANT, "bob", NOW - timedelta(weeks=3))
    result = await roster.join(db, TENANT, "bob", "Bob", "emea", NOW)
    assert result["timezone_bucket"] == "EMEA"

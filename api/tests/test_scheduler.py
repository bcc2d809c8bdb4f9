import random
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from coffeechat import repo
from coffeechat.errors import RejectedOperation, RejectionKind
from coffeechat.services import scheduler
from coffeechat.services.completion import complete_pairing
from coffeechat.services.reports import file_report
from coffeechat.services.scheduler import JobRunMarkers, WeeklyScheduler, rematch, run_matching_for_tenant
from coffeechat.services.windows import SignupWindow

CT = ZoneInfo("America/Chicago")
TENANT = "t1"
WEEK = date(2026, 10, 12)

# default window is Friday 14:00-19:00 CT
OPEN_TIME = datetime(2026, 10, 16, 14, 0, tzinfo=CT)
MATCH_TIME = datetime(2026, 10, 16, 19, 0, tzinfo=CT)
REMINDER_TIME = datetime(2026, 10, 18, 10, 0, tzinfo=CT)
RESET_TIME = datetime(2026, 10, 18, 23, 59, tzinfo=CT)


async def _signup(fake_repo, *users, bucket="AMERICAS"):
    for user in users:
        await fake_repo.upsert_profile(None, TENANT, user, user.title(), bucket)
        await fake_repo.add_signup(None, TENANT, user)


def _scheduler(session_factory, gateway, seed=1):
    return WeeklyScheduler(session_factory, gateway, rng=random.Random(seed))


@pytest.mark.asyncio
async def test_signup_announcement_fires_once_per_week(configured, session_factory, gateway):
    sched = _scheduler(session_factory, gateway)

    await sched.tick(OPEN_TIME)
    await sched.tick(OPEN_TIME + timedelta(minutes=1))

    assert len(gateway.announcements) == 1
    assert gateway.announcements[0][1] == "ann"
    assert (TENANT, "signup_announcement", WEEK) in configured.job_runs


@pytest.mark.asyncio
async def test_persisted_marker_survives_restart(configured, session_factory, gateway):
    await _scheduler(session_factory, gateway).tick(OPEN_TIME)
    await _scheduler(session_factory, gateway).tick(OPEN_TIME + timedelta(minutes=5))
    assert len(gateway.announcements) == 1


@pytest.mark.asyncio
async def test_marker_write_failure_falls_back_to_memory(configured, session_factory, gateway):
    configured.fail_mark_job_run = True
    sched = _scheduler(session_factory, gateway)

    await sched.tick(OPEN_TIME)
    await sched.tick(OPEN_TIME + timedelta(minutes=1))

    assert len(gateway.announcements) == 1
    assert configured.job_runs == set()

    # a fresh process has no memory of it
    await _scheduler(session_factory, gateway).tick(OPEN_TIME + timedelta(minutes=2))
    assert len(gateway.announcements) == 2


@pytest.mark.asyncio
async def test_matching_transition_creates_and_announces_pairings(configured, session_factory, gateway):
    await _signup(configured, "a1", "a2", "a3", "a4")
    gateway.members = {"a1", "a2", "a3", "a4"}
    gateway.slots = {"Coffee Chat VC 1": ["vc-1"], "Coffee Chat VC 2": ["vc-2a", "vc-2b"]}

    await _scheduler(session_factory, gateway).tick(MATCH_TIME)

    pairings = await configured.list_pairings(None, TENANT)
    assert len(pairings) == 2
    refs = {p["assigned_slot_label"]: p["assigned_slot_ref"] for p in pairings}
    assert refs == {"Coffee Chat VC 1": "vc-1", "Coffee Chat VC 2": None}
    assert all(p["week_of"] == WEEK for p in pairings)
    assert gateway.pairing_posts[0][1] == "pairs"
    assert len(gateway.directs) == 4
    assert configured.history == []
    assert (TENANT, "matching", WEEK) in configured.job_runs


@pytest.mark.asyncio
async def test_matching_skips_when_pairings_exist(configured, session_factory, gateway):
    await _signup(configured, "a1", "a2")
    gateway.members = {"a1", "a2"}
    await configured.create_pairing(
        None, TENANT, user_a="x", user_b="y", user_c=None, slot_label="Coffee Chat VC 1",
        slot_ref=None, needs_coordination=False, week_of=WEEK,
    )

    await _scheduler(session_factory, gateway).tick(MATCH_TIME)

    assert len(configured.pairings) == 1
    assert gateway.pairing_posts == []
    assert (TENANT, "matching", WEEK) in configured.job_runs


@pytest.mark.asyncio
async def test_not_enough_signups_posts_notice(configured, session_factory, gateway):
    await _signup(configured, "a1")
    gateway.members = {"a1"}

    await _scheduler(session_factory, gateway).tick(MATCH_TIME)

    assert configured.pairings == {}
    assert len(gateway.announcements) == 1
    assert gateway.announcements[0][1] == "pairs"
    assert "Not enough signups" in gateway.announcements[0][2]


@pytest.mark.asyncio
async def test_penalized_and_departed_members_are_not_matched(configured, db, gateway):
    now = MATCH_TIME
    await _signup(configured, "a1", "a2", "a3", "gone")
    await configured.set_penalty(None, TENANT, "a3", now + timedelta(days=5))
    gateway.members = {"a1", "a2", "a3"}

    outcome = await run_matching_for_tenant(db, gateway, TENANT, now, rng=random.Random(0))

    assert outcome.status == "matched"
    assert outcome.eligible_count == 2
    members = {m for p in outcome.pairings for m in (p["user_a"], p["user_b"], p["user_c"]) if m}
    assert members == {"a1", "a2"}


@pytest.mark.asyncio
async def test_membership_lookup_failure_keeps_signups(configured, db, gateway):
    await _signup(configured, "a1", "a2")
    gateway.members = None

    outcome = await run_matching_for_tenant(db, gateway, TENANT, MATCH_TIME, rng=random.Random(0))
    assert outcome.eligible_count == 2


@pytest.mark.asyncio
async def test_delivery_failures_do_not_undo_pairings(configured, db, gateway):
    await _signup(configured, "a1", "a2")
    gateway.members = {"a1", "a2"}
    gateway.fail_deliveries = True

    outcome = await run_matching_for_tenant(db, gateway, TENANT, MATCH_TIME, rng=random.Random(0))

    assert outcome.status == "matched"
    assert len(configured.pairings) == 1
    assert db.commits == 1


@pytest.mark.asyncio
async def test_reminders_only_for_incomplete_pairings(configured, session_factory, gateway):
    done = await configured.create_pairing(
        None, TENANT, user_a="a1", user_b="a2", user_c=None, slot_label="Coffee Chat VC 1",
        slot_ref=None, needs_coordination=False, week_of=WEEK,
    )
    await configured.create_pairing(
        None, TENANT, user_a="b1", user_b="b2", user_c="b3", slot_label="Coffee Chat VC 2",
        slot_ref="vc-2", needs_coordination=False, week_of=WEEK,
    )
    await complete_pairing(None, TENANT, done["id"], "manual", REMINDER_TIME)

    sched = _scheduler(session_factory, gateway)
    await sched.tick(REMINDER_TIME)
    await sched.tick(REMINDER_TIME + timedelta(minutes=1))

    assert sorted(d[1] for d in gateway.directs) == ["b1", "b2", "b3"]


@pytest.mark.asyncio
async def test_reset_runs_once_at_end_of_week(configured, session_factory, gateway):
    await _signup(configured, "a1", "a2")
    sched = _scheduler(session_factory, gateway)

    await sched.tick(RESET_TIME - timedelta(minutes=1))
    assert configured.signups[TENANT] == ["a1", "a2"]

    await sched.tick(RESET_TIME)
    assert configured.signups.get(TENANT, []) == []
    assert (TENANT, "weekly_reset", WEEK) in configured.job_runs


@pytest.mark.asyncio
async def test_one_tenant_failure_does_not_block_others(configured, session_factory, gateway):
    configured.settings["t0"] = dict(configured.settings[TENANT], tenant_id="t0")
    configured.fail_list_pairings_for.add("t0")
    await _signup(configured, "a1", "a2")
    gateway.members = {"a1", "a2"}

    await _scheduler(session_factory, gateway).tick(MATCH_TIME)

    assert len(await configured.list_pairings(None, TENANT)) == 1
    assert not any(key[0] == "t0" for key in configured.job_runs)


@pytest.mark.asyncio
async def test_unconfigured_tenants_are_skipped(fake_repo, session_factory, gateway):
    fake_repo.settings["bare"] = {"tenant_id": "bare", "announcements_channel_id": "ann", "pairings_channel_id": None}
    await _scheduler(session_factory, gateway).tick(OPEN_TIME)
    assert gateway.announcements == []


@pytest.mark.asyncio
async def test_rematch_blocked_without_force(configured, db, gateway):
    await _signup(configured, "a1", "a2")
    gateway.members = {"a1", "a2"}
    pairing = await configured.create_pairing(
        None, TENANT, user_a="a1", user_b="a2", user_c=None, slot_label="Coffee Chat VC 1",
        slot_ref=None, needs_coordination=False, week_of=WEEK,
    )
    await complete_pairing(db, TENANT, pairing["id"], "manual", MATCH_TIME)

    with pytest.raises(RejectedOperation) as exc:
        await rematch(db, gateway, TENANT, MATCH_TIME)
    assert exc.value.kind == RejectionKind.NOT_NOW
    assert len(configured.pairings) == 1


@pytest.mark.asyncio
async def test_forced_rematch_clears_week_state(configured, db, gateway):
    users = ["a1", "a2", "a3", "a4"]
    await _signup(configured, *users)
    gateway.members = set(users)
    first = await run_matching_for_tenant(db, gateway, TENANT, MATCH_TIME, rng=random.Random(0))
    for pairing in first.pairings:
        await complete_pairing(db, TENANT, pairing["id"], "manual", MATCH_TIME)
    await file_report(db, TENANT, first.pairings[0]["user_a"], first.pairings[0]["user_b"], MATCH_TIME)
    old_history = [dict(h, week_of=date(2026, 9, 7)) for h in configured.history]
    configured.history.extend(old_history)

    outcome = await rematch(db, gateway, TENANT, MATCH_TIME, force=True, rng=random.Random(5))

    assert outcome.status == "matched"
    remaining = await configured.list_pairings(None, TENANT)
    assert {p["id"] for p in remaining} == {p["id"] for p in outcome.pairings}
    assert all(p["completed_at"] is None for p in remaining)
    assert await configured.count_pending_reports(None, TENANT) == 0
    assert all(h["week_of"] != WEEK for h in configured.history)
    assert len(configured.history) == len(old_history)


def test_reset_due_until_next_window_opens():
    window = SignupWindow(5, 14, 19)
    assert scheduler.reset_due(datetime(2026, 10, 18, 23, 58, tzinfo=CT), window) is None
    assert scheduler.reset_due(datetime(2026, 10, 18, 23, 59, tzinfo=CT), window) == RESET_TIME
    assert scheduler.reset_due(datetime(2026, 10, 21, 9, 0, tzinfo=CT), window) == RESET_TIME
    assert scheduler.reset_due(datetime(2026, 10, 23, 13, 59, tzinfo=CT), window) == RESET_TIME
    assert scheduler.reset_due(datetime(2026, 10, 23, 14, 0, tzinfo=CT), window) is None


@pytest.mark.asyncio
async def test_reset_runs_when_ticks_skip_the_reset_minute(configured, session_factory, gateway):
    await _signup(configured, "a1", "a2")
    sched = _scheduler(session_factory, gateway)

    await sched.tick(datetime(2026, 10, 18, 23, 58, 59, 500000, tzinfo=CT))
    assert configured.signups[TENANT] == ["a1", "a2"]

    await sched.tick(datetime(2026, 10, 19, 0, 0, 0, 500000, tzinfo=CT))
    assert configured.signups.get(TENANT, []) == []
    assert (TENANT, "weekly_reset", WEEK) in configured.job_runs

    # a new signup after the catch-up survives later ticks
    await configured.add_signup(None, TENANT, "b1")
    await sched.tick(datetime(2026, 10, 19, 0, 1, 0, 500000, tzinfo=CT))
    assert configured.signups[TENANT] == ["b1"]


@pytest.mark.asyncio
async def test_failed_reset_is_retried_on_a_later_tick(configured, session_factory, gateway, monkeypatch):
    await _signup(configured, "a1", "a2")
    clear_signups = repo.clear_signups

    async def _storage_down(db, tenant_id):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(repo, "clear_signups", _storage_down)
    sched = _scheduler(session_factory, gateway)
    await sched.tick(RESET_TIME)
    assert (TENANT, "weekly_reset", WEEK) not in configured.job_runs

    monkeypatch.setattr(repo, "clear_signups", clear_signups)
    await sched.tick(RESET_TIME + timedelta(minutes=5))
    assert configured.signups.get(TENANT, []) == []
    assert (TENANT, "weekly_reset", WEEK) in configured.job_runs


@pytest.mark.asyncio
async def test_missed_reset_does_not_block_next_week_matching(configured, session_factory, gateway):
    await _signup(configured, "a1", "a2")
    await configured.create_pairing(
        None, TENANT, user_a="a1", user_b="a2", user_c=None, slot_label="Coffee Chat VC 1",
        slot_ref=None, needs_coordination=False, week_of=WEEK,
    )
    sched = _scheduler(session_factory, gateway)

    # process was down over the reset instant; first tick is Monday morning
    await sched.tick(datetime(2026, 10, 19, 8, 0, tzinfo=CT))
    assert configured.pairings == {}

    await _signup(configured, "b1", "b2")
    gateway.members = {"b1", "b2"}
    await sched.tick(datetime(2026, 10, 23, 19, 0, tzinfo=CT))

    pairings = await configured.list_pairings(None, TENANT)
    assert len(pairings) == 1
    assert pairings[0]["week_of"] == date(2026, 10, 19)
    assert {pairings[0]["user_a"], pairings[0]["user_b"]} == {"b1", "b2"}


@pytest.mark.asyncio
async def test_stale_reset_is_abandoned_once_signups_reopen(configured, session_factory, gateway):
    await _signup(configured, "b1")
    await _scheduler(session_factory, gateway).tick(datetime(2026, 10, 23, 14, 0, tzinfo=CT))
    assert configured.signups[TENANT] == ["b1"]
    assert not any(job == "weekly_reset" for (_, job, _) in configured.job_runs)


@pytest.mark.asyncio
async def test_markers_merge_memory_and_storage(fake_repo, session_factory):
    markers = JobRunMarkers(session_factory)
    fake_repo.job_runs.add((TENANT, "reminder", WEEK))
    fake_repo.fail_mark_job_run = True

    assert await markers.mark(TENANT, "matching", WEEK) is False
    assert await markers.completed_jobs(None, TENANT, WEEK) == {"reminder", "matching"}
    assert await markers.completed_jobs(None, TENANT, date(2026, 10, 19)) == set()

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable

from .. import repo
from ..config import (
    HISTORY_WEEKS,
    MIN_SIGNUPS_FOR_MATCHING,
    REMINDER_HOUR,
    REMINDER_OFFSET_DAYS,
    RESET_DAY_OF_WEEK,
    RESET_HOUR,
    RESET_MINUTE,
    SCHEDULER_POLL_SECONDS,
    SLOT_PREFIX,
    TOTAL_SLOTS,
)
from ..errors import not_now
from . import copy_templates, tenancy
from .matching import match_members
from .platform import PlatformGateway, SlotResolution, deliver_safely, resolve_slot_safely
from .reports import expire_all_pending
from .roster import penalty_active
from .state_machine import JobType
from .windows import SignupWindow, day_of_week, get_week_start_date, history_since, reference_now

logger = logging.getLogger(__name__)


@dataclass
class MatchingOutcome:
    status: str
    eligible_count: int
    pairings: list[dict[str, Any]] = field(default_factory=list)


class JobRunMarkers:
    """Once-per-week markers per (tenant, job type).

    Persisted rows are authoritative. The in-memory set is written first so a
    failed persist still suppresses re-runs until the process restarts.
    """

    def __init__(self, session_factory: Callable[[], Any]):
        self._session_factory = session_factory
        self._memory: set[tuple[str, str, date]] = set()

    async def completed_jobs(self, db, tenant_id: str, week_of: date) -> set[str]:
        persisted = await repo.fetch_job_runs(db, tenant_id, week_of)
        in_memory = {job for (t, job, w) in self._memory if t == tenant_id and w == week_of}
        return persisted | in_memory

    async def mark(self, tenant_id: str, job_type: JobType, week_of: date) -> bool:
        job = JobType(job_type).value
        self._memory.add((tenant_id, job, week_of))
        try:
            async with self._session_factory() as db:
                await repo.mark_job_run(db, tenant_id, job, week_of)
                await db.commit()
            return True
        except Exception as exc:
            logger.warning(
                "[%s] could not persist %s marker for week %s; falling back to in-memory dedupe until restart: %s",
                tenant_id,
                job,
                week_of.isoformat(),
                exc,
            )
            return False


async def eligible_signups(db, gateway: PlatformGateway, tenant_id: str, now: datetime) -> list[dict[str, Any]]:
    signups = await repo.list_signups_with_profiles(db, tenant_id)
    logger.info("[%s] initial signups: %s", tenant_id, len(signups))
    eligible = [s for s in signups if not penalty_active(s, now)]
    logger.info("[%s] after filtering penalized: %s", tenant_id, len(eligible))

    try:
        member_ids = await gateway.fetch_member_ids(tenant_id)
    except Exception as exc:
        logger.warning("[%s] membership lookup failed, skipping departed-member filter: %s", tenant_id, exc)
        return eligible
    eligible = [s for s in eligible if str(s["user_id"]) in member_ids]
    logger.info("[%s] after filtering departed members: %s", tenant_id, len(eligible))
    return eligible


async def notify_pairings(gateway: PlatformGateway, settings: dict[str, Any], pairings: list[dict[str, Any]]) -> None:
    tenant_id = settings["tenant_id"]
    await deliver_safely(
        gateway.post_pairings(tenant_id, settings["pairings_channel_id"], copy_templates.pairing_messages(pairings)),
        "pairings announcement",
        tenant_id,
    )
    sent = failed = 0
    for pairing in pairings:
        for member in copy_templates.pairing_members(pairing):
            ok = await deliver_safely(
                gateway.send_direct(tenant_id, member, copy_templates.pairing_dm(pairing, member)),
                "pairing DM",
                tenant_id,
            )
            sent, failed = (sent + 1, failed) if ok else (sent, failed + 1)
    logger.info("[%s] sent %s pairing DMs (%s failed)", tenant_id, sent, failed)


async def run_matching_for_tenant(
    db,
    gateway: PlatformGateway,
    tenant_id: str,
    now: datetime,
    *,
    rng: random.Random | None = None,
) -> MatchingOutcome:
    """Match this week's eligible signups, persist the pairings and announce them.

    Pairings are committed before any notification goes out.
    """
    settings = await tenancy.require_configured_tenant(db, tenant_id)
    eligible = await eligible_signups(db, gateway, tenant_id, now)

    if len(eligible) < MIN_SIGNUPS_FOR_MATCHING:
        logger.info("[%s] not enough signups for matching (%s)", tenant_id, len(eligible))
        await deliver_safely(
            gateway.post_announcement(tenant_id, settings["pairings_channel_id"], copy_templates.not_enough_signups()),
            "not-enough-signups notice",
            tenant_id,
        )
        return MatchingOutcome(status="not_enough_signups", eligible_count=len(eligible))

    history = await repo.fetch_history_since(db, tenant_id, history_since(now, HISTORY_WEEKS))
    proposed = match_members(eligible, history, rng=rng, total_slots=TOTAL_SLOTS, prefix=SLOT_PREFIX)

    resolutions: dict[str, SlotResolution] = {}
    for pairing in proposed:
        if pairing.slot_label not in resolutions:
            resolutions[pairing.slot_label] = await resolve_slot_safely(gateway, tenant_id, pairing.slot_label)

    week_of = get_week_start_date(now)
    saved = []
    for pairing in proposed:
        saved.append(
            await repo.create_pairing(
                db,
                tenant_id,
                user_a=pairing.user_a,
                user_b=pairing.user_b,
                user_c=pairing.user_c,
                slot_label=pairing.slot_label,
                slot_ref=resolutions[pairing.slot_label].ref,
                needs_coordination=pairing.needs_coordination,
                week_of=week_of,
            )
        )
    await db.commit()
    logger.info("[%s] created %s pairings for week %s", tenant_id, len(saved), week_of.isoformat())

    await notify_pairings(gateway, settings, saved)
    return MatchingOutcome(status="matched", eligible_count=len(eligible), pairings=saved)


async def rematch(
    db,
    gateway: PlatformGateway,
    tenant_id: str,
    now: datetime,
    *,
    force: bool = False,
    rng: random.Random | None = None,
) -> MatchingOutcome:
    """Operator-triggered matching that replaces this week's state."""
    await tenancy.require_configured_tenant(db, tenant_id)
    completed = await repo.count_completed_pairings(db, tenant_id)
    pending = await repo.count_pending_reports(db, tenant_id)
    if (completed or pending) and not force:
        raise not_now(
            "Rematch blocked to protect existing weekly records. "
            f"Completed chats this week: {completed}. Pending reports this week: {pending}. "
            "Rerun with force to clear them before rematching."
        )

    week_of = get_week_start_date(now)
    await repo.clear_history_for_week(db, tenant_id, week_of)
    await expire_all_pending(db, tenant_id, now)
    await repo.clear_pairings(db, tenant_id)
    logger.info("[%s] cleared week %s state for rematch (force=%s)", tenant_id, week_of.isoformat(), force)
    return await run_matching_for_tenant(db, gateway, tenant_id, now, rng=rng)


async def weekly_reset(db, tenant_id: str, now: datetime) -> None:
    await expire_all_pending(db, tenant_id, now)
    signups = await repo.clear_signups(db, tenant_id)
    pairings = await repo.clear_pairings(db, tenant_id)
    logger.info("[%s] weekly reset complete (%s signups, %s pairings cleared)", tenant_id, signups, pairings)


def last_reset_instant(local: datetime) -> datetime:
    days_back = (day_of_week(local) - RESET_DAY_OF_WEEK) % 7
    instant = (local - timedelta(days=days_back)).replace(hour=RESET_HOUR, minute=RESET_MINUTE, second=0, microsecond=0)
    if instant > local:
        instant -= timedelta(days=7)
    return instant


def next_window_open(after: datetime, window: SignupWindow) -> datetime:
    days_ahead = (window.day_of_week - day_of_week(after)) % 7
    opening = (after + timedelta(days=days_ahead)).replace(hour=window.start_hour, minute=0, second=0, microsecond=0)
    if opening <= after:
        opening += timedelta(days=7)
    return opening


def reset_due(local: datetime, window: SignupWindow) -> datetime | None:
    """The reset instant still owed at `local`, or None.

    A reset missed at its minute is caught up on any later tick until the
    next signup window opens; after that it would wipe the new week's
    signups, so it is abandoned.
    """
    instant = last_reset_instant(local)
    if local < next_window_open(instant, window):
        return instant
    return None


class WeeklyScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Any],
        gateway: PlatformGateway,
        *,
        rng: random.Random | None = None,
        poll_seconds: float = SCHEDULER_POLL_SECONDS,
        markers: JobRunMarkers | None = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._rng = rng
        self._poll_seconds = poll_seconds
        self.markers = markers or JobRunMarkers(session_factory)

    async def run_forever(self) -> None:
        logger.info("weekly scheduler started (poll every %ss)", self._poll_seconds)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("scheduler tick failed")
            await asyncio.sleep(self._poll_seconds)

    async def tick(self, now: datetime | None = None) -> None:
        local = reference_now(now)
        async with self._session_factory() as db:
            tenants = await tenancy.list_configured_tenants(db)
        for settings in tenants:
            tenant_id = settings["tenant_id"]
            if not tenancy.is_configured(settings):
                continue
            try:
                await self._tick_tenant(settings, local)
            except Exception:
                logger.exception("[%s] scheduled job failed; will retry on a later tick", tenant_id)

    async def _tick_tenant(self, settings: dict[str, Any], local: datetime) -> None:
        tenant_id = settings["tenant_id"]
        window = tenancy.tenant_window(settings)
        week_of = get_week_start_date(local)
        today = day_of_week(local)

        reset_at = reset_due(local, window)
        if reset_at is not None:
            await self._reset_if_owed(tenant_id, reset_at, local)

        async with self._session_factory() as db:
            done = await self.markers.completed_jobs(db, tenant_id, week_of)

        if today == window.day_of_week and local.hour == window.start_hour and JobType.SIGNUP_ANNOUNCEMENT.value not in done:
            await deliver_safely(
                self._gateway.post_announcement(
                    tenant_id,
                    settings["announcements_channel_id"],
                    copy_templates.signup_announcement(settings, window),
                ),
                "signup announcement",
                tenant_id,
            )
            await self.markers.mark(tenant_id, JobType.SIGNUP_ANNOUNCEMENT, week_of)
            logger.info("[%s] signup announcement complete for week %s", tenant_id, week_of.isoformat())

        if today == window.day_of_week and local.hour == window.end_hour and JobType.MATCHING.value not in done:
            async with self._session_factory() as db:
                existing = await repo.list_pairings(db, tenant_id)
                if existing:
                    logger.info("[%s] skipping scheduled matching because pairings already exist", tenant_id)
                else:
                    await run_matching_for_tenant(db, self._gateway, tenant_id, local, rng=self._rng)
            await self.markers.mark(tenant_id, JobType.MATCHING, week_of)

        reminder_day = (window.day_of_week + REMINDER_OFFSET_DAYS) % 7
        if today == reminder_day and local.hour == REMINDER_HOUR and JobType.REMINDER.value not in done:
            async with self._session_factory() as db:
                incomplete = await repo.list_incomplete_pairings(db, tenant_id)
            await self._send_reminders(tenant_id, incomplete)
            await self.markers.mark(tenant_id, JobType.REMINDER, week_of)

    async def _reset_if_owed(self, tenant_id: str, reset_at: datetime, local: datetime) -> None:
        # keyed to the week being closed, not the week the tick lands in
        closing_week = get_week_start_date(reset_at)
        async with self._session_factory() as db:
            done = await self.markers.completed_jobs(db, tenant_id, closing_week)
            if JobType.WEEKLY_RESET.value in done:
                return
            if local - reset_at >= timedelta(minutes=1):
                logger.warning("[%s] weekly reset for week %s is late, running now", tenant_id, closing_week.isoformat())
            await weekly_reset(db, tenant_id, local)
            await db.commit()
        await self.markers.mark(tenant_id, JobType.WEEKLY_RESET, closing_week)

    async def _send_reminders(self, tenant_id: str, incomplete: list[dict[str, Any]]) -> None:
        if not incomplete:
            logger.info("[%s] all pairings complete, no reminders needed", tenant_id)
            return
        sent = 0
        for pairing in incomplete:
            for member in copy_templates.pairing_members(pairing):
                if await deliver_safely(
                    self._gateway.send_direct(tenant_id, member, copy_templates.reminder_dm(pairing, member)),
                    "reminder DM",
                    tenant_id,
                ):
                    sent += 1
        logger.info("[%s] sent %s reminder DMs for %s incomplete pairings", tenant_id, sent, len(incomplete))

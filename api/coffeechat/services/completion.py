from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from .. import repo
from ..config import COMPLETION_DEBOUNCE_SECONDS
from . import copy_templates
from .platform import PlatformGateway, deliver_safely
from .state_machine import CompletionMethod
from .tenancy import require_configured_tenant

logger = logging.getLogger(__name__)

# a trio counts as met once any two of its members share the slot
REQUIRED_PRESENT = 2


async def complete_pairing(
    db,
    tenant_id: str,
    pairing_id: int,
    method: CompletionMethod | str,
    now: datetime,
) -> tuple[dict[str, Any] | None, bool]:
    """Mark a pairing complete once and append its history record.

    Returns (pairing, newly_completed). A pairing that was already complete
    comes back unchanged with newly_completed=False.
    """
    method = CompletionMethod(method)
    completed = await repo.complete_pairing(db, tenant_id, pairing_id, method.value, now)
    if completed is None:
        return await repo.get_pairing(db, tenant_id, pairing_id), False

    await repo.record_history(db, tenant_id, copy_templates.pairing_members(completed), completed["week_of"])
    logger.info("[%s] pairing %s completed (%s)", tenant_id, pairing_id, method.value)
    return completed, True


async def complete_explicit(
    db,
    tenant_id: str,
    user_id: str,
    now: datetime,
    gateway: PlatformGateway | None = None,
) -> tuple[dict[str, Any], bool] | None:
    await require_configured_tenant(db, tenant_id)
    pairing = await repo.get_pairing_for_user(db, tenant_id, user_id)
    if not pairing:
        return None
    if pairing.get("completed_at"):
        return pairing, False

    completed, created = await complete_pairing(db, tenant_id, pairing["id"], CompletionMethod.MANUAL, now)
    await db.commit()
    if created and gateway is not None:
        for member in copy_templates.pairing_members(completed):
            content = (
                copy_templates.completion_confirmed_dm()
                if member == user_id
                else copy_templates.completion_by_partner_dm(user_id)
            )
            await deliver_safely(gateway.send_direct(tenant_id, member, content), "completion notice", tenant_id)
    return completed, created


@dataclass
class _PendingCompletion:
    slot_ref: str
    task: asyncio.Task


class PresenceTracker:
    """Debounced auto-completion from co-presence in the assigned slot.

    A timer is keyed by (tenant, pairing). It starts when enough members are
    in the slot, is cancelled when they leave, and re-checks everything from
    storage and the platform before completing. Timers live in this process
    only and are lost on restart.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        gateway: PlatformGateway,
        debounce_seconds: float = COMPLETION_DEBOUNCE_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._debounce_seconds = debounce_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._pending: dict[tuple[str, int], _PendingCompletion] = {}

    @property
    def pending_keys(self) -> set[tuple[str, int]]:
        return set(self._pending)

    async def _present_members(self, tenant_id: str, pairing: dict[str, Any]) -> set[str]:
        occupants = await self._gateway.fetch_slot_occupants(tenant_id, pairing["assigned_slot_ref"])
        return occupants & set(copy_templates.pairing_members(pairing))

    async def handle_presence_event(self, tenant_id: str, user_id: str) -> None:
        async with self._session_factory() as db:
            pairing = await repo.get_pairing_for_user(db, tenant_id, user_id)
        if not pairing or pairing.get("completed_at"):
            return
        key = (tenant_id, int(pairing["id"]))
        slot_ref = pairing.get("assigned_slot_ref")
        if not slot_ref:
            self.cancel(key)
            return

        present = await self._present_members(tenant_id, pairing)
        if len(present) < REQUIRED_PRESENT:
            self.cancel(key)
            return

        running = self._pending.get(key)
        if running and running.slot_ref == slot_ref and not running.task.done():
            return
        self.cancel(key)
        task = asyncio.create_task(self._complete_after_delay(key, slot_ref))
        self._pending[key] = _PendingCompletion(slot_ref=slot_ref, task=task)
        logger.info("[%s] co-presence detected for pairing %s; completing in %ss", tenant_id, key[1], self._debounce_seconds)

    def cancel(self, key: tuple[str, int]) -> bool:
        running = self._pending.pop(key, None)
        if running is None:
            return False
        running.task.cancel()
        logger.info("[%s] co-presence ended for pairing %s; timer cancelled", key[0], key[1])
        return True

    async def cancel_all(self) -> None:
        tasks = [p.task for p in self._pending.values()]
        self._pending.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _complete_after_delay(self, key: tuple[str, int], slot_ref: str) -> None:
        tenant_id, pairing_id = key
        try:
            await asyncio.sleep(self._debounce_seconds)
            await self._verify_and_complete(tenant_id, pairing_id, slot_ref)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[%s] presence completion failed for pairing %s", tenant_id, pairing_id)
        finally:
            current = self._pending.get(key)
            if current is not None and current.task is asyncio.current_task():
                self._pending.pop(key, None)

    async def _verify_and_complete(self, tenant_id: str, pairing_id: int, slot_ref: str) -> None:
        async with self._session_factory() as db:
            pairing = await repo.get_pairing(db, tenant_id, pairing_id)
            if not pairing or pairing.get("completed_at") or pairing.get("assigned_slot_ref") != slot_ref:
                return
            present = await self._present_members(tenant_id, pairing)
            if len(present) < REQUIRED_PRESENT:
                return
            completed, created = await complete_pairing(db, tenant_id, pairing_id, CompletionMethod.PRESENCE, self._clock())
            await db.commit()

        if created:
            for member in copy_templates.pairing_members(completed):
                await deliver_safely(
                    self._gateway.send_direct(tenant_id, member, copy_templates.presence_completion_dm()),
                    "presence completion notice",
                    tenant_id,
                )

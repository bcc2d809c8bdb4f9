"""Outbound calls to the community platform integration service.

The core never talks to the chat platform directly. Everything it needs
(membership, voice-slot occupancy, slot lookup and message delivery) goes
through a PlatformGateway so tests can swap in a recording fake.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

import httpx

from ..config import PLATFORM_API_TOKEN, PLATFORM_BASE_URL, PLATFORM_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotResolution:
    label: str
    ref: str | None = None
    ambiguous: bool = False

    @property
    def resolved(self) -> bool:
        return self.ref is not None


class PlatformGateway(Protocol):
    async def fetch_member_ids(self, tenant_id: str) -> set[str]: ...

    async def fetch_slot_occupants(self, tenant_id: str, slot_ref: str) -> set[str]: ...

    async def resolve_slot(self, tenant_id: str, label: str) -> SlotResolution: ...

    async def post_announcement(self, tenant_id: str, channel_id: str, content: str) -> None: ...

    async def post_pairings(self, tenant_id: str, channel_id: str, messages: list[str]) -> None: ...

    async def send_direct(self, tenant_id: str, user_id: str, content: str) -> None: ...


def slot_resolution_from_matches(label: str, matches: list[dict[str, Any]]) -> SlotResolution:
    if len(matches) == 1:
        return SlotResolution(label=label, ref=str(matches[0]["id"]))
    if len(matches) > 1:
        return SlotResolution(label=label, ambiguous=True)
    return SlotResolution(label=label)


class HttpPlatformGateway:
    """JSON-over-HTTP client for the platform integration service."""

    def __init__(
        self,
        base_url: str = PLATFORM_BASE_URL,
        token: str = PLATFORM_API_TOKEN,
        timeout: float = PLATFORM_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()

    async def fetch_member_ids(self, tenant_id: str) -> set[str]:
        data = await self._get(f"/tenants/{tenant_id}/members")
        return {str(m["id"]) for m in data.get("members", [])}

    async def fetch_slot_occupants(self, tenant_id: str, slot_ref: str) -> set[str]:
        data = await self._get(f"/tenants/{tenant_id}/slots/{slot_ref}/occupants")
        return {str(u) for u in data.get("user_ids", [])}

    async def resolve_slot(self, tenant_id: str, label: str) -> SlotResolution:
        data = await self._get(f"/tenants/{tenant_id}/slots", params={"name": label})
        return slot_resolution_from_matches(label, list(data.get("slots", [])))

    async def post_announcement(self, tenant_id: str, channel_id: str, content: str) -> None:
        await self._post(f"/tenants/{tenant_id}/channels/{channel_id}/messages", {"content": content})

    async def post_pairings(self, tenant_id: str, channel_id: str, messages: list[str]) -> None:
        for content in messages:
            await self._post(f"/tenants/{tenant_id}/channels/{channel_id}/messages", {"content": content})

    async def send_direct(self, tenant_id: str, user_id: str, content: str) -> None:
        await self._post(f"/tenants/{tenant_id}/users/{user_id}/direct", {"content": content})


async def deliver_safely(delivery: Awaitable[Any], description: str, tenant_id: str) -> bool:
    """Await a notification; failures are logged and reported as False."""
    try:
        await delivery
        return True
    except Exception as exc:
        logger.warning("[%s] %s failed: %s", tenant_id, description, exc)
        return False


async def resolve_slot_safely(gateway: PlatformGateway, tenant_id: str, label: str) -> SlotResolution:
    try:
        resolution = await gateway.resolve_slot(tenant_id, label)
    except Exception as exc:
        logger.warning("[%s] could not resolve slot %r: %s", tenant_id, label, exc)
        return SlotResolution(label=label)
    if resolution.ambiguous:
        logger.warning("[%s] slot name %r is ambiguous; presence completion disabled for it", tenant_id, label)
    elif not resolution.resolved:
        logger.warning("[%s] slot %r not found; presence completion disabled for it", tenant_id, label)
    return resolution

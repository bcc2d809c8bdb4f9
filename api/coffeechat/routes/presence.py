from typing import Any

from fastapi import APIRouter, Depends

from ..deps import get_presence_tracker
from ..schemas import PresenceEvent

router = APIRouter()


@router.post("/presence/events")
async def presence_event(payload: PresenceEvent, tracker=Depends(get_presence_tracker)) -> dict[str, Any]:
    await tracker.handle_presence_event(payload.tenant_id.strip(), payload.user_id.strip())
    return {"status": "accepted"}

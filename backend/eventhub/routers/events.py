from typing import Optional

from fastapi import APIRouter, Body, Depends

from eventhub.auth import get_actor, require_staff
from eventhub.schemas import Actor, CapacitySnapshot, DeleteEventIn, DeleteEventOut
from eventhub.services import registrations as svc

router = APIRouter()


@router.get('/{event_id}/capacity', response_model=CapacitySnapshot)
async def get_capacity(event_id: str, _actor: Actor = Depends(get_actor)):
    return await svc.check_capacity(event_id)


@router.delete('/{event_id}', response_model=DeleteEventOut)
async def delete_event(event_id: str, payload: Optional[DeleteEventIn] = Body(None),
                       actor: Actor = Depends(require_staff)):
    reason = payload.reason if payload else None
    return await svc.delete_event(event_id, actor, reason=reason)

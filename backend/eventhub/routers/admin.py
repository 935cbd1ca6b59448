from fastapi import APIRouter, Depends

from eventhub.auth import require_admin
from eventhub.schemas import Actor, CounterRepair
from eventhub.services import registrations as svc

router = APIRouter()


@router.post('/events/{event_id}/recompute-attendees', response_model=CounterRepair)
async def recompute_attendees(event_id: str, _admin: Actor = Depends(require_admin)):
    """Rebuild attendees_count and reserved_slots for one event from its registrations."""
    return await svc.recompute_attendees_count(event_id)

from fastapi import APIRouter, Depends

from eventhub.auth import require_staff
from eventhub.schemas import Actor, AttendeeOut, CheckInIn, ManualAttendeeIn, RegistrationOut
from eventhub.services import registrations as svc

router = APIRouter()


@router.get('/events/{event_id}/attendees', response_model=list[AttendeeOut])
async def list_attendees(event_id: str, actor: Actor = Depends(require_staff)):
    return await svc.list_event_attendees(event_id, actor)


@router.post('/events/{event_id}/attendees', status_code=201)
async def add_attendee(event_id: str, payload: ManualAttendeeIn, actor: Actor = Depends(require_staff)):
    reg, user = await svc.add_attendee_manually(
        event_id, actor,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        ticket_type=payload.ticket_type,
    )
    return {
        'registration': RegistrationOut.from_doc(reg),
        'user': {'id': str(user['_id']), 'name': user.get('name'), 'email': user.get('email')},
    }


@router.post('/events/{event_id}/attendees/{attendee_id}/check-in', response_model=AttendeeOut)
async def check_in_attendee(event_id: str, attendee_id: str, payload: CheckInIn,
                            actor: Actor = Depends(require_staff)):
    return await svc.update_attendee_check_in(event_id, attendee_id, payload.status, actor)

from typing import Optional

from fastapi import APIRouter, Body, Depends

from eventhub.auth import get_actor, require_admin, require_staff
from eventhub.schemas import (Actor, AttendanceIn, RegisterIn, RegistrationCheckOut,
                              RegistrationOut, StatusUpdateIn)
from eventhub.services import registrations as svc

router = APIRouter()


######### Self-service #########

@router.post('/events/{event_id}', status_code=201, response_model=RegistrationOut)
async def register_for_event(event_id: str, payload: Optional[RegisterIn] = Body(None),
                             actor: Actor = Depends(get_actor)):
    payload = payload or RegisterIn()
    reg = await svc.register_for_event(event_id, actor.id, actor,
                                       ticket_type=payload.ticket_type, notes=payload.notes)
    return RegistrationOut.from_doc(reg)


@router.delete('/events/{event_id}', response_model=RegistrationOut)
async def cancel_registration(event_id: str, actor: Actor = Depends(get_actor)):
    reg = await svc.cancel_registration(event_id, actor.id, actor)
    return RegistrationOut.from_doc(reg)


@router.patch('/events/{event_id}/reactivate', response_model=RegistrationOut)
async def reactivate_registration(event_id: str, actor: Actor = Depends(get_actor)):
    reg = await svc.reactivate_registration(event_id, actor.id, actor)
    return RegistrationOut.from_doc(reg)


@router.get('/check/{event_id}', response_model=RegistrationCheckOut)
async def check_registration(event_id: str, actor: Actor = Depends(get_actor)):
    return await svc.check_registration(event_id, actor.id)


@router.get('', response_model=list[RegistrationOut])
async def list_my_registrations(status: Optional[str] = None, actor: Actor = Depends(get_actor)):
    regs = await svc.list_user_registrations(actor.id, status=status)
    return [RegistrationOut.from_doc(r) for r in regs]


######### Organizer / admin #########

@router.put('/{registration_id}/status', response_model=RegistrationOut)
async def update_registration_status(registration_id: str, payload: StatusUpdateIn,
                                     actor: Actor = Depends(require_staff)):
    reg = await svc.update_registration_status(registration_id, payload.status, actor)
    return RegistrationOut.from_doc(reg)


@router.put('/{registration_id}/attendance', response_model=RegistrationOut)
async def mark_attendance(registration_id: str, payload: AttendanceIn, actor: Actor = Depends(require_staff)):
    reg = await svc.mark_attendance(registration_id, payload.attended, actor)
    return RegistrationOut.from_doc(reg)


@router.post('/{registration_id}/confirm-payment', response_model=RegistrationOut)
async def confirm_payment(registration_id: str, actor: Actor = Depends(require_admin)):
    # payment providers are not wired in; an admin confirms offline payments here
    reg = await svc.confirm_payment(registration_id, actor)
    return RegistrationOut.from_doc(reg)

"""Registration state machine.

Creation, status transitions, the self-service cancellation window and
attendance marking. Every status change is a compare-and-set on the previous
status (``store.transition_registration``); when another writer wins, the
registration is re-read and the guards are evaluated again, so slot and
counter side effects run exactly once per real transition.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Optional

from bson.objectid import ObjectId

from ... import notifications, store
from ...datetime_utils import ensure_utc, now_utc
from ...enums import PaymentStatus, RegistrationStatus
from ...errors import (
    CapacityError,
    DuplicateError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
    WindowClosedError,
)
from ...schemas import Actor, RegistrationCheckOut
from ...settings import get_settings
from . import capacity, counters
from .access import require_event_staff, require_self_or_event_staff

logger = logging.getLogger('registrations')

_MAX_TRANSITION_ATTEMPTS = 5

# plan(current_registration) -> (target status, $set fields, $unset keys), or None for a no-op
Plan = Callable[[dict], Optional[tuple]]


def _status(registration: dict) -> RegistrationStatus:
    return RegistrationStatus.normalize(registration.get('status'))


def actor_ref(actor: Actor):
    return ObjectId(actor.id) if ObjectId.is_valid(actor.id) else actor.id


def ensure_cancellation_window(event: dict, hours: int, now=None) -> None:
    start = ensure_utc(event.get('start_date'))
    if start is None:
        return
    if (now or now_utc()) >= start - timedelta(hours=hours):
        raise WindowClosedError(hours)


async def _apply(registration: dict, event: dict, target: RegistrationStatus, fields: dict, unset) -> Optional[dict]:
    old = _status(registration)
    slot_delta = counters.occupied_delta(old, target)
    if slot_delta > 0:
        await capacity.claim_slot(event)
    update = dict(fields, status=target.value, updated_at=now_utc())
    try:
        updated = await store.transition_registration(registration['_id'], old.value, update, unset)
    except StorageError:
        if slot_delta > 0:
            await capacity.release_slot(event['_id'])
        raise
    if updated is None:
        if slot_delta > 0:
            await capacity.release_slot(event['_id'])
        return None
    if slot_delta < 0:
        await capacity.release_slot(event['_id'])
    await counters.reconcile(event['_id'], counters.confirmed_delta(old, target))
    if slot_delta > 0:
        try:
            await capacity.verify_admission(event['_id'])
        except (CapacityError, InvalidStateError):
            await _undo_admission(registration, target, update, unset, event)
            raise
    return updated


async def _undo_admission(previous: dict, target: RegistrationStatus, update: dict, unset, event: dict) -> None:
    """Put `previous` back after its move into an occupying status was refused."""
    touched = list(update) + list(unset or ())
    restore = {key: previous[key] for key in touched if key in previous}
    drop = [key for key in touched if key not in previous]
    reverted = await store.transition_registration(previous['_id'], target.value, restore, drop)
    if reverted is None:
        # another writer already moved it on and accounted from `target`
        logger.warning('registration.undo_conflict registration_id=%s', previous['_id'])
        return
    await capacity.release_slot(event['_id'])
    await counters.reconcile(event['_id'], counters.confirmed_delta(target, _status(previous)))
    logger.info('registration.admission_undone registration_id=%s status=%s', previous['_id'], previous.get('status'))


async def _run_transition(registration: dict, event: dict, plan: Plan):
    """Returns (registration, previous status); previous status is None when nothing changed."""
    current = registration
    for _attempt in range(_MAX_TRANSITION_ATTEMPTS):
        step = plan(current)
        if step is None:
            return current, None
        target, fields, unset = step
        old = _status(current)
        updated = await _apply(current, event, target, fields, unset)
        if updated is not None:
            return updated, old
        logger.info('registration.transition_conflict registration_id=%s expected=%s', current['_id'], old.value)
        current = await store.get_registration(current['_id'])
    raise InvalidStateError("Registration is being modified concurrently, please retry")


async def insert_with_slot(event: dict, doc: dict) -> dict:
    """Claim a slot, insert the registration and count it; the slot is handed back if the insert fails.

    The insert is re-checked against the stored event afterwards. A registration
    that lands on an event closed meanwhile, or past capacity after a counter
    rebuild, is discarded again and the refusal raised.
    """
    await capacity.claim_slot(event)
    try:
        registration = await store.insert_registration(doc)
    except (DuplicateError, StorageError):
        await capacity.release_slot(event['_id'])
        raise
    delta = counters.confirmed_delta(None, _status(registration))
    await counters.reconcile(event['_id'], delta)
    try:
        await capacity.verify_admission(event['_id'])
    except (CapacityError, InvalidStateError):
        await store.discard_registration(registration['_id'])
        await capacity.release_slot(event['_id'])
        await counters.reconcile(event['_id'], -delta)
        logger.info('registration.discarded event_id=%s registration_id=%s', event['_id'], registration['_id'])
        raise
    return registration


async def register_for_event(event_id, user_id, actor: Actor, ticket_type: Optional[str] = None,
                             notes: Optional[str] = None) -> dict:
    event = await store.get_event(event_id)
    require_self_or_event_staff(actor, user_id, event)
    user = await store.get_user(user_id)
    capacity.ensure_registrable(event)
    if await store.find_registration(event['_id'], user['_id']):
        raise DuplicateError()

    paid = bool(event.get('is_paid'))
    status = RegistrationStatus.pending if paid else RegistrationStatus.confirmed
    now = now_utc()
    doc = {
        'event_id': event['_id'],
        'user_id': user['_id'],
        'status': status.value,
        'payment_status': (PaymentStatus.pending if paid else PaymentStatus.not_applicable).value,
        'attendance_status': False,
        'registration_date': now,
        'ticket_type': ticket_type or 'general',
        'ticket_price': float(event.get('price') or 0) if paid else 0.0,
        'notes': notes,
        'is_manual_entry': False,
        'created_at': now,
        'updated_at': now,
    }
    registration = await insert_with_slot(event, doc)
    logger.info('registration.created event_id=%s registration_id=%s status=%s',
                event['_id'], registration['_id'], status.value)
    notifications.registration_created(registration, event)
    return registration


async def confirm_payment(registration_id, actor: Optional[Actor] = None) -> dict:
    """pending -> confirmed once payment completed. Already confirmed+paid is a no-op."""
    registration = await store.get_registration(registration_id)
    event = await store.get_event(registration['event_id'])
    if actor is not None:
        require_event_staff(actor, event)
    if not event.get('is_paid'):
        raise InvalidStateError("Payment confirmation only applies to paid events")

    def plan(current):
        status = _status(current)
        if status is RegistrationStatus.confirmed and current.get('payment_status') == PaymentStatus.completed.value:
            return None
        if status is not RegistrationStatus.pending:
            raise InvalidStateError(f"Cannot confirm payment for a {status.value} registration")
        return RegistrationStatus.confirmed, {
            'payment_status': PaymentStatus.completed.value,
            'payment_confirmed_at': now_utc(),
        }, ()

    updated, old = await _run_transition(registration, event, plan)
    if old is not None:
        logger.info('registration.payment_confirmed registration_id=%s event_id=%s', updated['_id'], event['_id'])
        notifications.payment_confirmed(updated, event)
    return updated


async def _cancel(registration: dict, event: dict, actor: Actor, self_service: bool) -> dict:
    window = get_settings().cancellation_window_hours

    def plan(current):
        if _status(current) is RegistrationStatus.cancelled:
            return None
        if self_service:
            ensure_cancellation_window(event, window)
        return RegistrationStatus.cancelled, {
            'cancelled_at': now_utc(),
            'cancelled_by': actor_ref(actor),
            'attendance_status': False,
        }, ('attendance_date',)

    updated, old = await _run_transition(registration, event, plan)
    if old is None:
        logger.info('registration.cancel_noop registration_id=%s', updated['_id'])
        return updated
    logger.info('registration.cancelled registration_id=%s event_id=%s previous=%s self_service=%s',
                updated['_id'], event['_id'], old.value, self_service)
    notifications.registration_cancelled(updated, event, by_self=self_service)
    return updated


async def cancel_registration(event_id, user_id, actor: Actor) -> dict:
    """Cancel the (event, user) registration. Idempotent on an already-cancelled registration."""
    event = await store.get_event(event_id)
    self_service = require_self_or_event_staff(actor, user_id, event)
    registration = await store.find_registration(event['_id'], store.to_object_id(user_id, 'user'))
    if registration is None:
        raise NotFoundError('registration')
    return await _cancel(registration, event, actor, self_service)


async def cancel_registration_by_id(registration_id, actor: Actor) -> dict:
    registration = await store.get_registration(registration_id)
    event = await store.get_event(registration['event_id'])
    require_event_staff(actor, event)
    return await _cancel(registration, event, actor, self_service=False)


async def set_attendance(registration: dict, event: dict, attended: bool) -> dict:
    def plan(current):
        if _status(current) is not RegistrationStatus.confirmed:
            raise InvalidStateError("Attendance can only be marked for confirmed registrations")
        if bool(current.get('attendance_status')) == attended:
            return None
        if attended:
            return RegistrationStatus.confirmed, {'attendance_status': True, 'attendance_date': now_utc()}, ()
        return RegistrationStatus.confirmed, {'attendance_status': False}, ('attendance_date',)

    updated, old = await _run_transition(registration, event, plan)
    if old is not None:
        logger.info('registration.attendance registration_id=%s attended=%s', updated['_id'], attended)
    return updated


async def mark_attendance(registration_id, attended: bool, actor: Actor) -> dict:
    registration = await store.get_registration(registration_id)
    event = await store.get_event(registration['event_id'])
    require_event_staff(actor, event)
    return await set_attendance(registration, event, attended)


async def update_registration_status(registration_id, new_status, actor: Actor) -> dict:
    """Organizer/admin override: move a registration to any status."""
    if not actor.is_staff:
        raise UnauthorizedError("Only organizers and admins can change registration status")
    try:
        target = RegistrationStatus.normalize(new_status)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    registration = await store.get_registration(registration_id)
    event = await store.get_event(registration['event_id'])
    require_event_staff(actor, event)

    def plan(current):
        old = _status(current)
        if old is target:
            return None
        fields = {'status_updated_by': actor_ref(actor)}
        unset = []
        if target is not RegistrationStatus.confirmed:
            fields['attendance_status'] = False
            unset.append('attendance_date')
        if target is RegistrationStatus.cancelled:
            fields['cancelled_at'] = now_utc()
            fields['cancelled_by'] = actor_ref(actor)
        elif old is RegistrationStatus.cancelled:
            unset.extend(['cancelled_at', 'cancelled_by'])
        return target, fields, tuple(unset)

    updated, old = await _run_transition(registration, event, plan)
    if old is not None:
        logger.info('registration.status_changed registration_id=%s from=%s to=%s by=%s',
                    updated['_id'], old.value, target.value, actor.id)
        notifications.registration_status_changed(updated, event, old.value)
    return updated


async def reactivate_registration(event_id, user_id, actor: Actor) -> dict:
    """Bring a cancelled registration back: pending on paid events (unless already paid), else confirmed."""
    event = await store.get_event(event_id)
    require_self_or_event_staff(actor, user_id, event)
    capacity.ensure_registrable(event)
    registration = await store.find_registration(event['_id'], store.to_object_id(user_id, 'user'))
    if registration is None:
        raise NotFoundError('registration')
    paid = bool(event.get('is_paid'))

    def plan(current):
        if _status(current) is not RegistrationStatus.cancelled:
            raise InvalidStateError("Registration is already active")
        if not paid:
            target, payment = RegistrationStatus.confirmed, PaymentStatus.not_applicable
        elif current.get('payment_status') == PaymentStatus.completed.value:
            target, payment = RegistrationStatus.confirmed, PaymentStatus.completed
        else:
            target, payment = RegistrationStatus.pending, PaymentStatus.pending
        return target, {
            'payment_status': payment.value,
            'registration_date': now_utc(),
            'attendance_status': False,
        }, ('cancelled_at', 'cancelled_by', 'attendance_date')

    updated, _old = await _run_transition(registration, event, plan)
    logger.info('registration.reactivated registration_id=%s status=%s', updated['_id'], updated['status'])
    notifications.registration_created(updated, event)
    return updated


async def check_registration(event_id, user_id) -> RegistrationCheckOut:
    event_oid = store.to_object_id(event_id, 'event')
    registration = await store.find_registration(event_oid, store.to_object_id(user_id, 'user'))
    if registration is None:
        return RegistrationCheckOut(is_registered=False)
    return RegistrationCheckOut(
        is_registered=registration.get('status') != RegistrationStatus.cancelled.value,
        status=registration.get('status'),
        registration_id=str(registration['_id']),
    )


async def list_user_registrations(user_id, status: Optional[str] = None) -> list[dict]:
    """Registrations of a user, newest first, optionally filtered by status."""
    query: dict = {'user_id': store.to_object_id(user_id, 'user')}
    if status:
        try:
            query['status'] = RegistrationStatus.normalize(status).value
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    return await store.list_registrations(query, 'registration_date', -1)

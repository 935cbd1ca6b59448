"""Organizer-facing attendee management: listing, manual additions and check-in."""
from __future__ import annotations

import logging
from typing import Optional

import phonenumbers

from ... import notifications, store
from ...datetime_utils import now_utc
from ...enums import ActorRole, CheckInStatus, PaymentStatus, RegistrationStatus
from ...errors import DuplicateError, NotFoundError, ValidationError
from ...schemas import Actor, AttendeeOut
from . import capacity, lifecycle
from .access import require_event_staff

logger = logging.getLogger('registrations')


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Validate a phone number and return it in E.164 form (None stays None)."""
    if phone is None or not phone.strip():
        return None
    try:
        parsed = phonenumbers.parse(phone, None)
    except phonenumbers.NumberParseException as exc:
        raise ValidationError(f"Invalid phone number: {exc}") from exc
    if not phonenumbers.is_valid_number(parsed):
        raise ValidationError("Invalid phone number.")
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def check_in_status(registration: dict) -> CheckInStatus:
    status = registration.get('status')
    if status == RegistrationStatus.cancelled.value:
        return CheckInStatus.cancelled
    if status == RegistrationStatus.pending.value:
        return CheckInStatus.pending
    if registration.get('attendance_status'):
        return CheckInStatus.checked_in
    return CheckInStatus.not_checked_in


def _attendee_view(registration: dict, user: Optional[dict]) -> AttendeeOut:
    user = user or {}
    return AttendeeOut(
        id=str(registration['_id']),
        name=user.get('name') or 'Anonymous User',
        email=user.get('email') or 'No email provided',
        phone=user.get('phone'),
        ticket_type=registration.get('ticket_type') or 'general',
        check_in_status=check_in_status(registration).value,
        check_in_time=registration.get('attendance_date'),
        registration_date=registration.get('registration_date') or registration.get('created_at'),
    )


async def list_event_attendees(event_id, actor: Actor) -> list[AttendeeOut]:
    event = await store.get_event(event_id)
    require_event_staff(actor, event)
    registrations = await store.list_registrations({'event_id': event['_id']}, 'registration_date', 1)
    users = await store.get_users_by_ids({r['user_id'] for r in registrations})
    return [_attendee_view(r, users.get(r['user_id'])) for r in registrations]


async def add_attendee_manually(event_id, actor: Actor, name: str, email: str,
                                phone: Optional[str] = None, ticket_type: Optional[str] = None):
    """Register a walk-in or offline attendee as confirmed.

    Reuses the account with that email or creates a minimal manual user. The
    capacity ceiling and the one-registration-per-user rule still apply.
    Returns ``(registration, user)``.
    """
    event = await store.get_event(event_id)
    require_event_staff(actor, event)
    phone = normalize_phone(phone)
    capacity.ensure_registrable(event)

    email = email.strip().lower()
    user = await store.find_user_by_email(email)
    if user is None:
        user = await store.insert_user({
            'name': name.strip(),
            'email': email,
            'phone': phone,
            'role': ActorRole.user.value,
            'is_manual': True,
            'created_at': now_utc(),
        })
        logger.info('attendee.user_created user_id=%s event_id=%s', user['_id'], event['_id'])

    if await store.find_registration(event['_id'], user['_id']):
        raise DuplicateError("This user is already registered for this event")

    paid = bool(event.get('is_paid'))
    now = now_utc()
    doc = {
        'event_id': event['_id'],
        'user_id': user['_id'],
        'status': RegistrationStatus.confirmed.value,
        'payment_status': (PaymentStatus.completed if paid else PaymentStatus.not_applicable).value,
        'attendance_status': False,
        'registration_date': now,
        'ticket_type': ticket_type or 'general',
        'ticket_price': float(event.get('price') or 0) if paid else 0.0,
        'is_manual_entry': True,
        'added_by': lifecycle.actor_ref(actor),
        'created_at': now,
        'updated_at': now,
    }
    registration = await lifecycle.insert_with_slot(event, doc)
    logger.info('attendee.added event_id=%s registration_id=%s by=%s', event['_id'], registration['_id'], actor.id)
    notifications.registration_created(registration, event)
    return registration, user


async def update_attendee_check_in(event_id, attendee_id, status: str, actor: Actor) -> AttendeeOut:
    """Apply a check-in action: checked-in, not-checked-in or cancelled."""
    event = await store.get_event(event_id)
    require_event_staff(actor, event)
    try:
        action = CheckInStatus.normalize(status)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if action is CheckInStatus.pending:
        raise ValidationError("check-in status must be one of: checked-in, not-checked-in, cancelled")

    registration = await store.get_registration(attendee_id)
    if registration['event_id'] != event['_id']:
        raise NotFoundError('attendee', attendee_id)

    if action is CheckInStatus.cancelled:
        updated = await lifecycle.cancel_registration_by_id(registration['_id'], actor)
    else:
        updated = await lifecycle.set_attendance(registration, event, action is CheckInStatus.checked_in)
    user = await store.get_users_by_ids({updated['user_id']})
    return _attendee_view(updated, user.get(updated['user_id']))

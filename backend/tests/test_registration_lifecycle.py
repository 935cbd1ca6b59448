"""State machine tests: creation guards, cancellation window, attendance, status overrides."""
import datetime

import pytest
from bson.objectid import ObjectId

from eventhub.errors import (CapacityError, DuplicateError, InvalidStateError, NotFoundError,
                             UnauthorizedError, ValidationError, WindowClosedError)
from eventhub.services import registrations as svc

from conftest import actor_for, event_doc


def _hours(n):
    return datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=n)


async def test_free_event_registration_is_confirmed_and_counted(make_event, attendee):
    event = await make_event()
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    assert reg['status'] == 'confirmed'
    assert reg['payment_status'] == 'not_applicable'
    assert reg['ticket_type'] == 'general'
    stored = await event_doc(event['_id'])
    assert stored['attendees_count'] == 1
    assert stored['reserved_slots'] == 1


async def test_paid_event_registration_waits_for_payment(make_event, attendee):
    event = await make_event(is_paid=True, price=25.0)
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    assert reg['status'] == 'pending'
    assert reg['payment_status'] == 'pending'
    assert reg['ticket_price'] == 25.0
    stored = await event_doc(event['_id'])
    assert stored['attendees_count'] == 0
    assert stored['reserved_slots'] == 1


@pytest.mark.parametrize('overrides, message', [
    ({'is_published': False}, 'unpublished'),
    ({'start_date': _hours(-1)}, 'already occurred'),
    ({'status': 'suspended'}, 'suspended'),
    ({'status': 'cancelled'}, 'cancelled'),
])
async def test_register_rejects_closed_events(make_event, attendee, overrides, message):
    event = await make_event(**overrides)
    with pytest.raises(InvalidStateError) as exc_info:
        await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    assert message in exc_info.value.message.lower()


async def test_register_unknown_event_or_user(make_event, attendee):
    with pytest.raises(NotFoundError):
        await svc.register_for_event(ObjectId(), attendee['_id'], actor_for(attendee))
    event = await make_event()
    ghost = ObjectId()
    with pytest.raises(NotFoundError):
        await svc.register_for_event(event['_id'], ghost, actor_for({'_id': ghost, 'role': 'user'}))


async def test_register_malformed_id_is_validation_error(attendee):
    with pytest.raises(ValidationError):
        await svc.register_for_event('not-an-id', attendee['_id'], actor_for(attendee))


async def test_user_cannot_register_someone_else(make_event, make_user, attendee):
    event = await make_event()
    other = await make_user()
    with pytest.raises(UnauthorizedError):
        await svc.register_for_event(event['_id'], other['_id'], actor_for(attendee))


async def test_second_registration_is_duplicate_even_when_cancelled(make_event, attendee):
    event = await make_event()
    actor = actor_for(attendee)
    await svc.register_for_event(event['_id'], attendee['_id'], actor)
    with pytest.raises(DuplicateError):
        await svc.register_for_event(event['_id'], attendee['_id'], actor)
    await svc.cancel_registration(event['_id'], attendee['_id'], actor)
    with pytest.raises(DuplicateError):
        await svc.register_for_event(event['_id'], attendee['_id'], actor)
    assert (await event_doc(event['_id']))['reserved_slots'] == 0


async def test_self_cancel_inside_window_is_rejected(make_event, attendee):
    event = await make_event(start_date=_hours(23))
    actor = actor_for(attendee)
    await svc.register_for_event(event['_id'], attendee['_id'], actor)
    with pytest.raises(WindowClosedError):
        await svc.cancel_registration(event['_id'], attendee['_id'], actor)
    assert (await event_doc(event['_id']))['attendees_count'] == 1


async def test_self_cancel_outside_window_succeeds(make_event, attendee):
    event = await make_event(start_date=_hours(25))
    actor = actor_for(attendee)
    await svc.register_for_event(event['_id'], attendee['_id'], actor)
    reg = await svc.cancel_registration(event['_id'], attendee['_id'], actor)
    assert reg['status'] == 'cancelled'
    assert reg['cancelled_by'] == attendee['_id']
    assert (await event_doc(event['_id']))['attendees_count'] == 0


async def test_organizer_cancel_ignores_window(make_event, attendee, organizer):
    event = await make_event(start_date=_hours(2))
    await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    reg = await svc.cancel_registration(event['_id'], attendee['_id'], actor_for(organizer))
    assert reg['status'] == 'cancelled'


async def test_double_cancel_decrements_once(make_event, attendee):
    event = await make_event()
    actor = actor_for(attendee)
    await svc.register_for_event(event['_id'], attendee['_id'], actor)
    first = await svc.cancel_registration(event['_id'], attendee['_id'], actor)
    second = await svc.cancel_registration(event['_id'], attendee['_id'], actor)
    assert first['status'] == second['status'] == 'cancelled'
    stored = await event_doc(event['_id'])
    assert stored['attendees_count'] == 0
    assert stored['reserved_slots'] == 0


async def test_cancel_without_registration_is_not_found(make_event, attendee):
    event = await make_event()
    with pytest.raises(NotFoundError):
        await svc.cancel_registration(event['_id'], attendee['_id'], actor_for(attendee))


async def test_mark_attendance_requires_confirmed(make_event, make_user, organizer):
    paid = await make_event(is_paid=True, price=10)
    payer = await make_user()
    pending = await svc.register_for_event(paid['_id'], payer['_id'], actor_for(payer))
    with pytest.raises(InvalidStateError):
        await svc.mark_attendance(pending['_id'], True, actor_for(organizer))

    free = await make_event(start_date=_hours(72))
    leaver = await make_user()
    reg = await svc.register_for_event(free['_id'], leaver['_id'], actor_for(leaver))
    await svc.cancel_registration(free['_id'], leaver['_id'], actor_for(leaver))
    with pytest.raises(InvalidStateError):
        await svc.mark_attendance(reg['_id'], True, actor_for(organizer))


async def test_mark_attendance_toggles_without_counter_change(make_event, attendee, organizer):
    event = await make_event()
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    staff = actor_for(organizer)

    attended = await svc.mark_attendance(reg['_id'], True, staff)
    assert attended['attendance_status'] is True
    assert attended['attendance_date'] is not None
    assert (await event_doc(event['_id']))['attendees_count'] == 1

    undone = await svc.mark_attendance(reg['_id'], False, staff)
    assert undone['attendance_status'] is False
    assert 'attendance_date' not in undone
    assert (await event_doc(event['_id']))['attendees_count'] == 1


async def test_mark_attendance_by_attendee_is_unauthorized(make_event, attendee):
    event = await make_event()
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    with pytest.raises(UnauthorizedError):
        await svc.mark_attendance(reg['_id'], True, actor_for(attendee))


async def test_confirm_payment_moves_pending_to_confirmed(make_event, attendee, admin):
    event = await make_event(is_paid=True, price=15, capacity=0)
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    confirmed = await svc.confirm_payment(reg['_id'], actor_for(admin))
    assert confirmed['status'] == 'confirmed'
    assert confirmed['payment_status'] == 'completed'
    assert (await event_doc(event['_id']))['attendees_count'] == 1

    # repeating the confirmation is a no-op
    again = await svc.confirm_payment(reg['_id'], actor_for(admin))
    assert again['status'] == 'confirmed'
    assert (await event_doc(event['_id']))['attendees_count'] == 1


async def test_confirm_payment_rejects_free_and_cancelled(make_event, make_user, admin):
    free = await make_event()
    user = await make_user()
    reg = await svc.register_for_event(free['_id'], user['_id'], actor_for(user))
    with pytest.raises(InvalidStateError):
        await svc.confirm_payment(reg['_id'], actor_for(admin))

    paid = await make_event(is_paid=True, price=5)
    payer = await make_user()
    pending = await svc.register_for_event(paid['_id'], payer['_id'], actor_for(payer))
    await svc.cancel_registration(paid['_id'], payer['_id'], actor_for(payer))
    with pytest.raises(InvalidStateError):
        await svc.confirm_payment(pending['_id'], actor_for(admin))


async def test_status_update_requires_staff_and_valid_value(make_event, attendee, organizer):
    event = await make_event()
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    with pytest.raises(UnauthorizedError):
        await svc.update_registration_status(reg['_id'], 'cancelled', actor_for(attendee))
    with pytest.raises(ValidationError):
        await svc.update_registration_status(reg['_id'], 'attended', actor_for(organizer))


async def test_status_update_by_foreign_organizer_is_unauthorized(make_event, make_user, attendee):
    event = await make_event()
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    stranger = await make_user('organizer')
    with pytest.raises(UnauthorizedError):
        await svc.update_registration_status(reg['_id'], 'cancelled', actor_for(stranger))


async def test_status_update_reconciles_counter_and_clears_attendance(make_event, attendee, admin):
    event = await make_event()
    reg = await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    await svc.mark_attendance(reg['_id'], True, actor_for(admin))

    moved = await svc.update_registration_status(reg['_id'], 'PENDING', actor_for(admin))
    assert moved['status'] == 'pending'
    assert moved['attendance_status'] is False
    stored = await event_doc(event['_id'])
    assert stored['attendees_count'] == 0
    assert stored['reserved_slots'] == 1

    back = await svc.update_registration_status(reg['_id'], 'confirmed', actor_for(admin))
    assert back['status'] == 'confirmed'
    assert (await event_doc(event['_id']))['attendees_count'] == 1


async def test_status_update_out_of_cancelled_needs_a_free_slot(make_event, make_user, organizer):
    event = await make_event(capacity=1)
    first = await make_user()
    second = await make_user()
    staff = actor_for(organizer)
    reg = await svc.register_for_event(event['_id'], first['_id'], actor_for(first))
    await svc.update_registration_status(reg['_id'], 'cancelled', staff)
    await svc.register_for_event(event['_id'], second['_id'], actor_for(second))

    with pytest.raises(CapacityError):
        await svc.update_registration_status(reg['_id'], 'confirmed', staff)
    stored = await event_doc(event['_id'])
    assert stored['attendees_count'] == 1
    assert stored['reserved_slots'] == 1


async def test_refused_registrant_gets_the_freed_seat_on_retry(make_event, make_user):
    event = await make_event(capacity=1)
    first, second = await make_user(), await make_user()

    reg = await svc.register_for_event(event['_id'], first['_id'], actor_for(first))
    assert reg['status'] == 'confirmed'
    assert (await event_doc(event['_id']))['attendees_count'] == 1

    with pytest.raises(CapacityError):
        await svc.register_for_event(event['_id'], second['_id'], actor_for(second))

    await svc.cancel_registration(event['_id'], first['_id'], actor_for(first))
    assert (await event_doc(event['_id']))['attendees_count'] == 0

    retry = await svc.register_for_event(event['_id'], second['_id'], actor_for(second))
    assert retry['status'] == 'confirmed'
    stored = await event_doc(event['_id'])
    assert stored['attendees_count'] == 1
    assert stored['reserved_slots'] == 1


async def test_reactivate_cancelled_registration(make_event, attendee):
    event = await make_event()
    actor = actor_for(attendee)
    await svc.register_for_event(event['_id'], attendee['_id'], actor)
    await svc.cancel_registration(event['_id'], attendee['_id'], actor)

    revived = await svc.reactivate_registration(event['_id'], attendee['_id'], actor)
    assert revived['status'] == 'confirmed'
    assert 'cancelled_at' not in revived
    assert (await event_doc(event['_id']))['attendees_count'] == 1

    with pytest.raises(InvalidStateError):
        await svc.reactivate_registration(event['_id'], attendee['_id'], actor)


async def test_reactivate_on_paid_event_goes_back_to_pending(make_event, attendee):
    event = await make_event(is_paid=True, price=12)
    actor = actor_for(attendee)
    await svc.register_for_event(event['_id'], attendee['_id'], actor)
    await svc.cancel_registration(event['_id'], attendee['_id'], actor)
    revived = await svc.reactivate_registration(event['_id'], attendee['_id'], actor)
    assert revived['status'] == 'pending'
    assert revived['payment_status'] == 'pending'


async def test_check_and_list_registrations(make_event, attendee):
    actor = actor_for(attendee)
    first = await make_event(title='First')
    second = await make_event(title='Second')
    await svc.register_for_event(first['_id'], attendee['_id'], actor)
    await svc.register_for_event(second['_id'], attendee['_id'], actor)
    await svc.cancel_registration(second['_id'], attendee['_id'], actor)

    check = await svc.check_registration(first['_id'], attendee['_id'])
    assert check.is_registered is True
    assert check.status == 'confirmed'
    cancelled = await svc.check_registration(second['_id'], attendee['_id'])
    assert cancelled.is_registered is False
    assert cancelled.status == 'cancelled'

    regs = await svc.list_user_registrations(attendee['_id'])
    assert len(regs) == 2
    only_cancelled = await svc.list_user_registrations(attendee['_id'], status='cancelled')
    assert [r['event_id'] for r in only_cancelled] == [second['_id']]
    with pytest.raises(ValidationError):
        await svc.list_user_registrations(attendee['_id'], status='archived')

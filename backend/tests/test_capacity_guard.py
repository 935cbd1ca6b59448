import datetime

import pytest
from bson.objectid import ObjectId
from pymongo.errors import AutoReconnect

from eventhub import store
from eventhub.errors import CapacityError, InvalidStateError, NotFoundError, StorageError
from eventhub.services import registrations as svc
from eventhub.services.registrations import capacity

from conftest import actor_for, event_doc


async def test_snapshot_counts_pending_and_confirmed(make_event, make_user):
    event = await make_event(capacity=3, is_paid=True, price=5)
    users = [await make_user() for _ in range(3)]
    for u in users:
        await svc.register_for_event(event['_id'], u['_id'], actor_for(u))
    await svc.cancel_registration(event['_id'], users[0]['_id'], actor_for(users[0]))

    snap = await svc.check_capacity(event['_id'])
    assert snap.capacity == 3
    assert snap.occupied == 2
    assert snap.allowed is True


async def test_unlimited_capacity_is_always_allowed(make_event, make_user):
    event = await make_event(capacity=0)
    for _ in range(4):
        u = await make_user()
        await svc.register_for_event(event['_id'], u['_id'], actor_for(u))
    snap = await svc.check_capacity(event['_id'])
    assert snap.allowed is True
    assert snap.occupied == 4
    assert (await event_doc(event['_id']))['reserved_slots'] == 4


async def test_check_capacity_guards_event_state(make_event):
    with pytest.raises(NotFoundError):
        await svc.check_capacity(ObjectId())
    hidden = await make_event(is_published=False)
    with pytest.raises(InvalidStateError):
        await svc.check_capacity(hidden['_id'])
    past = await make_event(start_date=datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=1))
    with pytest.raises(InvalidStateError):
        await svc.check_capacity(past['_id'])


async def test_claim_seeds_counter_from_existing_registrations(make_event, attendee, fresh_db):
    event = await make_event(capacity=2)
    # a registration written before slot tracking existed
    await fresh_db.registrations.insert_one({
        'event_id': event['_id'], 'user_id': attendee['_id'], 'status': 'confirmed',
        'payment_status': 'not_applicable',
    })
    await capacity.claim_slot(event)
    assert (await event_doc(event['_id']))['reserved_slots'] == 2
    with pytest.raises(CapacityError):
        await capacity.claim_slot(await event_doc(event['_id']))


async def test_release_never_goes_below_zero(make_event):
    event = await make_event(reserved_slots=0)
    await capacity.release_slot(event['_id'])
    assert (await event_doc(event['_id']))['reserved_slots'] == 0


async def test_storage_failure_on_insert_releases_slot(make_event, attendee, fresh_db, monkeypatch):
    event = await make_event(capacity=1)

    async def flaky_insert(doc):
        raise AutoReconnect('connection reset')

    monkeypatch.setattr(fresh_db.registrations, 'insert_one', flaky_insert)
    with pytest.raises(StorageError):
        await svc.register_for_event(event['_id'], attendee['_id'], actor_for(attendee))
    stored = await event_doc(event['_id'])
    assert stored['reserved_slots'] == 0
    assert stored['attendees_count'] == 0


@pytest.mark.parametrize('limit', [0, 3])
async def test_claim_is_refused_once_the_event_is_closed(make_event, limit):
    event = await make_event(capacity=limit)
    await store.set_event_fields(event['_id'], {'status': 'cancelled'})
    with pytest.raises(InvalidStateError):
        await capacity.claim_slot(event)
    assert (await event_doc(event['_id']))['reserved_slots'] == 0


async def test_claim_against_removed_event_is_refused(make_event, fresh_db):
    event = await make_event(capacity=0, reserved_slots=0)
    await fresh_db.events.delete_one({'_id': event['_id']})
    with pytest.raises(InvalidStateError):
        await capacity.claim_slot(event)

"""Capacity guard.

Slots are tracked in ``events.reserved_slots`` (pending + confirmed
registrations). A slot is claimed with a single conditional ``$inc`` that only
matches while ``reserved_slots < capacity``, so two concurrent claims can never
both take the last seat. Capacity 0 means unlimited. Only active events hand out
slots, and ``verify_admission`` re-checks a committed admission against the
stored event so a counter rebuilt under an in-flight claim cannot overbook.
"""
from __future__ import annotations

import logging

from bson.objectid import ObjectId

from ... import db as db_mod
from ... import store
from ...datetime_utils import ensure_utc, now_utc
from ...enums import EventStatus, RegistrationStatus
from ...errors import CapacityError, InvalidStateError, NotFoundError
from ...schemas import CapacitySnapshot

logger = logging.getLogger('capacity')

OCCUPYING_STATUSES = [s.value for s in RegistrationStatus if s.occupies_slot]


def event_capacity(event: dict) -> int:
    try:
        return max(int(event.get('capacity') or 0), 0)
    except (TypeError, ValueError):
        return 0


def ensure_registrable(event: dict, now=None) -> None:
    """Raise InvalidStateError unless the event currently accepts registrations."""
    if not event.get('is_published'):
        raise InvalidStateError("Cannot register for an unpublished event")
    status = event.get('status') or EventStatus.active.value
    if status != EventStatus.active.value:
        raise InvalidStateError(f"Cannot register for a {status} event")
    start = ensure_utc(event.get('start_date'))
    if start is not None and start <= (now or now_utc()):
        raise InvalidStateError("Event already occurred")


async def occupied_slots(event_id: ObjectId) -> int:
    return await store.count_registrations(event_id, OCCUPYING_STATUSES)


async def check_capacity(event_id) -> CapacitySnapshot:
    """Report whether one more registration would fit (advisory; claims go through claim_slot)."""
    event = await store.get_event(event_id)
    ensure_registrable(event)
    capacity = event_capacity(event)
    occupied = await occupied_slots(event['_id'])
    allowed = capacity == 0 or occupied < capacity
    return CapacitySnapshot(event_id=str(event['_id']), capacity=capacity, occupied=occupied, allowed=allowed)


async def _seed_reserved_slots(event: dict) -> None:
    # events created before slot tracking have no counter yet
    if event.get('reserved_slots') is not None:
        return
    occupied = await occupied_slots(event['_id'])
    with store.storage_guard('slot seed'):
        await db_mod.db.events.update_one(
            {'_id': event['_id'], 'reserved_slots': {'$exists': False}},
            {'$set': {'reserved_slots': occupied}},
        )


def _admitting_filter(event_id: ObjectId) -> dict:
    # events without a status field predate the lifecycle and count as active
    return {'_id': event_id, 'status': {'$in': [EventStatus.active.value, None]}}


async def _refusal(event_id: ObjectId, capacity: int):
    try:
        current = await store.get_event(event_id)
    except NotFoundError:
        return InvalidStateError("Event no longer exists")
    status = current.get('status') or EventStatus.active.value
    if status != EventStatus.active.value:
        return InvalidStateError(f"Cannot register for a {status} event")
    logger.info('capacity.full event_id=%s capacity=%s', event_id, capacity)
    return CapacityError(capacity)


async def claim_slot(event: dict) -> None:
    """Atomically reserve one slot for `event` or raise CapacityError.

    Only active events hand out slots; a claim against an event that was
    cancelled or removed meanwhile raises InvalidStateError.
    """
    await _seed_reserved_slots(event)
    capacity = event_capacity(event)
    query = _admitting_filter(event['_id'])
    if capacity > 0:
        query['$expr'] = {'$lt': [{'$ifNull': ['$reserved_slots', 0]}, '$capacity']}
    with store.storage_guard('slot claim'):
        res = await db_mod.db.events.update_one(query, {'$inc': {'reserved_slots': 1}})
    if res.modified_count == 0:
        raise await _refusal(event['_id'], capacity)


async def verify_admission(event_id: ObjectId) -> None:
    """Re-check a registration that was just committed into an occupying status.

    The stored event must still be active and the occupying registrations,
    the new one included, must fit its capacity. Raises InvalidStateError or
    CapacityError otherwise; the caller undoes its write.
    """
    try:
        current = await store.get_event(event_id)
    except NotFoundError:
        raise InvalidStateError("Event no longer exists") from None
    status = current.get('status') or EventStatus.active.value
    if status != EventStatus.active.value:
        raise InvalidStateError(f"Cannot register for a {status} event")
    capacity = event_capacity(current)
    if capacity == 0:
        return
    occupied = await occupied_slots(event_id)
    if occupied > capacity:
        logger.warning('capacity.overbooked event_id=%s occupied=%d capacity=%d', event_id, occupied, capacity)
        raise CapacityError(capacity)


async def release_slot(event_id: ObjectId) -> None:
    """Give back one slot; never drives the counter below zero."""
    with store.storage_guard('slot release'):
        res = await db_mod.db.events.update_one(
            {'_id': event_id, 'reserved_slots': {'$gt': 0}},
            {'$inc': {'reserved_slots': -1}},
        )
    if res.modified_count == 0:
        # also the case once the event document is gone
        logger.warning('capacity.release_clamped event_id=%s', event_id)

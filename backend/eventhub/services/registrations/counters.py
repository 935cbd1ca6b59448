"""Attendee counter reconciliation.

``events.attendees_count`` mirrors the number of confirmed registrations and
is only ever moved with ``$inc`` here. Decrements are filtered on the current
value so a stale counter clamps at zero instead of going negative; the
recompute helpers rebuild both event counters from the registrations.
"""
from __future__ import annotations

import logging
from typing import Optional

from bson.objectid import ObjectId

from ... import db as db_mod
from ... import store
from ...enums import RegistrationStatus
from ...schemas import CounterRepair
from .capacity import OCCUPYING_STATUSES

logger = logging.getLogger('counters')


def confirmed_delta(old: Optional[RegistrationStatus], new: Optional[RegistrationStatus]) -> int:
    """+1 when a registration enters confirmed, -1 when it leaves, 0 otherwise."""
    was = bool(old and old.counts_as_attendee)
    now = bool(new and new.counts_as_attendee)
    return int(now) - int(was)


def occupied_delta(old: Optional[RegistrationStatus], new: Optional[RegistrationStatus]) -> int:
    was = bool(old and old.occupies_slot)
    now = bool(new and new.occupies_slot)
    return int(now) - int(was)


async def reconcile(event_id: ObjectId, delta: int) -> None:
    if delta == 0:
        return
    with store.storage_guard('counter update'):
        if delta > 0:
            await db_mod.db.events.update_one({'_id': event_id}, {'$inc': {'attendees_count': delta}})
            return
        res = await db_mod.db.events.update_one(
            {'_id': event_id, 'attendees_count': {'$gte': -delta}},
            {'$inc': {'attendees_count': delta}},
        )
        if res.modified_count == 0:
            await db_mod.db.events.update_one(
                {'_id': event_id, 'attendees_count': {'$gt': 0}},
                {'$set': {'attendees_count': 0}},
            )
            logger.warning('counter.clamped event_id=%s delta=%s', event_id, delta)


async def recompute_attendees_count(event_id) -> CounterRepair:
    """Rebuild attendees_count and reserved_slots from the registrations of one event."""
    repair = await measure_counters(event_id)
    await store.set_event_fields(
        ObjectId(repair.event_id),
        {'attendees_count': repair.attendees_count, 'reserved_slots': repair.reserved_slots},
    )
    if repair.drifted:
        logger.warning(
            'counter.drift_repaired event_id=%s attendees=%s->%s reserved=%s->%s',
            repair.event_id, repair.previous_attendees_count, repair.attendees_count,
            repair.previous_reserved_slots, repair.reserved_slots,
        )
    return repair


async def recompute_all(dry_run: bool = False) -> list[CounterRepair]:
    """Recompute counters for every event. With dry_run, report drift without writing."""
    repairs: list[CounterRepair] = []
    with store.storage_guard('event listing'):
        event_ids = [ev['_id'] async for ev in db_mod.db.events.find({}, {'_id': 1})]
    for event_id in event_ids:
        if dry_run:
            repairs.append(await measure_counters(event_id))
        else:
            repairs.append(await recompute_attendees_count(event_id))
    drifted = sum(1 for r in repairs if r.drifted)
    logger.info('counter.recompute_all events=%d drifted=%d dry_run=%s', len(repairs), drifted, dry_run)
    return repairs


async def measure_counters(event_id) -> CounterRepair:
    event = await store.get_event(event_id)
    return CounterRepair(
        event_id=str(event['_id']),
        attendees_count=await store.count_registrations(event['_id'], [RegistrationStatus.confirmed.value]),
        previous_attendees_count=int(event.get('attendees_count') or 0),
        reserved_slots=await store.count_registrations(event['_id'], OCCUPYING_STATUSES),
        previous_reserved_slots=int(event.get('reserved_slots') or 0),
    )

from __future__ import annotations

import logging
from typing import Optional

from ... import notifications, store
from ...datetime_utils import now_utc
from ...enums import EventStatus, RegistrationStatus
from ...schemas import Actor, DeleteEventOut
from .access import require_event_staff
from .lifecycle import actor_ref

logger = logging.getLogger('registrations')


async def _soft_cancel(event: dict, actor: Actor, reason: Optional[str]) -> None:
    now = now_utc()
    await store.set_event_fields(event['_id'], {
        'status': EventStatus.cancelled.value,
        'cancellation_reason': reason,
        'cancelled_by': actor_ref(actor),
        'cancelled_at': now,
        'updated_at': now,
    })


async def delete_event(event_id, actor: Actor, reason: Optional[str] = None) -> DeleteEventOut:
    """Delete an event, or soft-cancel it when registrations reference it.

    Registrations are never removed: with any registration on record (cancelled
    ones included) the event is marked cancelled and active registrants are
    notified. Only an event nobody ever registered for is removed, together
    with its saved-event bookmarks.
    """
    event = await store.get_event(event_id)
    require_event_staff(actor, event)

    # close the event before counting; a registration inserted after the count
    # finds it cancelled (or gone) on its post-insert check and is discarded
    already_cancelled = event.get('status') == EventStatus.cancelled.value
    if not already_cancelled:
        await _soft_cancel(event, actor, reason)
    total = await store.count_registrations(event['_id'])
    if total == 0:
        removed = await store.delete_event_document(event['_id'])
        logger.info('event.deleted event_id=%s removed_bookmarks=%d by=%s', event['_id'], removed, actor.id)
        return DeleteEventOut(event_id=str(event['_id']), deleted=True, removed_bookmarks=removed)

    holders = await store.list_registrations(
        {'event_id': event['_id'], 'status': {'$ne': RegistrationStatus.cancelled.value}},
    )
    if not already_cancelled:
        notifications.event_cancelled(event, [r['user_id'] for r in holders])
    logger.info('event.soft_cancelled event_id=%s registrations=%d notified=%d by=%s',
                event['_id'], total, len(holders), actor.id)
    return DeleteEventOut(event_id=str(event['_id']), deleted=False, status=EventStatus.cancelled.value)

"""Notification service module.

Builds and dispatches registration-related in-app notifications and emails.
Everything here is fire-and-forget: the public helpers schedule a background
task and return immediately, and a failing delivery is logged, never raised
into the registration operation that triggered it.

Templates kept intentionally simple (plain text).
"""
import asyncio
import logging
from typing import Any, Coroutine, Iterable, Optional

from bson.objectid import ObjectId

from . import db as db_mod
from .datetime_utils import ensure_utc, now_utc
from .enums import NotificationType
from .utils import send_email

logger = logging.getLogger('notifications')

_pending: set[asyncio.Task] = set()

SIGNATURE = "— EventHub Team"


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error('notification.dispatch_failed task=%s error=%r', task.get_name(), exc)


def dispatch(coro: Coroutine[Any, Any, Any], label: str) -> Optional[asyncio.Task]:
    """Schedule `coro` in the background; returns the task (None if no loop is running)."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # no running loop (sync caller); drop the message rather than block
        logger.warning('notification.dropped label=%s reason=no_event_loop', label)
        if asyncio.iscoroutine(coro):
            coro.close()
        return None
    task = loop.create_task(coro, name=label)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain() -> None:
    """Wait for every in-flight dispatch. Used on shutdown and by tests."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


async def notify(user_id, type: NotificationType, title: str, message: str, related_event_id=None) -> ObjectId:
    """Persist an in-app notification for a user."""
    doc = {
        'recipient_id': user_id,
        'type': NotificationType.normalize(type).value,
        'title': title,
        'message': message,
        'related_event_id': related_event_id,
        'is_read': False,
        'created_at': now_utc(),
    }
    res = await db_mod.db.notifications.insert_one(doc)
    return res.inserted_id


def _event_date(event: dict) -> str:
    start = ensure_utc(event.get('start_date'))
    return start.strftime('%Y-%m-%d %H:%M UTC') if start else 'TBD'


async def _deliver(user_id, event: dict, ntype: NotificationType, title: str, message: str,
                   subject: str, lines: Iterable[str], category: str) -> None:
    await notify(user_id, ntype, title, message, event.get('_id'))
    user = await db_mod.db.users.find_one({'_id': user_id})
    if not user or not user.get('email'):
        logger.info('notification.email_skipped reason=no_email user_id=%s', user_id)
        return
    if user.get('email_notifications') is False:
        return
    greeting = f"Hi {user.get('name')}," if user.get('name') else "Hi,"
    body = "\n".join([greeting, "", *lines, "", SIGNATURE]) + "\n"
    await send_email(to=user['email'], subject=subject, body=body, category=category)


# Registrations / Payments

def registration_created(registration: dict, event: dict) -> None:
    title = event.get('title') or 'your event'
    if registration.get('status') == 'pending':
        dispatch(_deliver(
            registration['user_id'], event, NotificationType.registration_confirmation,
            'Registration Received',
            f'Your registration for {title} is awaiting payment',
            f'Registration received: {title}',
            [
                f"We received your registration for '{title}' on {_event_date(event)}.",
                "Your spot is reserved and will be confirmed once payment is completed.",
            ],
            'registration_pending',
        ), f"registration-created-{registration['_id']}")
        return
    dispatch(_deliver(
        registration['user_id'], event, NotificationType.registration_confirmation,
        'Registration Confirmed',
        f'You have successfully registered for {title}',
        f'Registration Confirmation: {title}',
        [
            f"Your registration for '{title}' has been confirmed.",
            f"The event will take place on {_event_date(event)}.",
        ],
        'registration_confirmation',
    ), f"registration-created-{registration['_id']}")


def payment_confirmed(registration: dict, event: dict) -> None:
    title = event.get('title') or 'your event'
    dispatch(_deliver(
        registration['user_id'], event, NotificationType.payment_confirmation,
        'Payment Confirmed',
        f'Your payment for {title} was received and your registration is confirmed',
        f'Registration confirmed for {title}',
        [
            f"Thanks for your payment! Your registration for '{title}' on {_event_date(event)} is now confirmed.",
        ],
        'payment_confirmation',
    ), f"payment-confirmed-{registration['_id']}")


def registration_cancelled(registration: dict, event: dict, by_self: bool) -> None:
    title = event.get('title') or 'your event'
    reason = "as requested" if by_self else "by the event organizer"
    dispatch(_deliver(
        registration['user_id'], event, NotificationType.registration_cancelled,
        'Registration Cancelled',
        f'Your registration for {title} was cancelled {reason}',
        f'Cancellation confirmed: {title}',
        [
            f"Your registration for '{title}' has been cancelled {reason}.",
        ],
        'cancellation',
    ), f"registration-cancelled-{registration['_id']}")


def registration_status_changed(registration: dict, event: dict, old_status: str) -> None:
    title = event.get('title') or 'your event'
    new_status = registration.get('status')
    dispatch(_deliver(
        registration['user_id'], event, NotificationType.registration_update,
        'Registration Updated',
        f'Your registration for {title} changed from {old_status} to {new_status}',
        f'Registration update: {title}',
        [
            f"The status of your registration for '{title}' changed from {old_status} to {new_status}.",
        ],
        'registration_update',
    ), f"registration-status-{registration['_id']}")


def event_cancelled(event: dict, user_ids: Iterable) -> None:
    title = event.get('title') or 'An event'
    for user_id in user_ids:
        dispatch(_deliver(
            user_id, event, NotificationType.event_update,
            'Event Cancelled',
            f'{title} has been cancelled by the organizer',
            f'Event cancelled: {title}',
            [
                f"Unfortunately '{title}' scheduled for {_event_date(event)} has been cancelled.",
                "Your registration history is kept for reference.",
            ],
            'event_cancelled',
        ), f"event-cancelled-{event.get('_id')}-{user_id}")

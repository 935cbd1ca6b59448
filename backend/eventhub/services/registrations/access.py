from __future__ import annotations

from ...enums import ActorRole
from ...errors import UnauthorizedError
from ...schemas import Actor


def is_event_staff(actor: Actor, event: dict) -> bool:
    """Admins manage every event; organizers only the events they own."""
    if actor.role is ActorRole.admin:
        return True
    return actor.role is ActorRole.organizer and str(event.get('organizer_id')) == actor.id


def require_event_staff(actor: Actor, event: dict) -> None:
    if not is_event_staff(actor, event):
        raise UnauthorizedError("Only the event organizer or an admin can do this")


def require_self_or_event_staff(actor: Actor, user_id, event: dict) -> bool:
    """Return True for self-service calls, False when event staff act (staff skip self-service rules)."""
    if is_event_staff(actor, event):
        return False
    if actor.id != str(user_id):
        raise UnauthorizedError("You can only manage your own registrations")
    return True

"""Registration lifecycle core.

Public entry points, grouped by concern:

- ``capacity``   - slot accounting (check_capacity, claim_slot, release_slot)
- ``counters``   - attendees_count reconciliation and recompute
- ``lifecycle``  - the registration state machine
- ``attendees``  - organizer listing, manual additions, check-in
- ``events``     - event deletion / soft cancellation
"""
from .attendees import add_attendee_manually, list_event_attendees, update_attendee_check_in
from .capacity import check_capacity, claim_slot, release_slot
from .counters import recompute_all, recompute_attendees_count, reconcile
from .events import delete_event
from .lifecycle import (
    cancel_registration,
    cancel_registration_by_id,
    check_registration,
    confirm_payment,
    list_user_registrations,
    mark_attendance,
    reactivate_registration,
    register_for_event,
    update_registration_status,
)

__all__ = [
    "add_attendee_manually",
    "cancel_registration",
    "cancel_registration_by_id",
    "check_capacity",
    "check_registration",
    "claim_slot",
    "confirm_payment",
    "delete_event",
    "list_event_attendees",
    "list_user_registrations",
    "mark_attendance",
    "reactivate_registration",
    "recompute_all",
    "recompute_attendees_count",
    "reconcile",
    "register_for_event",
    "release_slot",
    "update_registration_status",
]

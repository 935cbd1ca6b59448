from enum import Enum


class _NormalizingEnum(str, Enum):
    """String enum accepting any casing / surrounding whitespace on input."""

    @classmethod
    def normalize(cls, value):
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError(f"{cls.label()} is required")
        normalized = str(value).strip().lower()
        try:
            return cls(normalized)
        except ValueError as exc:  # noqa: BLE001
            allowed = ', '.join(member.value for member in cls)
            raise ValueError(f"{cls.label()} must be one of: {allowed}") from exc

    @classmethod
    def label(cls) -> str:
        return cls.__name__


class RegistrationStatus(_NormalizingEnum):
    pending = 'pending'
    confirmed = 'confirmed'
    cancelled = 'cancelled'

    @classmethod
    def label(cls) -> str:
        return 'status'

    @property
    def occupies_slot(self) -> bool:
        """Pending and confirmed registrations count against capacity."""
        return self in (RegistrationStatus.pending, RegistrationStatus.confirmed)

    @property
    def counts_as_attendee(self) -> bool:
        return self is RegistrationStatus.confirmed


class PaymentStatus(_NormalizingEnum):
    not_applicable = 'not_applicable'
    pending = 'pending'
    completed = 'completed'
    refunded = 'refunded'

    @classmethod
    def label(cls) -> str:
        return 'payment_status'


class EventStatus(_NormalizingEnum):
    active = 'active'
    suspended = 'suspended'
    cancelled = 'cancelled'
    completed = 'completed'

    @classmethod
    def label(cls) -> str:
        return 'event status'


class ActorRole(_NormalizingEnum):
    user = 'user'
    organizer = 'organizer'
    admin = 'admin'

    @classmethod
    def label(cls) -> str:
        return 'role'


class CheckInStatus(_NormalizingEnum):
    checked_in = 'checked-in'
    not_checked_in = 'not-checked-in'
    cancelled = 'cancelled'
    # read-only view value for registrations still awaiting payment
    pending = 'pending'

    @classmethod
    def label(cls) -> str:
        return 'check-in status'


class NotificationType(_NormalizingEnum):
    registration_confirmation = 'registration_confirmation'
    registration_cancelled = 'registration_cancelled'
    registration_update = 'registration_update'
    payment_confirmation = 'payment_confirmation'
    event_update = 'event_update'
    system = 'system'


def normalized_value(enum_cls, value, default=None):
    """Return the normalized string value for an enum, falling back to default when invalid."""
    if value is None or value == '':
        return default
    try:
        return enum_cls.normalize(value).value
    except ValueError:
        return default

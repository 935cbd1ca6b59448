"""Domain error codes for the registration core.

Every failure a core operation can surface carries a stable ``ErrorCode``;
the HTTP layer maps codes to status codes in one place (see ``main.py``).
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Machine-readable error kinds."""

    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    CAPACITY = "capacity"
    INVALID_STATE = "invalid_state"
    WINDOW_CLOSED = "window_closed"
    VALIDATION = "validation_error"
    UNAUTHORIZED = "unauthorized"
    STORAGE = "storage_error"


@dataclass(eq=False)
class RegistrationError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    @property
    def kind(self) -> str:
        return self.code.value


class NotFoundError(RegistrationError):
    """Raised when an event, registration or user does not exist."""

    def __init__(self, entity: str, entity_id=None) -> None:
        super().__init__(code=ErrorCode.NOT_FOUND, message=f"{entity.capitalize()} not found")
        self.entity = entity
        self.entity_id = entity_id


class DuplicateError(RegistrationError):
    """Raised when the user already holds a registration for the event."""

    def __init__(self, message: str = "Already registered for this event") -> None:
        super().__init__(code=ErrorCode.DUPLICATE, message=message)


class CapacityError(RegistrationError):
    """Raised when the event has no free slot left."""

    def __init__(self, capacity: int | None = None) -> None:
        super().__init__(code=ErrorCode.CAPACITY, message="Event has reached maximum capacity")
        self.capacity = capacity


class InvalidStateError(RegistrationError):
    """Raised when the event or registration is in the wrong state for the operation."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVALID_STATE, message=message)


class WindowClosedError(RegistrationError):
    """Raised when a self-service cancellation comes too close to the event start."""

    def __init__(self, window_hours: int) -> None:
        super().__init__(
            code=ErrorCode.WINDOW_CLOSED,
            message=f"Registrations can only be cancelled up to {window_hours} hours before the event starts",
        )
        self.window_hours = window_hours


class ValidationError(RegistrationError):
    """Raised for malformed identifiers and enum values."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.VALIDATION, message=message)


class UnauthorizedError(RegistrationError):
    """Raised when the actor lacks the role or ownership for the operation."""

    def __init__(self, message: str = "Not allowed to perform this action") -> None:
        super().__init__(code=ErrorCode.UNAUTHORIZED, message=message)


class StorageError(RegistrationError):
    """Raised when the entity store fails (connection loss, timeouts). Never retried here."""

    def __init__(self, operation: str) -> None:
        super().__init__(code=ErrorCode.STORAGE, message=f"Storage failure during {operation}")
        self.operation = operation

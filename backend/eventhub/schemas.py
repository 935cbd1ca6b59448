from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .enums import ActorRole


class Actor(BaseModel):
    """Pre-validated caller identity handed to every core operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole

    @field_validator('role', mode='before')
    @classmethod
    def normalize_role(cls, value):
        return ActorRole.normalize(value)

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.admin

    @property
    def is_staff(self) -> bool:
        return self.role in (ActorRole.organizer, ActorRole.admin)


class CapacitySnapshot(BaseModel):
    event_id: str
    capacity: int
    occupied: int
    allowed: bool


class CounterRepair(BaseModel):
    event_id: str
    attendees_count: int
    previous_attendees_count: int
    reserved_slots: int
    previous_reserved_slots: int

    @property
    def drifted(self) -> bool:
        return (self.attendees_count != self.previous_attendees_count
                or self.reserved_slots != self.previous_reserved_slots)


class RegistrationOut(BaseModel):
    id: str
    event_id: str
    user_id: str
    status: str
    payment_status: str
    attendance_status: bool = False
    attendance_date: Optional[datetime] = None
    registration_date: Optional[datetime] = None
    ticket_type: str = 'general'
    ticket_price: float = 0
    notes: Optional[str] = None
    is_manual_entry: bool = False

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'RegistrationOut':
        return cls(
            id=str(doc['_id']),
            event_id=str(doc.get('event_id')),
            user_id=str(doc.get('user_id')),
            status=doc.get('status'),
            payment_status=doc.get('payment_status'),
            attendance_status=bool(doc.get('attendance_status')),
            attendance_date=doc.get('attendance_date'),
            registration_date=doc.get('registration_date'),
            ticket_type=doc.get('ticket_type') or 'general',
            ticket_price=float(doc.get('ticket_price') or 0),
            notes=doc.get('notes'),
            is_manual_entry=bool(doc.get('is_manual_entry')),
        )


class RegistrationCheckOut(BaseModel):
    is_registered: bool
    status: Optional[str] = None
    registration_id: Optional[str] = None


class AttendeeOut(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    ticket_type: str
    check_in_status: str
    check_in_time: Optional[datetime] = None
    registration_date: Optional[datetime] = None


class RegisterIn(BaseModel):
    ticket_type: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)


class StatusUpdateIn(BaseModel):
    # validated by the core so an unknown value surfaces as a validation_error kind
    status: str


class AttendanceIn(BaseModel):
    attended: bool


class CheckInIn(BaseModel):
    status: str


class ManualAttendeeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = None
    ticket_type: Optional[str] = Field(None, max_length=50)

    @field_validator('email', mode='after')
    @classmethod
    def lower_email(cls, value):
        return str(value).strip().lower()


class DeleteEventIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DeleteEventOut(BaseModel):
    event_id: str
    deleted: bool
    status: Optional[str] = None
    removed_bookmarks: int = 0

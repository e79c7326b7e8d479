"""Canonical appointment types shared by the engine, the stores and the API."""

import datetime as dt
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

DEFAULT_DURATION_MINUTES = 60

# Wall-clock time with minute granularity, rendered as HH:MM on the wire.
ClockTime = Annotated[
    dt.time,
    PlainSerializer(lambda value: value.strftime("%H:%M"), return_type=str, when_used="json"),
]


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Appointment(CamelModel):
    """A single dated booking for a therapist, optionally in a room.

    ``id`` and ``version`` are assigned by the store on insert; ``version``
    grows on every update and backs optimistic concurrency.
    """

    id: Optional[str] = None
    version: Optional[int] = None
    patient_id: Optional[str] = None
    patient_name: str
    date: dt.date
    time: ClockTime
    duration_minutes: int = Field(default=DEFAULT_DURATION_MINUTES, gt=0)
    therapist_id: str
    room_id: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    is_first_session: bool = False
    repeat_weekly: bool = False
    repeat_until: Optional[dt.date] = None
    notes: Optional[str] = None

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _default_duration(cls, value: Optional[int]) -> int:
        return DEFAULT_DURATION_MINUTES if value is None else value

    @property
    def is_active(self) -> bool:
        """Cancelled appointments never count towards capacity."""

        return self.status != AppointmentStatus.CANCELLED


class AppointmentCreate(CamelModel):
    """Inbound booking request.

    Required fields are checked by the scheduling service so a missing
    patient, therapist, date or time is reported as a business validation
    error rather than a schema error.
    """

    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[ClockTime] = None
    duration_minutes: Optional[int] = None
    therapist_id: Optional[str] = None
    room_id: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    is_first_session: bool = False
    repeat_weekly: bool = False
    repeat_until: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class AppointmentUpdate(CamelModel):
    """Partial update; only fields explicitly sent are applied."""

    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[ClockTime] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    therapist_id: Optional[str] = None
    room_id: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    is_first_session: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class AppointmentFilter(BaseModel):
    """Range query understood by every appointment store."""

    therapist_id: Optional[str] = None
    room_id: Optional[str] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    patient_name: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    include_cancelled: bool = False
    limit: Optional[int] = Field(default=None, gt=0)

    def matches(self, appointment: Appointment) -> bool:
        """Return True when ``appointment`` satisfies every set criterion."""

        if self.status is not None:
            if appointment.status != self.status:
                return False
        elif not self.include_cancelled and not appointment.is_active:
            return False
        if self.therapist_id is not None and appointment.therapist_id != self.therapist_id:
            return False
        if self.room_id is not None and appointment.room_id != self.room_id:
            return False
        if self.date_from is not None and appointment.date < self.date_from:
            return False
        if self.date_to is not None and appointment.date > self.date_to:
            return False
        if self.patient_name:
            if self.patient_name.casefold() not in appointment.patient_name.casefold():
                return False
        return True


class BookingResult(CamelModel):
    created: Appointment
    warnings: List[str] = Field(default_factory=list)


class UpdateResult(CamelModel):
    appointment: Appointment
    warnings: List[str] = Field(default_factory=list)


class RecurringResult(CamelModel):
    """Partial-success report of a weekly booking."""

    created: List[Appointment] = Field(default_factory=list)
    skipped: List[dt.date] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @computed_field(alias="createdCount")
    @property
    def created_count(self) -> int:
        return len(self.created)


class RecurringPreview(CamelModel):
    conflicts: List[dt.date] = Field(default_factory=list)
    total_weeks: int = 0


class WeekCopyRequest(CamelModel):
    source_week_start: dt.date
    target_week_start: dt.date
    therapist_id: Optional[str] = None


class WeekCopyResult(CamelModel):
    copied_count: int
    created: List[Appointment] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)


class RepetitionRequest(CamelModel):
    repeat_until: dt.date


class AvailabilityResult(CamelModel):
    date: dt.date
    therapist_id: Optional[str] = None
    duration_minutes: int
    available_slots: List[ClockTime] = Field(default_factory=list)
    occupied_slots: int = 0

    @computed_field(alias="totalAvailable")
    @property
    def total_available(self) -> int:
        return len(self.available_slots)

"""Time-window overlap tests and the therapist/room capacity policies.

Every entry point (single booking, weekly booking, week copy, reschedule and
the availability grid) decides through this module, so the capacity rules
live in exactly one place:

* a therapist may hold up to ``therapist_capacity`` (two by default)
  overlapping bookings; the second one is accepted with a warning so the
  front desk knows a dual session is being created;
* a room may hold ``room_capacity`` (one by default) booking at a time,
  whatever the therapist, and that rule always wins.

Windows are half-open: ``[start, start + duration)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterable, List, Optional, Sequence

from agenda.services.errors import RoomConflictError, SlotFullError
from agenda.services.schemas import DEFAULT_DURATION_MINUTES, Appointment, AppointmentFilter
from agenda.services.store import AppointmentStore

LOGGER = logging.getLogger(__name__)

THERAPIST_CAPACITY = 2
ROOM_CAPACITY = 1

SLOT_FULL = "slot_full"
ROOM_OCCUPIED = "room_conflict"


def to_minutes(value: time) -> int:
    """Minutes since midnight."""

    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    minutes %= 24 * 60
    return time(minutes // 60, minutes % 60)


def end_time(start: time, duration_minutes: Optional[int]) -> time:
    return from_minutes(to_minutes(start) + (duration_minutes or DEFAULT_DURATION_MINUTES))


def overlaps(
    start_a: time,
    duration_a: Optional[int],
    start_b: time,
    duration_b: Optional[int],
) -> bool:
    """Return True when two same-day windows intersect.

    A window ending exactly when the other starts does not overlap.
    """

    begin_a = to_minutes(start_a)
    end_a = begin_a + (duration_a or DEFAULT_DURATION_MINUTES)
    begin_b = to_minutes(start_b)
    end_b = begin_b + (duration_b or DEFAULT_DURATION_MINUTES)
    return begin_a < end_b and end_a > begin_b


def _competes_with(proposed: Appointment, existing: Appointment) -> bool:
    if not existing.is_active:
        return False
    if proposed.id is not None and existing.id == proposed.id:
        return False
    if existing.date != proposed.date:
        return False
    return overlaps(
        proposed.time,
        proposed.duration_minutes,
        existing.time,
        existing.duration_minutes,
    )


def overlapping(
    proposed: Appointment,
    existing: Iterable[Appointment],
) -> List[Appointment]:
    """Active bookings on the same day overlapping ``proposed``, any resource."""

    return [item for item in existing if _competes_with(proposed, item)]


def therapist_conflicts(
    proposed: Appointment,
    existing: Iterable[Appointment],
) -> List[Appointment]:
    """Active bookings of the same therapist overlapping ``proposed``."""

    return [
        item
        for item in existing
        if item.therapist_id == proposed.therapist_id and _competes_with(proposed, item)
    ]


def room_conflicts(
    proposed: Appointment,
    existing: Iterable[Appointment],
) -> List[Appointment]:
    """Active bookings of the same room overlapping ``proposed``.

    Appointments without a room never compete for one.
    """

    if not proposed.room_id:
        return []
    return [
        item
        for item in existing
        if item.room_id == proposed.room_id and _competes_with(proposed, item)
    ]


def describe(appointment: Appointment) -> dict:
    """Short, JSON-friendly summary used in error payloads."""

    return {
        "id": appointment.id,
        "patientName": appointment.patient_name,
        "date": appointment.date.isoformat(),
        "time": appointment.time.strftime("%H:%M"),
        "endTime": end_time(appointment.time, appointment.duration_minutes).strftime("%H:%M"),
        "therapistId": appointment.therapist_id,
        "roomId": appointment.room_id,
    }


def lock_keys(appointments: Iterable[Appointment]) -> List[str]:
    """Therapist-day and room-day keys a booking of ``appointments`` competes on."""

    keys = set()
    for item in appointments:
        day = item.date.isoformat()
        keys.add(f"therapist:{item.therapist_id}:{day}")
        if item.room_id:
            keys.add(f"room:{item.room_id}:{day}")
    return sorted(keys)


@dataclass
class ConflictVerdict:
    """Outcome of a capacity check; evaluating never raises."""

    accepted: bool = True
    reason: Optional[str] = None
    message: Optional[str] = None
    conflicts: List[Appointment] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def raise_for_rejection(self) -> None:
        """Turn a rejecting verdict into the matching business error."""

        if self.accepted:
            return
        payload = [describe(item) for item in self.conflicts]
        if self.reason == ROOM_OCCUPIED:
            raise RoomConflictError(self.message or "Room already occupied", payload)
        raise SlotFullError(self.message or "Time slot is full", payload)


def check_therapist_capacity(
    proposed: Appointment,
    existing: Iterable[Appointment],
    capacity: int = THERAPIST_CAPACITY,
) -> ConflictVerdict:
    conflicts = therapist_conflicts(proposed, existing)
    if len(conflicts) >= capacity:
        return ConflictVerdict(
            accepted=False,
            reason=SLOT_FULL,
            message=(
                f"{proposed.therapist_id} already has {len(conflicts)} bookings overlapping "
                f"{proposed.date.isoformat()} {proposed.time.strftime('%H:%M')}"
            ),
            conflicts=conflicts,
        )

    warnings = [
        (
            f"Dual session: {item.patient_name} is already booked with "
            f"{item.therapist_id} from {item.time.strftime('%H:%M')} until "
            f"{end_time(item.time, item.duration_minutes).strftime('%H:%M')}"
        )
        for item in conflicts
    ]
    return ConflictVerdict(conflicts=conflicts, warnings=warnings)


def check_room_capacity(
    proposed: Appointment,
    existing: Iterable[Appointment],
    capacity: int = ROOM_CAPACITY,
) -> ConflictVerdict:
    conflicts = room_conflicts(proposed, existing)
    if len(conflicts) >= capacity:
        occupant = conflicts[0]
        return ConflictVerdict(
            accepted=False,
            reason=ROOM_OCCUPIED,
            message=(
                f"Room {proposed.room_id} is occupied by {occupant.patient_name} from "
                f"{occupant.time.strftime('%H:%M')} until "
                f"{end_time(occupant.time, occupant.duration_minutes).strftime('%H:%M')}"
            ),
            conflicts=conflicts,
        )
    return ConflictVerdict(conflicts=conflicts)


def evaluate(
    proposed: Appointment,
    existing: Sequence[Appointment],
    *,
    therapist_capacity: int = THERAPIST_CAPACITY,
    room_capacity: int = ROOM_CAPACITY,
) -> ConflictVerdict:
    """Apply both policies; the room rule is hard even for a dual session."""

    verdict = check_therapist_capacity(proposed, existing, therapist_capacity)
    if not verdict.accepted:
        return verdict

    room_verdict = check_room_capacity(proposed, existing, room_capacity)
    if not room_verdict.accepted:
        return room_verdict

    return verdict


class RoomConflictChecker:
    """Room occupancy check for one proposed booking, reading from a store."""

    def __init__(self, store: AppointmentStore, capacity: int = ROOM_CAPACITY) -> None:
        self.store = store
        self.capacity = capacity

    def occupants(self, room_id: str, day: date) -> List[Appointment]:
        return self.store.list(
            AppointmentFilter(room_id=room_id, date_from=day, date_to=day)
        )

    def check(self, proposed: Appointment) -> ConflictVerdict:
        if not proposed.room_id:
            return ConflictVerdict()

        verdict = check_room_capacity(
            proposed,
            self.occupants(proposed.room_id, proposed.date),
            self.capacity,
        )
        if not verdict.accepted:
            LOGGER.info(
                "Room %s busy on %s at %s",
                proposed.room_id,
                proposed.date,
                proposed.time.strftime("%H:%M"),
            )
        return verdict

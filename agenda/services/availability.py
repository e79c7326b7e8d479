"""Bookable start times on a fixed grid, for the booking form."""

from __future__ import annotations

from datetime import date, time
from typing import List, Optional, Sequence

from agenda.services.conflicts import (
    THERAPIST_CAPACITY,
    check_therapist_capacity,
    from_minutes,
    overlapping,
    to_minutes,
)
from agenda.services.schemas import Appointment

OPENING_TIME = time(6, 30)
CLOSING_TIME = time(21, 0)
SLOT_MINUTES = 30


def available_slots(
    day: date,
    existing: Sequence[Appointment],
    *,
    therapist_id: Optional[str] = None,
    duration_minutes: int = 60,
    opening: time = OPENING_TIME,
    closing: time = CLOSING_TIME,
    slot_minutes: int = SLOT_MINUTES,
    capacity: int = THERAPIST_CAPACITY,
) -> List[time]:
    """Start times between ``opening`` and ``closing`` that would be accepted.

    For a therapist a start is offered while the dual-session capacity still
    has room for a booking of ``duration_minutes``. Without a therapist a
    start is offered only when no booking at all overlaps it.
    """

    slots: List[time] = []
    for start in range(to_minutes(opening), to_minutes(closing), slot_minutes):
        candidate = Appointment(
            patient_name="",
            date=day,
            time=from_minutes(start),
            duration_minutes=duration_minutes,
            therapist_id=therapist_id or "",
        )
        if therapist_id:
            free = check_therapist_capacity(candidate, existing, capacity).accepted
        else:
            free = not overlapping(candidate, existing)
        if free:
            slots.append(candidate.time)
    return slots

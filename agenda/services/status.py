"""Appointment status transitions."""

from typing import Dict, FrozenSet

from agenda.services.errors import InvalidStatusTransitionError
from agenda.services.schemas import AppointmentStatus

TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    # Blocked slots mark therapist unavailability; they can only be released.
    AppointmentStatus.BLOCKED: frozenset({AppointmentStatus.CANCELLED}),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """Raise when ``current`` may not move to ``target``."""

    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            f"Cannot change status from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )

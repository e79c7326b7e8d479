"""Business errors raised by the scheduling service."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional


class SchedulingError(Exception):
    """Base class for expected booking failures.

    ``status_code`` is the HTTP status the API layer answers with and
    ``code`` is the stable identifier clients switch on.
    """

    status_code = 400
    code = "scheduling_error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "detail": self.message}
        payload.update(self.extra)
        return payload


class ValidationError(SchedulingError):
    code = "validation_error"


class InvalidStatusTransitionError(ValidationError):
    code = "invalid_status_transition"


class AppointmentNotFoundError(SchedulingError):
    status_code = 404
    code = "appointment_not_found"

    def __init__(self, appointment_id: str) -> None:
        super().__init__(
            f"Appointment {appointment_id} not found",
            appointment_id=appointment_id,
        )


class SlotFullError(SchedulingError):
    status_code = 409
    code = "slot_full"

    def __init__(self, message: str, conflicts: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message, conflicts=conflicts or [])


class RoomConflictError(SchedulingError):
    status_code = 409
    code = "room_conflict"

    def __init__(self, message: str, conflicts: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message, conflicts=conflicts or [])


class NoOccurrencesScheduledError(SchedulingError):
    status_code = 409
    code = "no_occurrences_scheduled"

    def __init__(self, skipped: List[date]) -> None:
        super().__init__(
            "No occurrence could be scheduled; every date conflicts: "
            + ", ".join(day.isoformat() for day in skipped),
            skipped=[day.isoformat() for day in skipped],
        )


class NothingToCopyError(SchedulingError):
    status_code = 409
    code = "nothing_to_copy"


class ConcurrentModificationError(SchedulingError):
    status_code = 409
    code = "concurrent_modification"

"""Booking entry points: single, weekly, week copy, edits and availability."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from agenda.services.availability import available_slots
from agenda.services.conflicts import (
    ConflictVerdict,
    RoomConflictChecker,
    check_therapist_capacity,
    lock_keys,
)
from agenda.services.errors import (
    AppointmentNotFoundError,
    ConcurrentModificationError,
    NoOccurrencesScheduledError,
    ValidationError,
)
from agenda.services.patients import PatientDirectory
from agenda.services.recurrence import RecurrenceValidator, expand, occurrence_count
from agenda.services.schemas import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentUpdate,
    AvailabilityResult,
    BookingResult,
    RecurringPreview,
    RecurringResult,
    UpdateResult,
    WeekCopyResult,
)
from agenda.services.status import TERMINAL_STATUSES, ensure_transition
from agenda.services.store import AppointmentStore
from agenda.services.week_copy import WeekCopier
from agenda.utils.config import Settings, get_settings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Fields whose change moves the booking to another slot and needs re-checking.
SLOT_FIELDS = frozenset({"date", "time", "duration_minutes", "therapist_id", "room_id"})
REQUIRED_FIELDS = frozenset(
    {"patient_name", "date", "time", "duration_minutes", "therapist_id", "status", "is_first_session"}
)
CREATABLE_STATUSES = frozenset(
    {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.BLOCKED,
    }
)


class SchedulingService:
    """Decides whether bookings may be accepted and writes the ones that may.

    The service never holds appointment state of its own: every decision is
    taken against what ``store`` returns at call time.
    """

    def __init__(
        self,
        store: AppointmentStore,
        patients: Optional[PatientDirectory] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.patients = patients
        self.settings = settings or get_settings()
        self.recurrence = RecurrenceValidator(
            store,
            therapist_capacity=self.settings.therapist_capacity,
            room_capacity=self.settings.room_capacity,
            max_occurrences=self.settings.max_weekly_occurrences,
        )
        self.week_copier = WeekCopier(
            store,
            week_days=self.settings.clinical_week_days,
            therapist_capacity=self.settings.therapist_capacity,
            room_capacity=self.settings.room_capacity,
        )
        self.rooms = RoomConflictChecker(store, self.settings.room_capacity)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def book(self, request: AppointmentCreate) -> Union[BookingResult, RecurringResult]:
        """Route a request to the single or the weekly path."""

        if request.repeat_weekly:
            return self.create_recurring_appointment(request)
        return self.create_appointment(request)

    def create_appointment(self, request: AppointmentCreate) -> BookingResult:
        proposed = self._build(request).model_copy(
            update={"repeat_weekly": False, "repeat_until": None}
        )

        def book_single() -> BookingResult:
            self.store.lock(lock_keys([proposed]))
            verdict = self.check_slot(proposed)
            verdict.raise_for_rejection()

            created = self.store.insert_many([proposed])[0]
            self.store.commit()
            for warning in verdict.warnings:
                LOGGER.info("Booking %s accepted with warning: %s", created.id, warning)
            LOGGER.info(
                "Booked %s with %s on %s at %s",
                created.patient_name,
                created.therapist_id,
                created.date,
                created.time.strftime("%H:%M"),
            )
            return BookingResult(created=created, warnings=verdict.warnings)

        return self._retrying(book_single, "Booking")

    def create_recurring_appointment(self, request: AppointmentCreate) -> RecurringResult:
        template = self._build(request.model_copy(update={"repeat_weekly": True}))

        def book_series() -> RecurringResult:
            self._lock_series(template, template.date, template.repeat_until)
            plan = self.recurrence.plan(template, template.repeat_until)
            if not plan.accepted:
                LOGGER.warning(
                    "Weekly booking for %s with %s rejected on every date",
                    template.patient_name,
                    template.therapist_id,
                )
                raise NoOccurrencesScheduledError(plan.skipped)

            # Accepted occurrences are written even when other weeks were skipped.
            created = self.store.insert_many(plan.accepted)
            self.store.commit()
            LOGGER.info(
                "Weekly booking for %s: %d created, %d skipped",
                template.patient_name,
                len(created),
                len(plan.skipped),
            )
            return RecurringResult(created=created, skipped=plan.skipped, warnings=plan.warnings)

        return self._retrying(book_series, "Weekly booking")

    def preview_recurring_conflicts(self, request: AppointmentCreate) -> RecurringPreview:
        """Classify a weekly request without writing anything."""

        template = self._build(
            request.model_copy(update={"repeat_weekly": True}),
            resolve_patient=False,
        )
        return self.recurrence.preview(template, template.repeat_until)

    def extend_repetitions(self, appointment_id: str, repeat_until: date) -> RecurringResult:
        """Repeat an existing booking weekly from the following week on.

        Dates already holding the same patient at the same time are skipped
        like full slots. An empty outcome is reported, not raised.
        """

        base = self.get_appointment(appointment_id)
        first_date = base.date + timedelta(weeks=1)
        if repeat_until < first_date:
            return RecurringResult()
        self._ensure_within_cap(first_date, repeat_until)

        status = base.status
        if status in TERMINAL_STATUSES:
            status = AppointmentStatus.PENDING
        template = base.model_copy(update={"is_first_session": False, "status": status})

        def extend() -> RecurringResult:
            self._lock_series(template, first_date, repeat_until)
            plan = self.recurrence.plan(
                template,
                repeat_until,
                first_date=first_date,
                skip_duplicates=True,
            )
            created = self.store.insert_many(plan.accepted) if plan.accepted else []
            self.store.commit()
            LOGGER.info(
                "Extended %s until %s: %d created, %d skipped",
                appointment_id,
                repeat_until,
                len(created),
                len(plan.skipped),
            )
            return RecurringResult(created=created, skipped=plan.skipped, warnings=plan.warnings)

        return self._retrying(extend, f"Extension of {appointment_id}")

    def copy_week(
        self,
        source_week_start: date,
        target_week_start: date,
        therapist_id: Optional[str] = None,
    ) -> WeekCopyResult:
        def copy() -> WeekCopyResult:
            result = self.week_copier.copy_week(source_week_start, target_week_start, therapist_id)
            self.store.commit()
            return result

        return self._retrying(copy, "Week copy")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.store.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def list_appointments(self, criteria: AppointmentFilter) -> List[Appointment]:
        return self.store.list(criteria)

    def availability(
        self,
        day: date,
        therapist_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> AvailabilityResult:
        duration = duration_minutes or self.settings.default_duration_minutes
        existing = self.store.list(
            AppointmentFilter(therapist_id=therapist_id, date_from=day, date_to=day)
        )
        slots = available_slots(
            day,
            existing,
            therapist_id=therapist_id,
            duration_minutes=duration,
            opening=self.settings.opening_time,
            closing=self.settings.closing_time,
            slot_minutes=self.settings.slot_minutes,
            capacity=self.settings.therapist_capacity,
        )
        return AvailabilityResult(
            date=day,
            therapist_id=therapist_id,
            duration_minutes=duration,
            available_slots=slots,
            occupied_slots=len(existing),
        )

    # ------------------------------------------------------------------
    # Changes
    # ------------------------------------------------------------------
    def update_appointment(self, appointment_id: str, changes: AppointmentUpdate) -> UpdateResult:
        data: Dict[str, Any] = changes.model_dump(exclude_unset=True)
        if not data:
            raise ValidationError("No fields to update")
        cleared = sorted(name for name in REQUIRED_FIELDS if name in data and data[name] is None)
        if cleared:
            raise ValidationError(f"Fields cannot be empty: {', '.join(cleared)}", fields=cleared)
        if "time" in data:
            data["time"] = data["time"].replace(second=0, microsecond=0)

        def apply() -> UpdateResult:
            current = self.get_appointment(appointment_id)
            if "status" in data:
                ensure_transition(current.status, data["status"])

            merged = current.model_copy(update=data)
            verdict = ConflictVerdict()
            if merged.is_active and SLOT_FIELDS & data.keys():
                self.store.lock(lock_keys([merged]))
                verdict = self.check_slot(merged)
                verdict.raise_for_rejection()

            updated = self.store.update(appointment_id, data, expected_version=current.version)
            self.store.commit()
            return UpdateResult(appointment=updated, warnings=verdict.warnings)

        return self._retrying(apply, f"Update of {appointment_id}")

    def cancel_appointment(self, appointment_id: str) -> Appointment:
        """Soft delete: the row stays but stops counting towards capacity."""

        result = self.update_appointment(
            appointment_id,
            AppointmentUpdate(status=AppointmentStatus.CANCELLED),
        )
        return result.appointment

    def delete_appointment(self, appointment_id: str) -> None:
        self.store.delete(appointment_id)
        self.store.commit()
        LOGGER.info("Deleted appointment %s", appointment_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def check_slot(self, proposed: Appointment) -> ConflictVerdict:
        """Therapist capacity first, then the room, which always blocks."""

        same_therapist = self.store.list(
            AppointmentFilter(
                therapist_id=proposed.therapist_id,
                date_from=proposed.date,
                date_to=proposed.date,
            )
        )
        verdict = check_therapist_capacity(
            proposed,
            same_therapist,
            self.settings.therapist_capacity,
        )
        if not verdict.accepted:
            return verdict

        room_verdict = self.rooms.check(proposed)
        if not room_verdict.accepted:
            return room_verdict
        return verdict

    def _build(self, request: AppointmentCreate, resolve_patient: bool = True) -> Appointment:
        patient_name = (request.patient_name or "").strip()
        therapist_id = (request.therapist_id or "").strip()
        missing = [
            label
            for label, value in (
                ("patientName", patient_name),
                ("therapistId", therapist_id),
                ("date", request.date),
                ("time", request.time),
            )
            if not value
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                fields=missing,
            )

        duration = request.duration_minutes
        if duration is None:
            duration = self.settings.default_duration_minutes
        if duration <= 0:
            raise ValidationError("durationMinutes must be greater than zero")

        if request.status not in CREATABLE_STATUSES:
            raise ValidationError(f"Cannot create an appointment as {request.status.value}")

        if request.repeat_weekly:
            if request.repeat_until is None:
                raise ValidationError("repeatUntil is required when repeatWeekly is set")
            if request.repeat_until < request.date:
                raise ValidationError("repeatUntil cannot be before date")
            self._ensure_within_cap(request.date, request.repeat_until)

        patient_id = request.patient_id
        if patient_id is None and resolve_patient and self.patients is not None:
            patient_id = self.patients.resolve(patient_name)

        return Appointment(
            patient_id=patient_id,
            patient_name=patient_name,
            date=request.date,
            time=request.time.replace(second=0, microsecond=0),
            duration_minutes=duration,
            therapist_id=therapist_id,
            room_id=(request.room_id or "").strip() or None,
            status=request.status,
            is_first_session=request.is_first_session,
            repeat_weekly=request.repeat_weekly,
            repeat_until=request.repeat_until if request.repeat_weekly else None,
            notes=request.notes,
        )

    def _retrying(self, action: Callable[[], T], description: str) -> T:
        """Run ``action`` again when it lost a race with a concurrent writer.

        Every attempt starts from a rolled-back transaction and re-reads the
        schedule, so a retry sees what the other writer committed.
        """

        attempt = 1
        while True:
            try:
                return action()
            except ConcurrentModificationError:
                if attempt >= self.settings.update_retry_attempts:
                    LOGGER.error("%s still colliding after %d attempts", description, attempt)
                    raise
                LOGGER.warning(
                    "%s collided with a concurrent write (attempt %d)",
                    description,
                    attempt,
                )
                attempt += 1

    def _lock_series(self, template: Appointment, first_date: date, repeat_until: date) -> None:
        dates = expand(first_date, repeat_until, self.settings.max_weekly_occurrences)
        self.store.lock(lock_keys(template.model_copy(update={"date": day}) for day in dates))

    def _ensure_within_cap(self, first_date: date, repeat_until: date) -> None:
        count = occurrence_count(first_date, repeat_until)
        if count > self.settings.max_weekly_occurrences:
            raise ValidationError(
                f"Weekly repetition would create {count} occurrences; the limit is "
                f"{self.settings.max_weekly_occurrences}",
                occurrences=count,
            )

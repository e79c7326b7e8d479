"""Copy one clinical week of bookings onto another week."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional, Set, Tuple

from agenda.services.conflicts import ROOM_CAPACITY, THERAPIST_CAPACITY, evaluate, lock_keys
from agenda.services.errors import NothingToCopyError
from agenda.services.schemas import (
    Appointment,
    AppointmentFilter,
    AppointmentStatus,
    WeekCopyResult,
)
from agenda.services.store import AppointmentStore

LOGGER = logging.getLogger(__name__)

CLINICAL_WEEK_DAYS = 6


def _duplicate_key(appointment: Appointment) -> Tuple[str, date, str, str]:
    return (
        appointment.patient_name.casefold(),
        appointment.date,
        appointment.time.strftime("%H:%M"),
        appointment.therapist_id,
    )


def _label(appointment: Appointment) -> str:
    return (
        f"{appointment.patient_name} on {appointment.date.isoformat()} "
        f"{appointment.time.strftime('%H:%M')}"
    )


class WeekCopier:
    """Maps each source booking onto the target week by its weekday offset.

    Copies are always ``pending`` and never repeat. Each copy is validated
    against the target week (and against the copies accepted before it),
    so a copied week can never push a therapist slot or a room past its
    capacity; copies already present in the target week are left out.
    """

    def __init__(
        self,
        store: AppointmentStore,
        *,
        week_days: int = CLINICAL_WEEK_DAYS,
        therapist_capacity: int = THERAPIST_CAPACITY,
        room_capacity: int = ROOM_CAPACITY,
    ) -> None:
        self.store = store
        self.week_days = week_days
        self.therapist_capacity = therapist_capacity
        self.room_capacity = room_capacity

    def week_range(self, week_start: date) -> Tuple[date, date]:
        return week_start, week_start + timedelta(days=self.week_days - 1)

    def source_appointments(
        self,
        source_week_start: date,
        therapist_id: Optional[str] = None,
    ) -> List[Appointment]:
        date_from, date_to = self.week_range(source_week_start)
        return self.store.list(
            AppointmentFilter(
                therapist_id=therapist_id,
                date_from=date_from,
                date_to=date_to,
            )
        )

    @staticmethod
    def _copy_of(item: Appointment, source_week_start: date, target_week_start: date) -> Appointment:
        offset = (item.date - source_week_start).days
        return Appointment(
            patient_id=item.patient_id,
            patient_name=item.patient_name,
            date=target_week_start + timedelta(days=offset),
            time=item.time,
            duration_minutes=item.duration_minutes,
            therapist_id=item.therapist_id,
            room_id=item.room_id,
            notes=item.notes,
            status=AppointmentStatus.PENDING,
            is_first_session=False,
            repeat_weekly=False,
        )

    def copy_week(
        self,
        source_week_start: date,
        target_week_start: date,
        therapist_id: Optional[str] = None,
    ) -> WeekCopyResult:
        source = self.source_appointments(source_week_start, therapist_id)
        if not source:
            raise NothingToCopyError(
                f"No appointments found in the week of {source_week_start.isoformat()}",
                source_week_start=source_week_start.isoformat(),
            )

        copies = [self._copy_of(item, source_week_start, target_week_start) for item in source]
        self.store.lock(lock_keys(copies))

        date_from, date_to = self.week_range(target_week_start)
        occupied = self.store.list(AppointmentFilter(date_from=date_from, date_to=date_to))
        existing_keys: Set[Tuple[str, date, str, str]] = {_duplicate_key(item) for item in occupied}

        accepted: List[Appointment] = []
        skipped: List[str] = []
        for copy in copies:
            if _duplicate_key(copy) in existing_keys:
                skipped.append(f"{_label(copy)}: already exists")
                continue

            verdict = evaluate(
                copy,
                occupied + accepted,
                therapist_capacity=self.therapist_capacity,
                room_capacity=self.room_capacity,
            )
            if not verdict.accepted:
                skipped.append(f"{_label(copy)}: {verdict.message}")
                continue

            accepted.append(copy)
            existing_keys.add(_duplicate_key(copy))

        if not accepted:
            raise NothingToCopyError(
                "Every appointment already exists in the target week or conflicts there",
                skipped=skipped,
            )

        created = self.store.insert_many(accepted)
        LOGGER.info(
            "Copied %d appointments from week %s to week %s (%d skipped)",
            len(created),
            source_week_start,
            target_week_start,
            len(skipped),
        )
        return WeekCopyResult(copied_count=len(created), created=created, skipped=skipped)

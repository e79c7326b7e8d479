"""SQLAlchemy-backed appointment store."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from agenda.models.appointment import AppointmentRecord
from agenda.models.patient import Patient  # noqa: F401  (registers the relationship target)
from agenda.models.schedule_lock import ScheduleLock
from agenda.services.errors import AppointmentNotFoundError, ConcurrentModificationError
from agenda.services.schemas import Appointment, AppointmentFilter, AppointmentStatus
from agenda.services.store import new_appointment_id

LOGGER = logging.getLogger(__name__)

_WRITABLE_FIELDS = {
    "patient_id",
    "patient_name",
    "date",
    "time",
    "duration_minutes",
    "therapist_id",
    "room_id",
    "status",
    "is_first_session",
    "repeat_weekly",
    "repeat_until",
    "notes",
}


def _to_domain(record: AppointmentRecord) -> Appointment:
    return Appointment(
        id=record.id,
        version=record.version,
        patient_id=record.patient_id,
        patient_name=record.patient_name,
        date=record.date,
        time=record.time,
        duration_minutes=record.duration_minutes,
        therapist_id=record.therapist_id,
        room_id=record.room_id,
        status=AppointmentStatus(record.status),
        is_first_session=record.is_first_session,
        repeat_weekly=record.repeat_weekly,
        repeat_until=record.repeat_until,
        notes=record.notes,
    )


def _column_value(name: str, value: Any) -> Any:
    if name == "status" and isinstance(value, AppointmentStatus):
        return value.value
    return value


class SqlAlchemyAppointmentStore:
    """Appointment store working inside the caller's session.

    Writes only flush; :meth:`commit` is called by the scheduling service
    once a whole booking action has succeeded, so the validation reads and
    the writes that follow them share one transaction and a failed commit
    is reported to the caller instead of after the response.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, criteria: AppointmentFilter) -> List[Appointment]:
        stmt = select(AppointmentRecord)
        if criteria.status is not None:
            stmt = stmt.where(AppointmentRecord.status == criteria.status.value)
        elif not criteria.include_cancelled:
            stmt = stmt.where(AppointmentRecord.status != AppointmentStatus.CANCELLED.value)
        if criteria.therapist_id is not None:
            stmt = stmt.where(AppointmentRecord.therapist_id == criteria.therapist_id)
        if criteria.room_id is not None:
            stmt = stmt.where(AppointmentRecord.room_id == criteria.room_id)
        if criteria.date_from is not None:
            stmt = stmt.where(AppointmentRecord.date >= criteria.date_from)
        if criteria.date_to is not None:
            stmt = stmt.where(AppointmentRecord.date <= criteria.date_to)
        if criteria.patient_name:
            stmt = stmt.where(AppointmentRecord.patient_name.ilike(f"%{criteria.patient_name}%"))
        stmt = stmt.order_by(AppointmentRecord.date.asc(), AppointmentRecord.time.asc())
        if criteria.limit is not None:
            stmt = stmt.limit(criteria.limit)

        return [_to_domain(record) for record in self.session.scalars(stmt)]

    def get(self, appointment_id: str) -> Optional[Appointment]:
        record = self.session.get(AppointmentRecord, appointment_id)
        return _to_domain(record) if record else None

    def insert_many(self, appointments: Iterable[Appointment]) -> List[Appointment]:
        records = [
            AppointmentRecord(
                id=appointment.id or new_appointment_id(),
                **{
                    name: _column_value(name, getattr(appointment, name))
                    for name in _WRITABLE_FIELDS
                },
            )
            for appointment in appointments
        ]
        self.session.add_all(records)
        self.session.flush()
        LOGGER.debug("Inserted %d appointment rows", len(records))
        return [_to_domain(record) for record in records]

    def update(
        self,
        appointment_id: str,
        changes: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> Appointment:
        record = self.session.get(AppointmentRecord, appointment_id)
        if record is None:
            raise AppointmentNotFoundError(appointment_id)
        if expected_version is not None and record.version != expected_version:
            raise ConcurrentModificationError(
                f"Appointment {appointment_id} was modified concurrently",
                appointment_id=appointment_id,
            )

        for name, value in changes.items():
            if name not in _WRITABLE_FIELDS:
                continue
            setattr(record, name, _column_value(name, value))

        try:
            self.session.flush()
        except StaleDataError as exc:
            self.session.rollback()
            LOGGER.warning("Stale update of appointment %s: %s", appointment_id, exc)
            raise ConcurrentModificationError(
                f"Appointment {appointment_id} was modified concurrently",
                appointment_id=appointment_id,
            ) from exc
        return _to_domain(record)

    def delete(self, appointment_id: str) -> None:
        record = self.session.get(AppointmentRecord, appointment_id)
        if record is None:
            raise AppointmentNotFoundError(appointment_id)
        self.session.delete(record)
        self.session.flush()

    def lock(self, keys: Iterable[str]) -> None:
        """Bump one ``schedule_locks`` row per key, in a stable order.

        The row lock is held until commit or rollback, so a concurrent
        booking of the same therapist-day or room-day waits here and then
        sees the committed result of this one.
        """

        table = ScheduleLock.__table__
        try:
            for key in sorted(set(keys)):
                result = self.session.execute(
                    update(table).where(table.c.key == key).values(counter=table.c.counter + 1)
                )
                if result.rowcount == 0:
                    self.session.execute(insert(table).values(key=key, counter=1))
        except (OperationalError, IntegrityError) as exc:
            self._abort("lock", exc)

    def commit(self) -> None:
        try:
            self.session.commit()
        except (OperationalError, IntegrityError) as exc:
            self._abort("commit", exc)

    def _abort(self, step: str, exc: Exception) -> None:
        self.session.rollback()
        LOGGER.warning("Booking transaction failed at %s: %s", step, exc)
        raise ConcurrentModificationError(
            "The schedule changed while this request was being processed; please retry",
        ) from exc

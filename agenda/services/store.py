"""Appointment store contract and the in-memory implementation."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from agenda.services.errors import AppointmentNotFoundError, ConcurrentModificationError
from agenda.services.schemas import Appointment, AppointmentFilter

LOGGER = logging.getLogger(__name__)


def new_appointment_id() -> str:
    return str(uuid.uuid4())


class AppointmentStore(Protocol):
    """Persistence and range queries consumed by the scheduling engine."""

    def list(self, criteria: AppointmentFilter) -> List[Appointment]:
        """Return matching appointments ordered by date then time."""

    def get(self, appointment_id: str) -> Optional[Appointment]:
        """Return one appointment or None."""

    def insert_many(self, appointments: Iterable[Appointment]) -> List[Appointment]:
        """Persist new rows in one batch, assigning ids and versions."""

    def update(
        self,
        appointment_id: str,
        changes: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> Appointment:
        """Apply ``changes``; refuse when the row moved past ``expected_version``."""

    def delete(self, appointment_id: str) -> None:
        """Remove the row for good."""

    def lock(self, keys: Iterable[str]) -> None:
        """Hold the given slot keys until the current transaction ends."""

    def commit(self) -> None:
        """Make every write of the current action durable."""


class InMemoryAppointmentStore:
    """Dictionary-backed store, handy for tests and embedding.

    Writes apply immediately, so locking and committing are no-ops.
    """

    def __init__(self, appointments: Iterable[Appointment] = ()) -> None:
        self._rows: Dict[str, Appointment] = {}
        if appointments:
            self.insert_many(appointments)

    def __len__(self) -> int:
        return len(self._rows)

    def list(self, criteria: AppointmentFilter) -> List[Appointment]:
        rows = sorted(
            (row for row in self._rows.values() if criteria.matches(row)),
            key=lambda row: (row.date, row.time),
        )
        if criteria.limit is not None:
            rows = rows[: criteria.limit]
        return [row.model_copy() for row in rows]

    def get(self, appointment_id: str) -> Optional[Appointment]:
        row = self._rows.get(appointment_id)
        return row.model_copy() if row else None

    def insert_many(self, appointments: Iterable[Appointment]) -> List[Appointment]:
        created: List[Appointment] = []
        for appointment in appointments:
            row = appointment.model_copy(
                update={"id": appointment.id or new_appointment_id(), "version": 1}
            )
            self._rows[row.id] = row
            created.append(row.model_copy())
        LOGGER.debug("Inserted %d appointments", len(created))
        return created

    def update(
        self,
        appointment_id: str,
        changes: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> Appointment:
        current = self._rows.get(appointment_id)
        if current is None:
            raise AppointmentNotFoundError(appointment_id)
        if expected_version is not None and current.version != expected_version:
            raise ConcurrentModificationError(
                f"Appointment {appointment_id} was modified concurrently",
                appointment_id=appointment_id,
            )

        updated = Appointment.model_validate(
            {
                **current.model_dump(),
                **dict(changes),
                "id": appointment_id,
                "version": (current.version or 0) + 1,
            }
        )
        self._rows[appointment_id] = updated
        return updated.model_copy()

    def delete(self, appointment_id: str) -> None:
        if self._rows.pop(appointment_id, None) is None:
            raise AppointmentNotFoundError(appointment_id)

    def lock(self, keys: Iterable[str]) -> None:
        pass

    def commit(self) -> None:
        pass

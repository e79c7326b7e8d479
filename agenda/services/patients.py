"""Best-effort patient name resolution."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Protocol, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.models.patient import Patient

LOGGER = logging.getLogger(__name__)


class PatientDirectory(Protocol):
    def resolve(self, name: str) -> Optional[str]:
        """Return the id of the patient called ``name``, if there is one."""


class InMemoryPatientDirectory:
    """Name to id mapping, matched case-insensitively."""

    def __init__(self, patients: Iterable[Tuple[str, str]] = ()) -> None:
        self._ids: Dict[str, str] = {}
        for patient_id, name in patients:
            self.add(patient_id, name)

    def add(self, patient_id: str, name: str) -> None:
        self._ids.setdefault(name.strip().casefold(), patient_id)

    def resolve(self, name: str) -> Optional[str]:
        return self._ids.get(name.strip().casefold())


class SqlAlchemyPatientDirectory:
    """Looks names up in the ``patients`` table.

    A lookup failure only costs the link to the patient record, so it is
    logged and reported as "not found". The query runs in a savepoint so a
    failure does not poison the surrounding booking transaction.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def resolve(self, name: str) -> Optional[str]:
        cleaned = name.strip()
        if not cleaned:
            return None

        stmt = (
            select(Patient.id)
            .where(func.lower(Patient.name) == cleaned.lower())
            .order_by(Patient.created_at.asc())
            .limit(1)
        )
        try:
            with self.session.begin_nested():
                patient_id = self.session.scalars(stmt).first()
        except SQLAlchemyError as exc:
            LOGGER.warning("Patient lookup failed for %r: %s", cleaned, exc)
            return None

        if patient_id is None:
            LOGGER.debug("No patient record named %r", cleaned)
        return patient_id

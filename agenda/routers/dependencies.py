"""Request-scoped collaborators for the routers."""

from typing import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from agenda.services.db import get_session
from agenda.services.patients import PatientDirectory, SqlAlchemyPatientDirectory
from agenda.services.scheduler import SchedulingService
from agenda.services.sql_store import SqlAlchemyAppointmentStore
from agenda.services.store import AppointmentStore
from agenda.utils.config import Settings, get_settings


def get_db_session() -> Iterator[Session]:
    """One session, and so one transaction, per request."""

    with get_session() as session:
        yield session


def get_store(session: Session = Depends(get_db_session)) -> AppointmentStore:
    return SqlAlchemyAppointmentStore(session)


def get_patient_directory(session: Session = Depends(get_db_session)) -> PatientDirectory:
    return SqlAlchemyPatientDirectory(session)


def get_scheduler(
    store: AppointmentStore = Depends(get_store),
    patients: PatientDirectory = Depends(get_patient_directory),
    settings: Settings = Depends(get_settings),
) -> SchedulingService:
    return SchedulingService(store, patients, settings)

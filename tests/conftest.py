"""Shared fixtures for the agenda test-suite."""

import os

# Must happen before agenda.services.db builds its engine.
os.environ["DATABASE_URL"] = "sqlite://"

import datetime as dt
from typing import Any, Callable

import pytest

from agenda.services.patients import InMemoryPatientDirectory
from agenda.services.scheduler import SchedulingService
from agenda.services.schemas import Appointment, AppointmentStatus
from agenda.services.store import InMemoryAppointmentStore
from agenda.utils.config import Settings


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://")


@pytest.fixture
def store() -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore()


@pytest.fixture
def patients() -> InMemoryPatientDirectory:
    return InMemoryPatientDirectory([("patient-1", "Maria Silva")])


@pytest.fixture
def service(
    store: InMemoryAppointmentStore,
    patients: InMemoryPatientDirectory,
    settings: Settings,
) -> SchedulingService:
    return SchedulingService(store, patients, settings)


@pytest.fixture
def make_appointment() -> Callable[..., Appointment]:
    """Factory for appointments with sensible defaults."""

    def factory(**overrides: Any) -> Appointment:
        values: dict = {
            "patient_name": "Maria Silva",
            "date": dt.date(2024, 2, 5),
            "time": dt.time(10, 0),
            "duration_minutes": 60,
            "therapist_id": "Ana",
            "status": AppointmentStatus.CONFIRMED,
        }
        values.update(overrides)
        return Appointment(**values)

    return factory

"""Single bookings, edits, status changes and availability."""

import datetime as dt
from typing import Any, Mapping, Optional

import pytest

from agenda.services.errors import (
    AppointmentNotFoundError,
    ConcurrentModificationError,
    InvalidStatusTransitionError,
    RoomConflictError,
    SlotFullError,
    ValidationError,
)
from agenda.services.scheduler import SchedulingService
from agenda.services.schemas import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentUpdate,
    BookingResult,
    RecurringResult,
)
from agenda.services.status import can_transition
from agenda.services.store import InMemoryAppointmentStore


def booking(**overrides) -> AppointmentCreate:
    values = {
        "patient_name": "Maria Silva",
        "therapist_id": "Ana",
        "date": dt.date(2024, 2, 5),
        "time": dt.time(10, 0),
    }
    values.update(overrides)
    return AppointmentCreate(**values)


def test_booking_defaults(service) -> None:
    result = service.create_appointment(booking(time=dt.time(10, 0, 42)))

    created = result.created
    assert created.id is not None
    assert created.version == 1
    assert created.duration_minutes == 60
    assert created.status == AppointmentStatus.CONFIRMED
    assert created.time == dt.time(10, 0)
    assert created.patient_id == "patient-1"
    assert result.warnings == []


def test_unknown_patient_is_booked_without_link(service) -> None:
    created = service.create_appointment(booking(patient_name="Desconhecido")).created

    assert created.patient_id is None


def test_missing_fields_are_listed(service, store) -> None:
    with pytest.raises(ValidationError) as excinfo:
        service.create_appointment(AppointmentCreate(patient_name="  ", date=dt.date(2024, 2, 5)))

    assert excinfo.value.extra["fields"] == ["patientName", "therapistId", "time"]
    assert len(store) == 0


def test_zero_duration_is_rejected(service) -> None:
    with pytest.raises(ValidationError):
        service.create_appointment(booking(duration_minutes=0))


def test_cancelled_or_completed_cannot_be_created(service) -> None:
    with pytest.raises(ValidationError):
        service.create_appointment(booking(status=AppointmentStatus.CANCELLED))


def test_second_booking_warns_third_is_refused(service, store) -> None:
    service.create_appointment(booking(patient_name="João"))
    second = service.create_appointment(booking(time=dt.time(10, 30)))

    assert len(second.warnings) == 1
    assert second.warnings[0].startswith("Dual session: João")

    with pytest.raises(SlotFullError):
        service.create_appointment(booking(patient_name="Clara", time=dt.time(10, 15)))
    assert len(store) == 2


def test_back_to_back_bookings_do_not_overlap(service) -> None:
    service.create_appointment(booking(patient_name="João"))
    service.create_appointment(booking(patient_name="Clara"))

    result = service.create_appointment(booking(time=dt.time(11, 0)))

    assert result.warnings == []


def test_room_conflict_on_single_booking(service) -> None:
    service.create_appointment(booking(therapist_id="Bruno", room_id="Sala 1"))

    with pytest.raises(RoomConflictError) as excinfo:
        service.create_appointment(booking(room_id="Sala 1", time=dt.time(10, 30)))

    payload = excinfo.value.to_payload()
    assert payload["error"] == "room_conflict"
    assert payload["conflicts"][0]["therapistId"] == "Bruno"


def test_book_dispatches_on_repeat_flag(service) -> None:
    single = service.book(booking())
    weekly = service.book(
        booking(
            date=dt.date(2024, 3, 4),
            repeat_weekly=True,
            repeat_until=dt.date(2024, 3, 11),
        )
    )

    assert isinstance(single, BookingResult)
    assert isinstance(weekly, RecurringResult)
    assert weekly.created_count == 2


def test_get_and_delete(service, store) -> None:
    created = service.create_appointment(booking()).created

    assert service.get_appointment(created.id) == created
    service.delete_appointment(created.id)

    with pytest.raises(AppointmentNotFoundError):
        service.get_appointment(created.id)
    with pytest.raises(AppointmentNotFoundError):
        service.delete_appointment(created.id)


def test_list_filters(service) -> None:
    service.create_appointment(booking())
    service.create_appointment(booking(patient_name="João", therapist_id="Bruno"))
    cancelled = service.create_appointment(
        booking(patient_name="Clara", date=dt.date(2024, 2, 6))
    ).created
    service.cancel_appointment(cancelled.id)

    assert len(service.list_appointments(AppointmentFilter())) == 2
    assert len(service.list_appointments(AppointmentFilter(include_cancelled=True))) == 3
    only_bruno = service.list_appointments(AppointmentFilter(therapist_id="Bruno"))
    assert [item.patient_name for item in only_bruno] == ["João"]
    by_name = service.list_appointments(AppointmentFilter(patient_name="silva"))
    assert [item.patient_name for item in by_name] == ["Maria Silva"]
    by_status = service.list_appointments(AppointmentFilter(status=AppointmentStatus.CANCELLED))
    assert [item.id for item in by_status] == [cancelled.id]


def test_reschedule_is_rechecked(service) -> None:
    service.create_appointment(booking(patient_name="João", time=dt.time(14, 0)))
    service.create_appointment(booking(patient_name="Clara", time=dt.time(14, 0)))
    moving = service.create_appointment(booking()).created

    with pytest.raises(SlotFullError):
        service.update_appointment(moving.id, AppointmentUpdate(time=dt.time(14, 30)))

    result = service.update_appointment(moving.id, AppointmentUpdate(time=dt.time(15, 0)))
    assert result.appointment.time == dt.time(15, 0)
    assert result.appointment.version == 2
    assert result.warnings == []


def test_update_with_unchanged_slot_skips_the_check(service, store, make_appointment) -> None:
    store.insert_many(
        [
            make_appointment(patient_name="João"),
            make_appointment(patient_name="Clara"),
            make_appointment(patient_name="Rui"),
        ]
    )
    rui = store.list(AppointmentFilter(patient_name="Rui"))[0]

    result = service.update_appointment(rui.id, AppointmentUpdate(notes="trazer exames"))

    assert result.appointment.notes == "trazer exames"


def test_empty_or_clearing_updates_are_rejected(service) -> None:
    created = service.create_appointment(booking()).created

    with pytest.raises(ValidationError):
        service.update_appointment(created.id, AppointmentUpdate())
    with pytest.raises(ValidationError) as excinfo:
        service.update_appointment(created.id, AppointmentUpdate(therapist_id=None))
    assert excinfo.value.extra["fields"] == ["therapist_id"]


def test_status_lifecycle(service) -> None:
    created = service.create_appointment(booking(status=AppointmentStatus.SCHEDULED)).created

    confirmed = service.update_appointment(
        created.id, AppointmentUpdate(status=AppointmentStatus.CONFIRMED)
    ).appointment
    completed = service.update_appointment(
        confirmed.id, AppointmentUpdate(status=AppointmentStatus.COMPLETED)
    ).appointment

    assert completed.status == AppointmentStatus.COMPLETED
    with pytest.raises(InvalidStatusTransitionError) as excinfo:
        service.cancel_appointment(created.id)
    assert excinfo.value.status_code == 400


def test_transition_table() -> None:
    assert can_transition(AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)
    assert can_transition(AppointmentStatus.BLOCKED, AppointmentStatus.CANCELLED)
    assert not can_transition(AppointmentStatus.BLOCKED, AppointmentStatus.CONFIRMED)
    assert not can_transition(AppointmentStatus.CANCELLED, AppointmentStatus.SCHEDULED)
    assert can_transition(AppointmentStatus.CANCELLED, AppointmentStatus.CANCELLED)


def test_cancelled_booking_frees_its_place(service) -> None:
    first = service.create_appointment(booking(patient_name="João")).created
    service.create_appointment(booking(patient_name="Clara"))
    service.cancel_appointment(first.id)

    result = service.create_appointment(booking())

    assert len(result.warnings) == 1


class FlakyStore(InMemoryAppointmentStore):
    """Fails the first ``failures`` updates as if another writer got there first."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def update(
        self,
        appointment_id: str,
        changes: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> Appointment:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConcurrentModificationError("busy", appointment_id=appointment_id)
        return super().update(appointment_id, changes, expected_version)


def test_update_retries_after_a_concurrent_write(settings) -> None:
    store = FlakyStore(failures=2)
    service = SchedulingService(store, settings=settings)
    created = service.create_appointment(booking()).created

    result = service.update_appointment(created.id, AppointmentUpdate(notes="ok"))

    assert result.appointment.notes == "ok"
    assert store.attempts == 3


def test_update_gives_up_after_the_retry_budget(settings) -> None:
    store = FlakyStore(failures=10)
    service = SchedulingService(store, settings=settings)
    created = service.create_appointment(booking()).created

    with pytest.raises(ConcurrentModificationError):
        service.update_appointment(created.id, AppointmentUpdate(notes="never"))
    assert store.attempts == settings.update_retry_attempts


def test_stale_version_is_refused_by_the_store(store, make_appointment) -> None:
    created = store.insert_many([make_appointment()])[0]
    store.update(created.id, {"notes": "first"}, expected_version=1)

    with pytest.raises(ConcurrentModificationError):
        store.update(created.id, {"notes": "second"}, expected_version=1)


def test_availability_for_a_therapist(service) -> None:
    service.create_appointment(booking(patient_name="João", time=dt.time(7, 0)))
    service.create_appointment(booking(patient_name="Clara", time=dt.time(7, 0)))

    result = service.availability(dt.date(2024, 2, 5), therapist_id="Ana")

    assert dt.time(6, 30) not in result.available_slots
    assert dt.time(7, 30) not in result.available_slots
    assert dt.time(8, 0) in result.available_slots
    assert result.available_slots[-1] == dt.time(20, 30)
    assert result.occupied_slots == 2
    payload = result.model_dump(mode="json", by_alias=True)
    assert payload["totalAvailable"] == len(result.available_slots)
    assert payload["availableSlots"][0] == "08:00"


def test_availability_single_booking_keeps_dual_slot_open(service) -> None:
    service.create_appointment(booking(patient_name="João", time=dt.time(7, 0)))

    result = service.availability(dt.date(2024, 2, 5), therapist_id="Ana")

    assert dt.time(7, 0) in result.available_slots


def test_availability_without_therapist_needs_a_free_clinic(service) -> None:
    service.create_appointment(booking(time=dt.time(7, 0), duration_minutes=30))

    result = service.availability(dt.date(2024, 2, 5), duration_minutes=30)

    assert dt.time(7, 0) not in result.available_slots
    assert dt.time(6, 30) in result.available_slots
    assert dt.time(7, 30) in result.available_slots
    assert result.duration_minutes == 30


def test_blocked_time_counts_like_a_booking(service) -> None:
    service.create_appointment(
        booking(patient_name="Bloqueio", status=AppointmentStatus.BLOCKED)
    )
    service.create_appointment(booking(patient_name="João"))

    with pytest.raises(SlotFullError):
        service.create_appointment(booking())


def test_blocked_room_refuses_other_therapists(service) -> None:
    service.create_appointment(
        booking(
            patient_name="Manutenção",
            therapist_id="Bruno",
            room_id="Sala 2",
            status=AppointmentStatus.BLOCKED,
        )
    )

    with pytest.raises(RoomConflictError):
        service.create_appointment(booking(room_id="Sala 2", time=dt.time(10, 30)))


def test_rescheduled_time_is_kept_to_the_minute(service) -> None:
    created = service.create_appointment(booking()).created

    result = service.update_appointment(
        created.id, AppointmentUpdate.model_validate({"time": "11:15:30"})
    )

    assert result.appointment.time == dt.time(11, 15)
    assert service.get_appointment(created.id).time == dt.time(11, 15)


class RecordingStore(InMemoryAppointmentStore):
    """Remembers the order of lock, insert, update and commit calls."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list = []

    def lock(self, keys) -> None:
        self.calls.append(("lock", list(keys)))

    def insert_many(self, appointments):
        created = super().insert_many(appointments)
        self.calls.append(("insert", len(created)))
        return created

    def update(self, appointment_id, changes, expected_version=None):
        self.calls.append(("update", appointment_id))
        return super().update(appointment_id, changes, expected_version)

    def commit(self) -> None:
        self.calls.append(("commit", None))


def test_writes_lock_their_slot_and_commit_before_returning(settings) -> None:
    store = RecordingStore()
    service = SchedulingService(store, settings=settings)

    created = service.create_appointment(booking(room_id="Sala 1")).created
    service.update_appointment(created.id, AppointmentUpdate(time=dt.time(14, 0)))
    service.update_appointment(created.id, AppointmentUpdate(notes="sem troca de horário"))

    assert store.calls == [
        ("lock", ["room:Sala 1:2024-02-05", "therapist:Ana:2024-02-05"]),
        ("insert", 1),
        ("commit", None),
        ("lock", ["room:Sala 1:2024-02-05", "therapist:Ana:2024-02-05"]),
        ("update", created.id),
        ("commit", None),
        ("update", created.id),
        ("commit", None),
    ]


def test_weekly_booking_locks_every_week(settings) -> None:
    store = RecordingStore()
    service = SchedulingService(store, settings=settings)

    service.create_recurring_appointment(
        booking(repeat_weekly=True, repeat_until=dt.date(2024, 2, 19))
    )

    assert store.calls == [
        (
            "lock",
            [
                "therapist:Ana:2024-02-05",
                "therapist:Ana:2024-02-12",
                "therapist:Ana:2024-02-19",
            ],
        ),
        ("insert", 3),
        ("commit", None),
    ]


def test_lost_race_on_booking_is_retried(settings) -> None:
    class CollidingStore(InMemoryAppointmentStore):
        def __init__(self) -> None:
            super().__init__()
            self.locks = 0

        def lock(self, keys) -> None:
            self.locks += 1
            if self.locks == 1:
                raise ConcurrentModificationError("database is locked")

    store = CollidingStore()
    service = SchedulingService(store, settings=settings)

    result = service.create_appointment(booking())

    assert store.locks == 2
    assert len(store) == 1
    assert result.created.patient_name == "Maria Silva"

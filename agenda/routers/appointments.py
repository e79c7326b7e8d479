"""Appointment booking router."""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query, Response, status

from agenda.routers.dependencies import get_scheduler
from agenda.services.scheduler import SchedulingService
from agenda.services.schemas import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentUpdate,
    BookingResult,
    RecurringPreview,
    RecurringResult,
    RepetitionRequest,
    UpdateResult,
    WeekCopyRequest,
    WeekCopyResult,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=Union[BookingResult, RecurringResult],
)
def create_appointment(
    payload: AppointmentCreate,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> Union[BookingResult, RecurringResult]:
    """Book one appointment, or a weekly series when ``repeatWeekly`` is set."""

    LOGGER.debug(
        "Booking request therapist=%s date=%s time=%s weekly=%s",
        payload.therapist_id,
        payload.date,
        payload.time,
        payload.repeat_weekly,
    )
    return scheduler.book(payload)


@router.post(
    "/recurring",
    status_code=status.HTTP_201_CREATED,
    response_model=RecurringResult,
)
def create_recurring_appointment(
    payload: AppointmentCreate,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> RecurringResult:
    """Book every free week; the response lists the weeks that were skipped."""

    return scheduler.create_recurring_appointment(payload)


@router.post("/recurring/preview", response_model=RecurringPreview)
def preview_recurring_conflicts(
    payload: AppointmentCreate,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> RecurringPreview:
    """Report which weeks would be skipped, without booking anything."""

    return scheduler.preview_recurring_conflicts(payload)


@router.post(
    "/copy-week",
    status_code=status.HTTP_201_CREATED,
    response_model=WeekCopyResult,
)
def copy_week(
    payload: WeekCopyRequest,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> WeekCopyResult:
    return scheduler.copy_week(
        payload.source_week_start,
        payload.target_week_start,
        payload.therapist_id,
    )


@router.get("", response_model=List[Appointment])
def list_appointments(
    date: Optional[dt.date] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    therapist: Optional[str] = None,
    room: Optional[str] = None,
    patient_name: Optional[str] = None,
    status_filter: Optional[AppointmentStatus] = Query(default=None, alias="status"),
    include_cancelled: bool = False,
    limit: int = Query(default=100, gt=0, le=1000),
    scheduler: SchedulingService = Depends(get_scheduler),
) -> List[Appointment]:
    criteria = AppointmentFilter(
        therapist_id=therapist,
        room_id=room,
        date_from=date or start_date,
        date_to=date or end_date,
        patient_name=patient_name,
        status=status_filter,
        include_cancelled=include_cancelled,
        limit=limit,
    )
    return scheduler.list_appointments(criteria)


@router.get("/{appointment_id}", response_model=Appointment)
def get_appointment(
    appointment_id: str,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> Appointment:
    return scheduler.get_appointment(appointment_id)


@router.patch("/{appointment_id}", response_model=UpdateResult)
def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdate,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> UpdateResult:
    """Reschedule, edit or move an appointment through its status lifecycle."""

    return scheduler.update_appointment(appointment_id, payload)


@router.delete("/{appointment_id}", response_model=None)
def delete_appointment(
    appointment_id: str,
    soft: bool = False,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> Union[Appointment, Response]:
    """Cancel (``soft=true``) or remove an appointment."""

    if soft:
        return scheduler.cancel_appointment(appointment_id)
    scheduler.delete_appointment(appointment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{appointment_id}/repetitions",
    status_code=status.HTTP_201_CREATED,
    response_model=RecurringResult,
)
def extend_repetitions(
    appointment_id: str,
    payload: RepetitionRequest,
    scheduler: SchedulingService = Depends(get_scheduler),
) -> RecurringResult:
    """Repeat an existing booking weekly, starting the week after it."""

    return scheduler.extend_repetitions(appointment_id, payload.repeat_until)

"""Free start times for a day."""

from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query

from agenda.routers.dependencies import get_scheduler
from agenda.services.scheduler import SchedulingService
from agenda.services.schemas import AvailabilityResult

router = APIRouter()


@router.get("", response_model=AvailabilityResult)
def get_availability(
    date: dt.date,
    therapist: Optional[str] = None,
    duration: Optional[int] = Query(default=None, gt=0),
    scheduler: SchedulingService = Depends(get_scheduler),
) -> AvailabilityResult:
    """List start times on ``date`` at which a booking would be accepted."""

    return scheduler.availability(date, therapist_id=therapist, duration_minutes=duration)

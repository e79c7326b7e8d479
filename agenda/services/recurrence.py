"""Weekly recurrence: candidate dates and per-occurrence classification."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from agenda.services.conflicts import (
    ROOM_CAPACITY,
    THERAPIST_CAPACITY,
    ConflictVerdict,
    evaluate,
)
from agenda.services.schemas import Appointment, AppointmentFilter, RecurringPreview
from agenda.services.store import AppointmentStore

LOGGER = logging.getLogger(__name__)

MAX_WEEKLY_OCCURRENCES = 104
WEEK = timedelta(weeks=1)


def expand(
    base_date: date,
    repeat_until: date,
    limit: int = MAX_WEEKLY_OCCURRENCES,
) -> List[date]:
    """Return ``base_date`` and every following week up to ``repeat_until``.

    The end date is inclusive. At most ``limit`` dates are produced.
    """

    dates: List[date] = []
    current = base_date
    while current <= repeat_until and len(dates) < limit:
        dates.append(current)
        current += WEEK
    return dates


def occurrence_count(base_date: date, repeat_until: date) -> int:
    """Number of weekly dates in the inclusive range, ignoring any cap."""

    if repeat_until < base_date:
        return 0
    return (repeat_until - base_date).days // 7 + 1


@dataclass
class OccurrenceDecision:
    candidate: Appointment
    verdict: ConflictVerdict
    duplicate: bool = False

    @property
    def accepted(self) -> bool:
        return self.verdict.accepted and not self.duplicate


@dataclass
class RecurrencePlan:
    decisions: List[OccurrenceDecision] = field(default_factory=list)

    @property
    def total_weeks(self) -> int:
        return len(self.decisions)

    @property
    def accepted(self) -> List[Appointment]:
        return [item.candidate for item in self.decisions if item.accepted]

    @property
    def skipped(self) -> List[date]:
        return [item.candidate.date for item in self.decisions if not item.accepted]

    @property
    def warnings(self) -> List[str]:
        return [
            f"{item.candidate.date.isoformat()}: {warning}"
            for item in self.decisions
            if item.accepted
            for warning in item.verdict.warnings
        ]


class RecurrenceValidator:
    """Classifies every weekly occurrence against the current store state.

    Existing bookings are read once for the whole range; nothing is written
    here, which makes :meth:`preview` safe to call repeatedly.
    """

    def __init__(
        self,
        store: AppointmentStore,
        *,
        therapist_capacity: int = THERAPIST_CAPACITY,
        room_capacity: int = ROOM_CAPACITY,
        max_occurrences: int = MAX_WEEKLY_OCCURRENCES,
    ) -> None:
        self.store = store
        self.therapist_capacity = therapist_capacity
        self.room_capacity = room_capacity
        self.max_occurrences = max_occurrences

    def plan(
        self,
        template: Appointment,
        repeat_until: date,
        *,
        first_date: Optional[date] = None,
        skip_duplicates: bool = False,
    ) -> RecurrencePlan:
        """Build and classify one candidate per week.

        ``template`` carries everything but the date. ``first_date`` defaults
        to the template's own date. With ``skip_duplicates`` a candidate
        matching an existing booking of the same patient at the same date and
        time is skipped as well.
        """

        start = first_date or template.date
        dates = expand(start, repeat_until, self.max_occurrences)
        if not dates:
            return RecurrencePlan()

        existing = self._existing_by_date(template, dates[0], dates[-1])
        plan = RecurrencePlan()
        for index, day in enumerate(dates):
            candidate = template.model_copy(
                update={
                    "id": None,
                    "version": None,
                    "date": day,
                    "is_first_session": template.is_first_session and index == 0,
                    "repeat_weekly": False,
                    "repeat_until": None,
                }
            )
            same_day = existing.get(day, [])
            duplicate = skip_duplicates and any(
                item.patient_name == candidate.patient_name and item.time == candidate.time
                for item in same_day
                if item.therapist_id == candidate.therapist_id
            )
            verdict = evaluate(
                candidate,
                same_day,
                therapist_capacity=self.therapist_capacity,
                room_capacity=self.room_capacity,
            )
            if duplicate or not verdict.accepted:
                LOGGER.info(
                    "Skipping occurrence %s for %s: %s",
                    day,
                    candidate.therapist_id,
                    "duplicate" if duplicate else verdict.reason,
                )
            plan.decisions.append(OccurrenceDecision(candidate, verdict, duplicate))
        return plan

    def preview(self, template: Appointment, repeat_until: date) -> RecurringPreview:
        plan = self.plan(template, repeat_until)
        return RecurringPreview(conflicts=plan.skipped, total_weeks=plan.total_weeks)

    def _existing_by_date(
        self,
        template: Appointment,
        date_from: date,
        date_to: date,
    ) -> Dict[date, List[Appointment]]:
        rows: Dict[str, Appointment] = {}
        for item in self.store.list(
            AppointmentFilter(
                therapist_id=template.therapist_id,
                date_from=date_from,
                date_to=date_to,
            )
        ):
            rows[item.id] = item
        if template.room_id:
            for item in self.store.list(
                AppointmentFilter(
                    room_id=template.room_id,
                    date_from=date_from,
                    date_to=date_to,
                )
            ):
                rows[item.id] = item

        by_date: Dict[date, List[Appointment]] = {}
        for item in rows.values():
            by_date.setdefault(item.date, []).append(item)
        return by_date

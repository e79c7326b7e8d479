"""Appointment ORM model."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base

if TYPE_CHECKING:
    from agenda.models.patient import Patient
else:  # pragma: no cover - typing runtime fallback
    Patient = "Patient"  # type: ignore[assignment]


class AppointmentRecord(Base):
    """Persistent row behind :class:`agenda.services.schemas.Appointment`."""

    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_therapist_date", "therapist_id", "date"),
        Index("ix_appointments_room_date", "room_id", "date"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    patient_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True,
    )
    patient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    therapist_id: Mapped[str] = mapped_column(String(120), nullable=False)
    room_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16),
        default="scheduled",
        nullable=False,
    )
    is_first_session: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    repeat_weekly: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    repeat_until: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: dt.datetime.now(dt.timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: dt.datetime.now(dt.timezone.utc),
        onupdate=lambda: dt.datetime.now(dt.timezone.utc),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    patient: Mapped[Optional["Patient"]] = relationship(back_populates="appointments")

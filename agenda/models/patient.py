"""Patient ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base

if TYPE_CHECKING:
    from agenda.models.appointment import AppointmentRecord
else:  # pragma: no cover - typing runtime fallback
    AppointmentRecord = "AppointmentRecord"  # type: ignore[assignment]


class Patient(Base):
    """Patient directory entry; appointments link to it when the name resolves."""

    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    appointments: Mapped[List["AppointmentRecord"]] = relationship(
        back_populates="patient",
    )

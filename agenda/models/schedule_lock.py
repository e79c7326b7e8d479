"""Per therapist-day and room-day lock rows."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from agenda.models.base import Base


class ScheduleLock(Base):
    """Bumped inside every booking transaction before capacity is checked.

    The row update serializes concurrent bookers of the same therapist or
    room on the same day until the first one commits or rolls back.
    """

    __tablename__ = "schedule_locks"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    counter: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

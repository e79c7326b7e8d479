"""Database session management utilities."""

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agenda.models.appointment import AppointmentRecord  # noqa: F401
from agenda.models.base import Base
from agenda.models.patient import Patient  # noqa: F401
from agenda.models.schedule_lock import ScheduleLock  # noqa: F401
from agenda.utils.config import Settings, get_settings

settings = get_settings()


def engine_options(config: Settings) -> Dict[str, Any]:
    """Keyword arguments for :func:`create_engine` derived from settings."""

    options: Dict[str, Any] = {"future": True, "echo": config.database_echo}
    if config.database_isolation_level:
        options["isolation_level"] = config.database_isolation_level
    if config.database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if config.database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database.
            options["poolclass"] = StaticPool
    return options


engine = create_engine(settings.database_url, **engine_options(settings))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db() -> None:
    """Create missing tables."""

    Base.metadata.create_all(bind=engine)


@contextmanager
def get_session() -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

"""Database configuration, session dependency and transaction boundary."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlmodel import Session, SQLModel, create_engine

from quizportal.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=settings.sql_echo, connect_args=connect_args)


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """Commit everything staged inside the block, or roll all of it back.

    Grading, publication and submission workflows are the only callers; the
    services they compose only ``add``/``flush`` and never commit themselves.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("Transaction rolled back", exc_info=True)
        raise

"""Session management for database connections."""

from contextlib import contextmanager
from typing import Iterator
from sqlalchemy.orm import Session, sessionmaker


@contextmanager
def get_db_session(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Context manager для работы с сессией БД.

    Автоматически выполняет commit при успехе, rollback при ошибке.

    Args:
        session_factory: sessionmaker из db.config.get_session_factory

    Yields:
        Session: SQLAlchemy сессия

    Example:
        with get_db_session(factory) as session:
            couple_repo = CoupleRepository(session)
            couple = couple_repo.get_by_id("Couple_...")
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

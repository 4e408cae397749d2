from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from feedback360.core.errors import ConflictingWriteError, PersistenceError
from feedback360.core.settings import get_settings

_engine = None
_session_factory = None


def get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(settings.database_url, pool_pre_ping=True)
    return _engine


def get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            class_=Session,
        )
    return _session_factory


def commit(db: Session) -> None:
    """Commit the unit of work, rolling back and raising ``PersistenceError`` on failure.

    A uniqueness violation is raised as ``ConflictingWriteError`` so callers
    can tell a concurrent insert apart from other storage failures.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictingWriteError(str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(str(exc)) from exc


def flush(db: Session) -> None:
    """Flush pending writes with the same error mapping as ``commit``."""
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictingWriteError(str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(str(exc)) from exc

"""FastAPI dependency injection: database sessions and service factories."""
from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from feedback360.core.security import CredentialService, get_credential_service
from feedback360.core.settings import get_settings
from feedback360.db.session import get_session_factory
from feedback360.notification.dispatcher import NotificationDispatcher
from feedback360.services import FeedbackService


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_credentials() -> CredentialService:
    return get_credential_service()


def get_dispatcher(request: Request) -> NotificationDispatcher | None:
    """Return the application's notification dispatcher, if notifications are enabled."""
    return getattr(request.app.state, "dispatcher", None)


def get_feedback_service(
    db: Session = Depends(get_db),
    credentials: CredentialService = Depends(get_credentials),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
) -> FeedbackService:
    """Return a FeedbackService bound to the current DB session."""
    return FeedbackService(
        db,
        credentials,
        dispatcher=dispatcher,
        import_conflict_retries=get_settings().import_conflict_retries,
    )

"""FastAPI application factory.

Assembles CORS, the notification worker, the reminder sweep and all API
routers.  ``feedback360/main.py`` re-exports the app object.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feedback360.api.routes.health import router as health_router
from feedback360.api.routes.relationships import router as relationships_router
from feedback360.api.routes.surveys import router as surveys_router
from feedback360.core.logging import setup_logging
from feedback360.core.security import get_credential_service
from feedback360.core.settings import get_settings
from feedback360.notification.dispatcher import NotificationDispatcher
from feedback360.notification.email_sender import EmailSender
from feedback360.notification.reminders import run_reminder_sweep

logger = logging.getLogger(__name__)


def build_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    sender = EmailSender(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        sender_address=settings.smtp_sender,
        template_dir=settings.template_dir,
    )
    return NotificationDispatcher(
        sender,
        get_credential_service(),
        frontend_url=settings.frontend_url,
        queue_size=settings.notification_queue_size,
    )


async def _sweep_reminders(dispatcher: NotificationDispatcher) -> None:
    """Periodically queue reminders for assignments left unanswered."""
    settings = get_settings()
    while True:
        await asyncio.sleep(settings.reminder_sweep_interval_seconds)
        try:
            await asyncio.to_thread(run_reminder_sweep, dispatcher, settings.reminder_min_age_days)
        except Exception:
            logger.exception("Reminder sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()
    dispatcher = None
    task = None
    if settings.notifications_enabled:
        dispatcher = build_dispatcher()
        dispatcher.start()
        task = asyncio.create_task(_sweep_reminders(dispatcher))
    app.state.dispatcher = dispatcher
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    if dispatcher is not None:
        dispatcher.stop()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS: restrict origins in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(relationships_router)
app.include_router(surveys_router)

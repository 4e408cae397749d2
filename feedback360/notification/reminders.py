"""Reminder sweep for assignments that have gone unanswered.

Selects active assignments older than ``min_age_days`` that have never
been reminded, groups them per evaluator and tenant, and queues one
reminder digest per evaluator.  Each included assignment is stamped with
``last_reminder_sent_at`` once its job is queued, so an evaluator is
reminded at most once per assignment.
"""
from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from feedback360.core.errors import PersistenceError
from feedback360.db.models import Assignment
from feedback360.db.repositories import AssignmentRepository, TenantRepository
from feedback360.db.session import commit, get_session_factory
from feedback360.notification.dispatcher import NotificationDispatcher, forms_link
from feedback360.notification.email_sender import ReminderItem

logger = logging.getLogger(__name__)


class ReminderSweep:
    def __init__(self, db_session: Session, dispatcher: NotificationDispatcher, min_age_days: int = 7) -> None:
        self.db = db_session
        self.dispatcher = dispatcher
        self.min_age_days = min_age_days

    def run(
        self,
        now: datetime | None = None,
        exclude_assignment_ids: Collection[UUID] = (),
    ) -> int:
        """Queue reminders for due assignments; returns the number of jobs queued.

        Flushes the reminder stamps but does not commit.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.min_age_days)
        due = [
            a
            for a in AssignmentRepository(self.db).list_due_for_reminder(cutoff)
            if a.id not in exclude_assignment_ids
        ]
        if not due:
            return 0

        groups: dict[tuple[UUID, str], list[Assignment]] = {}
        for assignment in due:
            email = assignment.edge.evaluator.employee.email.strip().lower()
            groups.setdefault((assignment.tenant_id, email), []).append(assignment)

        tenants = TenantRepository(self.db)
        queued = 0
        for (tenant_id, _), assignments in groups.items():
            tenant = tenants.get(tenant_id)
            if tenant is None or not tenant.is_active:
                continue
            evaluator = assignments[0].edge.evaluator
            items = [
                ReminderItem(
                    form_title=a.survey.title,
                    subject_name=a.edge.subject.employee.full_name,
                    link=forms_link(self.dispatcher.frontend_url, tenant.slug, a.id),
                )
                for a in assignments
            ]
            job = self.dispatcher.reminder_job(
                evaluator.id,
                evaluator.employee.email,
                evaluator.employee.full_name,
                items,
                tenant.name,
                tenant.slug,
            )
            if not self.dispatcher.enqueue(job):
                continue
            for assignment in assignments:
                assignment.last_reminder_sent_at = now
            queued += 1

        self.db.flush()
        logger.info("Queued %d reminder(s) covering %d assignment(s)", queued, len(due))
        return queued


def run_reminder_sweep(dispatcher: NotificationDispatcher, min_age_days: int) -> int:
    """Run one sweep in its own session and commit the reminder stamps."""
    db = get_session_factory()()
    try:
        queued = ReminderSweep(db, dispatcher, min_age_days).run()
        commit(db)
        return queued
    except PersistenceError:
        logger.exception("Reminder sweep could not be committed")
        return 0
    finally:
        db.close()

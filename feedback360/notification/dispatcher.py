"""Notification dispatcher.

Successful assignment outcomes are grouped per evaluator email into
``NotificationJob`` messages and pushed onto a bounded in-process queue.
A single daemon worker thread consumes the queue and hands each job to
the ``EmailSender``.

Delivery policy:
  - one attempt per job, no retry;
  - failures are logged and otherwise ignored;
  - a full queue drops the job with an error log.

The request that produced the outcomes has already committed by the time
a job is enqueued and never waits for delivery.
"""
from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from feedback360.assignment.results import AssignmentOutcome
from feedback360.core.security import CredentialService
from feedback360.notification.email_sender import DeliveryReceipt, EmailSender, NotificationKind, ReminderItem

logger = logging.getLogger(__name__)

REMINDER_ITEM_CAP = 5


@dataclass(frozen=True)
class NotificationJob:
    kind: NotificationKind
    evaluator_id: UUID
    recipient_email: str
    recipient_name: str
    link: str
    tenant_name: str = ""
    survey_title: str = ""
    credential_display: str = ""
    subject_name: str | None = None
    count: int = 1
    items: tuple[ReminderItem, ...] = field(default_factory=tuple)


def forms_link(frontend_url: str, tenant_slug: str, assignment_id: UUID | None = None) -> str:
    base = f"{frontend_url.rstrip('/')}/{tenant_slug}/participant/forms"
    return f"{base}/{assignment_id}" if assignment_id is not None else base


def dashboard_link(frontend_url: str, tenant_slug: str) -> str:
    return f"{frontend_url.rstrip('/')}/{tenant_slug}/participant/dashboard"


class NotificationDispatcher:
    """Turn assignment outcomes into queued notification jobs and deliver them."""

    def __init__(
        self,
        sender: EmailSender,
        credentials: CredentialService,
        frontend_url: str,
        queue_size: int = 1000,
    ) -> None:
        self.sender = sender
        self.credentials = credentials
        self.frontend_url = frontend_url
        self._queue: queue.Queue[NotificationJob | None] = queue.Queue(maxsize=queue_size)
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None

    # -- job construction -----------------------------------------------------

    def build_jobs(
        self,
        outcomes: Iterable[AssignmentOutcome],
        survey_title: str,
        tenant_name: str,
        tenant_slug: str,
    ) -> list[NotificationJob]:
        """Group *outcomes* by evaluator email; one item gives a single job, more a digest."""
        groups: dict[str, list[AssignmentOutcome]] = {}
        for outcome in outcomes:
            groups.setdefault(outcome.evaluator_email.strip().lower(), []).append(outcome)

        jobs: list[NotificationJob] = []
        for items in groups.values():
            first, last = items[0], items[-1]
            credential_display = self.credentials.display_for(first, first.evaluator_credential_hash)
            if len(items) == 1:
                jobs.append(
                    NotificationJob(
                        kind="single",
                        evaluator_id=first.evaluator_id,
                        recipient_email=first.evaluator_email,
                        recipient_name=first.evaluator_name,
                        link=forms_link(self.frontend_url, tenant_slug, first.assignment_id),
                        tenant_name=tenant_name,
                        survey_title=survey_title,
                        credential_display=credential_display,
                        subject_name=last.subject_name,
                    )
                )
            else:
                jobs.append(
                    NotificationJob(
                        kind="digest",
                        evaluator_id=first.evaluator_id,
                        recipient_email=first.evaluator_email,
                        recipient_name=first.evaluator_name,
                        link=forms_link(self.frontend_url, tenant_slug),
                        tenant_name=tenant_name,
                        survey_title=survey_title,
                        credential_display=credential_display,
                        count=len(items),
                    )
                )
        return jobs

    def reminder_job(
        self,
        evaluator_id: UUID,
        recipient_email: str,
        recipient_name: str,
        items: list[ReminderItem],
        tenant_name: str,
        tenant_slug: str,
    ) -> NotificationJob:
        """Build a reminder digest listing at most ``REMINDER_ITEM_CAP`` items."""
        return NotificationJob(
            kind="reminder",
            evaluator_id=evaluator_id,
            recipient_email=recipient_email,
            recipient_name=recipient_name,
            link=dashboard_link(self.frontend_url, tenant_slug),
            tenant_name=tenant_name,
            count=len(items),
            items=tuple(items[:REMINDER_ITEM_CAP]),
        )

    # -- queueing -------------------------------------------------------------

    def dispatch(
        self,
        outcomes: Iterable[AssignmentOutcome],
        survey_title: str,
        tenant_name: str,
        tenant_slug: str,
    ) -> list[NotificationJob]:
        jobs = self.build_jobs(outcomes, survey_title, tenant_name, tenant_slug)
        queued = [job for job in jobs if self.enqueue(job)]
        logger.info("Queued %d of %d notification job(s)", len(queued), len(jobs))
        return queued

    def enqueue(self, job: NotificationJob) -> bool:
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            logger.error("Notification queue full, dropping %s job for evaluator %s", job.kind, job.evaluator_id)
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    # -- delivery -------------------------------------------------------------

    def process(self, job: NotificationJob) -> DeliveryReceipt | None:
        """Deliver *job* once.  Failures are logged, never raised or retried."""
        reference = str(job.evaluator_id)
        try:
            if job.kind == "single":
                receipt = self.sender.send_single(
                    job.recipient_email,
                    job.recipient_name,
                    job.subject_name or "",
                    job.survey_title,
                    job.link,
                    job.credential_display,
                    tenant_name=job.tenant_name,
                    reference=reference,
                )
            elif job.kind == "digest":
                receipt = self.sender.send_digest(
                    job.recipient_email,
                    job.recipient_name,
                    job.count,
                    job.survey_title,
                    job.link,
                    job.credential_display,
                    tenant_name=job.tenant_name,
                    reference=reference,
                )
            else:
                receipt = self.sender.send_reminder(
                    job.recipient_email,
                    job.recipient_name,
                    list(job.items),
                    job.count,
                    job.link,
                    tenant_name=job.tenant_name,
                    reference=reference,
                )
        except Exception:
            logger.exception("Notification %s for evaluator %s failed", job.kind, reference)
            return None

        if receipt.status == "FAILED":
            logger.error("Notification %s for evaluator %s was not delivered", job.kind, reference)
        return receipt

    def drain(self) -> list[DeliveryReceipt | None]:
        """Process every job currently queued on the calling thread."""
        receipts: list[DeliveryReceipt | None] = []
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return receipts
            try:
                if job is not None:
                    receipts.append(self.process(job))
            finally:
                self._queue.task_done()

    # -- worker lifecycle -----------------------------------------------------

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="notification-worker", daemon=True)
        self._worker.start()
        logger.info("Notification worker started")

    def stop(self, timeout: float = 5.0) -> None:
        if self._worker is None:
            return
        self._stop.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            # worker exits on the stop flag once the queue is empty
            pass
        self._worker.join(timeout)
        self._worker = None
        logger.info("Notification worker stopped")

    def _run(self) -> None:
        while True:
            try:
                job = self._queue.get(timeout=0.5)
            except queue.Empty:
                if self._stop.is_set():
                    return
                continue
            try:
                if job is None:
                    return
                self.process(job)
            finally:
                self._queue.task_done()

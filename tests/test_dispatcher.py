"""Tests for feedback360/notification/dispatcher.py."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from feedback360.assignment.results import AssignmentOutcome
from feedback360.core.security import REDACTED_CREDENTIAL
from feedback360.notification.dispatcher import (
    REMINDER_ITEM_CAP,
    NotificationDispatcher,
    dashboard_link,
    forms_link,
)
from feedback360.notification.email_sender import DeliveryReceipt, ReminderItem

TENANT_ID = uuid4()


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

def _outcome(credentials, *, email="eve@example.com", subject="Sam Stone", evaluator_id=None, credential_hash=None):
    return AssignmentOutcome(
        assignment_id=uuid4(),
        survey_id=uuid4(),
        tenant_id=TENANT_ID,
        evaluator_id=evaluator_id or uuid4(),
        evaluator_email=email,
        evaluator_name="Eve Adams",
        evaluator_credential_hash=credential_hash or credentials.issue(email),
        subject_name=subject,
    )


def _receipt(status="SENT") -> DeliveryReceipt:
    return DeliveryReceipt(
        reference="r",
        kind="single",
        status=status,
        timestamp=datetime.now(timezone.utc),
        smtp_response=None,
        attempt_count=1,
    )


@pytest.fixture()
def sender():
    sender = MagicMock()
    sender.send_single.return_value = _receipt()
    sender.send_digest.return_value = _receipt()
    sender.send_reminder.return_value = _receipt()
    return sender


@pytest.fixture()
def dispatcher(sender, credentials):
    return NotificationDispatcher(sender, credentials, frontend_url="http://app.test/")


# ===========================================================================
# Links
# ===========================================================================

def test_links_strip_trailing_slash():
    assignment_id = uuid4()
    assert forms_link("http://app.test/", "acme") == "http://app.test/acme/participant/forms"
    assert forms_link("http://app.test", "acme", assignment_id) == f"http://app.test/acme/participant/forms/{assignment_id}"
    assert dashboard_link("http://app.test/", "acme") == "http://app.test/acme/participant/dashboard"


# ===========================================================================
# build_jobs
# ===========================================================================

class TestBuildJobs:
    def test_one_outcome_gives_single_job(self, dispatcher, credentials):
        outcome = _outcome(credentials)

        jobs = dispatcher.build_jobs([outcome], "Mid-Year 360", "Acme", "acme")

        assert len(jobs) == 1
        job = jobs[0]
        assert job.kind == "single"
        assert job.count == 1
        assert job.subject_name == "Sam Stone"
        assert job.link == f"http://app.test/acme/participant/forms/{outcome.assignment_id}"
        assert job.credential_display == credentials.generate("eve@example.com")

    def test_outcomes_grouped_by_email_case_insensitively(self, dispatcher, credentials):
        outcomes = [
            _outcome(credentials, email="eve@example.com", subject="A"),
            _outcome(credentials, email="EVE@example.com", subject="B"),
            _outcome(credentials, email="bob@example.com", subject="C"),
        ]

        jobs = dispatcher.build_jobs(outcomes, "360", "Acme", "acme")

        by_kind = {job.kind: job for job in jobs}
        assert len(jobs) == 2
        assert by_kind["digest"].count == 2
        assert by_kind["digest"].link == "http://app.test/acme/participant/forms"
        assert by_kind["single"].recipient_email == "bob@example.com"

    def test_changed_credential_is_not_shown(self, dispatcher, credentials):
        outcome = _outcome(credentials, credential_hash=credentials.hash("chosen-by-user"))

        jobs = dispatcher.build_jobs([outcome], "360", "Acme", "acme")

        assert jobs[0].credential_display == REDACTED_CREDENTIAL

    def test_reminder_job_caps_items(self, dispatcher):
        items = [ReminderItem(f"Form {i}", "Sam", f"http://x/{i}") for i in range(8)]

        job = dispatcher.reminder_job(uuid4(), "eve@example.com", "Eve", items, "Acme", "acme")

        assert job.kind == "reminder"
        assert job.count == 8
        assert len(job.items) == REMINDER_ITEM_CAP
        assert job.link == "http://app.test/acme/participant/dashboard"


# ===========================================================================
# Queueing and delivery
# ===========================================================================

class TestQueue:
    def test_dispatch_queues_and_drain_delivers(self, dispatcher, sender, credentials):
        queued = dispatcher.dispatch([_outcome(credentials)], "360", "Acme", "acme")

        assert len(queued) == 1
        assert dispatcher.pending() == 1
        receipts = dispatcher.drain()
        assert [r.status for r in receipts] == ["SENT"]
        assert dispatcher.pending() == 0
        sender.send_single.assert_called_once()

    def test_full_queue_drops_job(self, sender, credentials, caplog):
        dispatcher = NotificationDispatcher(sender, credentials, frontend_url="http://app.test", queue_size=1)
        outcomes = [_outcome(credentials, email="a@example.com"), _outcome(credentials, email="b@example.com")]

        with caplog.at_level(logging.ERROR, logger="feedback360.notification.dispatcher"):
            queued = dispatcher.dispatch(outcomes, "360", "Acme", "acme")

        assert len(queued) == 1
        assert "Notification queue full" in caplog.text

    def test_sender_exception_is_logged_not_raised(self, dispatcher, sender, credentials, caplog):
        sender.send_single.side_effect = RuntimeError("template broken")
        dispatcher.dispatch([_outcome(credentials)], "360", "Acme", "acme")

        with caplog.at_level(logging.ERROR, logger="feedback360.notification.dispatcher"):
            receipts = dispatcher.drain()

        assert receipts == [None]
        assert "failed" in caplog.text
        assert sender.send_single.call_count == 1

    def test_failed_delivery_is_not_retried(self, dispatcher, sender, credentials, caplog):
        sender.send_single.return_value = _receipt("FAILED")
        dispatcher.dispatch([_outcome(credentials)], "360", "Acme", "acme")

        with caplog.at_level(logging.ERROR, logger="feedback360.notification.dispatcher"):
            dispatcher.drain()

        assert sender.send_single.call_count == 1
        assert "was not delivered" in caplog.text

    def test_reminder_job_uses_send_reminder(self, dispatcher, sender):
        items = [ReminderItem("Form", "Sam", "http://x/1")]
        dispatcher.enqueue(dispatcher.reminder_job(uuid4(), "eve@example.com", "Eve", items, "Acme", "acme"))

        dispatcher.drain()

        sender.send_reminder.assert_called_once()
        assert sender.send_reminder.call_args.args[3] == 1


class TestWorker:
    def test_worker_delivers_queued_jobs(self, dispatcher, sender, credentials):
        dispatcher.start()
        try:
            dispatcher.dispatch([_outcome(credentials)], "360", "Acme", "acme")
            deadline = time.monotonic() + 5
            while sender.send_single.call_count == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            dispatcher.stop()

        assert sender.send_single.call_count == 1

    def test_stop_without_start_is_noop(self, dispatcher):
        dispatcher.stop()

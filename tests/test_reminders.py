import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from feedback360.api.main import _sweep_reminders
from feedback360.assignment.engine import AssignmentEngine
from feedback360.db.repositories import AssignmentRepository
from feedback360.identity.resolver import IdentityResolver, Role
from feedback360.notification.dispatcher import NotificationDispatcher
from feedback360.notification.reminders import ReminderSweep
from feedback360.relationships.graph import RelationshipGraphBuilder
from tests.helpers import make_employee, make_survey, make_tenant

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def dispatcher(credentials):
    return NotificationDispatcher(MagicMock(), credentials, frontend_url="http://app.test")


@pytest.fixture()
def assigned(db_session, credentials):
    """Evaluator E1 assigned two surveys about S1 and S2, both created ten days before NOW."""
    tenant = make_tenant(db_session)
    for code in ("S1", "S2", "E1"):
        make_employee(db_session, tenant, code)
    surveys = [make_survey(db_session, tenant, title="Q1 360"), make_survey(db_session, tenant, title="Q2 360")]

    resolver = IdentityResolver(db_session, credentials)
    graph = RelationshipGraphBuilder(db_session, resolver)
    evaluator = resolver.resolve(tenant.id, "E1", Role.EVALUATOR).record
    graph.create_edges(tenant.id, evaluator.id, ["S1", "S2"], anchor_role=Role.EVALUATOR)
    edges = graph.list_edges(tenant.id, evaluator_id=evaluator.id)

    engine = AssignmentEngine(db_session)
    assignments = []
    for survey, edge in zip(surveys, edges):
        result = engine.assign(survey.id, [edge.id], tenant.id)
        assignments.append(AssignmentRepository(db_session).get(result.outcomes[0].assignment_id))
    for assignment in assignments:
        assignment.created_at = NOW - timedelta(days=10)
    db_session.flush()
    return tenant, assignments


def test_one_reminder_per_evaluator(db_session, dispatcher, assigned):
    _, assignments = assigned

    queued = ReminderSweep(db_session, dispatcher, min_age_days=7).run(now=NOW)

    assert queued == 1
    assert dispatcher.pending() == 1
    assert all(a.last_reminder_sent_at == NOW for a in assignments)
    dispatcher.drain()
    call = dispatcher.sender.send_reminder.call_args
    items = call.args[2]
    assert {item.form_title for item in items} == {"Q1 360", "Q2 360"}
    assert call.args[3] == 2
    assert call.args[4] == "http://app.test/acme/participant/dashboard"


def test_second_sweep_does_not_remind_again(db_session, dispatcher, assigned):
    sweep = ReminderSweep(db_session, dispatcher, min_age_days=7)
    sweep.run(now=NOW)

    assert sweep.run(now=NOW + timedelta(days=1)) == 0


def test_recent_assignments_are_not_due(db_session, dispatcher, assigned):
    assert ReminderSweep(db_session, dispatcher, min_age_days=30).run(now=NOW) == 0


def test_excluded_assignments_are_skipped(db_session, dispatcher, assigned):
    _, assignments = assigned

    ReminderSweep(db_session, dispatcher).run(now=NOW, exclude_assignment_ids={assignments[0].id})

    assert assignments[0].last_reminder_sent_at is None
    assert assignments[1].last_reminder_sent_at == NOW


def test_inactive_tenant_is_skipped(db_session, dispatcher, assigned):
    tenant, assignments = assigned
    tenant.deactivate()
    db_session.flush()

    assert ReminderSweep(db_session, dispatcher).run(now=NOW) == 0
    assert all(a.last_reminder_sent_at is None for a in assignments)


def test_full_queue_leaves_assignments_unstamped(db_session, credentials, assigned):
    _, assignments = assigned
    dispatcher = NotificationDispatcher(MagicMock(), credentials, frontend_url="http://app.test", queue_size=1)
    dispatcher.enqueue(dispatcher.reminder_job(assignments[0].id, "x@example.com", "X", [], "Acme", "acme"))

    assert ReminderSweep(db_session, dispatcher).run(now=NOW) == 0
    assert all(a.last_reminder_sent_at is None for a in assignments)


# ===========================================================================
# periodic sweep loop
# ===========================================================================

class _StopLoop(BaseException):
    pass


class TestSweepLoop:
    def test_failed_sweep_is_logged_and_the_loop_keeps_running(self, caplog):
        settings = MagicMock(reminder_sweep_interval_seconds=0, reminder_min_age_days=7)
        sweep = MagicMock(side_effect=[RuntimeError("smtp down"), 3, _StopLoop()])
        dispatcher = MagicMock()

        with patch("feedback360.api.main.get_settings", return_value=settings), patch(
            "feedback360.api.main.run_reminder_sweep", sweep
        ):
            with pytest.raises(_StopLoop):
                asyncio.run(_sweep_reminders(dispatcher))

        assert sweep.call_count == 3
        sweep.assert_called_with(dispatcher, 7)
        assert "Reminder sweep failed" in caplog.text

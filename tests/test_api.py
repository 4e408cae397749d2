"""Tests for the FastAPI routes.

Covers:
- relationship create / merge / list / remove for subject and evaluator anchors
- bulk role-record creation, deactivation and code validation
- survey assign / unassign / import (JSON and CSV) / listings
- notification jobs queued after a committed assignment
"""
from __future__ import annotations

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from feedback360.api.deps import get_credentials, get_db, get_dispatcher
from feedback360.db.repositories import AssignmentRepository, RelationshipEdgeRepository
from feedback360.identity.resolver import IdentityResolver, Role
from feedback360.notification.dispatcher import NotificationDispatcher
from tests.helpers import make_employee, make_survey, make_tenant


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def dispatcher(credentials):
    return NotificationDispatcher(MagicMock(), credentials, frontend_url="http://app.test")


@pytest.fixture()
def api(db_session: Session, credentials, dispatcher, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    """TestClient with the database, credentials and dispatcher overridden."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")

    from feedback360.core.settings import get_settings

    get_settings.cache_clear()

    from feedback360.api.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_credentials] = lambda: credentials
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture()
def tenant(db_session):
    tenant = make_tenant(db_session)
    make_employee(db_session, tenant, "S1", first_name="Sam", last_name="Stone")
    make_employee(db_session, tenant, "E1", first_name="Eve", last_name="Adams")
    make_employee(db_session, tenant, "E2", first_name="Ed", last_name="Brown")
    db_session.commit()
    return tenant


@pytest.fixture()
def subject(db_session, credentials, tenant):
    record = IdentityResolver(db_session, credentials).resolve(tenant.id, "S1", Role.SUBJECT).record
    db_session.commit()
    return record


@pytest.fixture()
def survey(db_session, tenant):
    survey = make_survey(db_session, tenant, title="Mid-Year 360")
    db_session.commit()
    return survey


def _connect(api, tenant, subject, counterparts):
    return api.post(
        f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators",
        json={"counterparts": counterparts},
    )


def _edge_ids(api, tenant, subject):
    edges = api.get(f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators").json()
    return {e["evaluator_employee_code"]: e["id"] for e in edges}


# ===========================================================================
# Relationships
# ===========================================================================

class TestRelationships:
    def test_connect_and_list(self, api, tenant, subject):
        response = _connect(api, tenant, subject, [
            {"employee_code": "E1", "relationship": "Manager"},
            {"employee_code": "E2"},
            {"employee_code": "GHOST"},
        ])

        assert response.status_code == 200
        body = response.json()
        assert body["successful_connections"] == 2
        assert body["failed_employee_ids"] == ["GHOST"]

        edges = api.get(f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators").json()
        assert {e["evaluator_employee_code"]: e["relationship"] for e in edges} == {"E1": "Manager", "E2": "Peer"}
        assert all("email" not in key for e in edges for key in e)

    def test_merge_relabels(self, api, tenant, subject):
        _connect(api, tenant, subject, [{"employee_code": "E1", "relationship": "Peer"}])

        response = api.put(
            f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators",
            json={"counterparts": [{"employee_code": "E1", "relationship": "Manager"}]},
        )

        assert response.status_code == 200
        assert response.json()["warnings"] == ["Updated relationship types for: E1"]

    def test_unknown_anchor_is_404(self, api, tenant):
        response = api.post(
            f"/tenants/{tenant.id}/subjects/{uuid4()}/evaluators",
            json={"counterparts": [{"employee_code": "E1"}]},
        )

        assert response.status_code == 404

    def test_label_longer_than_limit_is_422(self, api, tenant, subject):
        response = _connect(api, tenant, subject, [{"employee_code": "E1", "relationship": "x" * 51}])

        assert response.status_code == 422

    def test_remove_relationship(self, api, tenant, subject):
        _connect(api, tenant, subject, [{"employee_code": "E1"}])
        edge = api.get(f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators").json()[0]

        response = api.delete(f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators/{edge['evaluator_id']}")
        again = api.delete(f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators/{edge['evaluator_id']}")

        assert response.status_code == 200
        assert response.json() == {"removed": True}
        assert again.status_code == 404

    def test_evaluator_anchor_lists_subjects(self, api, tenant, subject):
        _connect(api, tenant, subject, [{"employee_code": "E1"}])
        evaluator_id = api.get(f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators").json()[0]["evaluator_id"]

        edges = api.get(f"/tenants/{tenant.id}/evaluators/{evaluator_id}/subjects").json()

        assert [e["subject_employee_code"] for e in edges] == ["S1"]

    def test_concurrent_duplicate_edge_is_409(self, api, tenant, subject):
        _connect(api, tenant, subject, [{"employee_code": "E1"}])

        with patch.object(RelationshipEdgeRepository, "get_pair", return_value=None):
            response = _connect(api, tenant, subject, [{"employee_code": "E1"}])

        assert response.status_code == 409
        edges = api.get(f"/tenants/{tenant.id}/subjects/{subject.id}/evaluators").json()
        assert len(edges) == 1


# ===========================================================================
# Role records
# ===========================================================================

class TestRoleRecords:
    def test_bulk_create_evaluators(self, api, tenant):
        response = api.post(f"/tenants/{tenant.id}/evaluators/bulk", json={"employee_codes": ["E1", "E2", "NOPE"]})

        assert response.status_code == 200
        body = response.json()
        assert body["created"] == ["E1", "E2"]
        assert body["errors"] == ["Evaluator Employee 'NOPE' not found."]

    def test_deactivate_subject_cascades(self, api, tenant, subject):
        _connect(api, tenant, subject, [{"employee_code": "E1"}, {"employee_code": "E2"}])

        response = api.delete(f"/tenants/{tenant.id}/subjects/{subject.id}")

        assert response.status_code == 200
        assert response.json() == {"deactivated": True, "relationships_deactivated": 2}
        assert api.delete(f"/tenants/{tenant.id}/subjects/{uuid4()}").status_code == 404

    def test_validate_codes(self, api, tenant, subject):
        response = api.post(
            f"/tenants/{tenant.id}/employee-codes/validate",
            json={"employee_codes": ["S1", "E1"], "role": "subject"},
        )

        body = response.json()
        assert body["total_requested"] == 2
        assert body["valid_count"] == 1
        assert body["results"][0]["full_name"] == "Sam Stone"
        assert body["results"][1]["is_valid"] is False


# ===========================================================================
# Surveys
# ===========================================================================

class TestSurveys:
    def test_assign_queues_notification(self, api, dispatcher, tenant, subject, survey):
        _connect(api, tenant, subject, [{"employee_code": "E1"}])
        edge_ids = _edge_ids(api, tenant, subject)

        response = api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/assign",
            json={"relationship_edge_ids": [edge_ids["E1"]]},
        )

        assert response.status_code == 200
        assert response.json()["assigned_count"] == 1
        assert dispatcher.pending() == 1
        count = api.get(f"/tenants/{tenant.id}/surveys/{survey.id}/assignment-count").json()
        assert count == {"survey_id": str(survey.id), "count": 1}

    def test_assign_unknown_survey_is_404(self, api, tenant):
        response = api.post(
            f"/tenants/{tenant.id}/surveys/{uuid4()}/assign",
            json={"relationship_edge_ids": []},
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Survey not found"

    def test_unassign_and_listings(self, api, tenant, subject, survey):
        _connect(api, tenant, subject, [{"employee_code": "E1"}, {"employee_code": "E2"}])
        edge_ids = _edge_ids(api, tenant, subject)
        api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/assign",
            json={"relationship_edge_ids": list(edge_ids.values())},
        )

        response = api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/unassign",
            json={"relationship_edge_ids": [edge_ids["E1"]]},
        )

        assert response.json()["unassigned_count"] == 1
        assigned = api.get(f"/tenants/{tenant.id}/surveys/{survey.id}/assigned").json()
        available = api.get(f"/tenants/{tenant.id}/surveys/{survey.id}/available").json()
        assert [e["evaluator_employee_code"] for e in assigned] == ["E2"]
        assert [e["evaluator_employee_code"] for e in available] == ["E1"]

    def test_listing_unknown_survey_is_404(self, api, tenant):
        assert api.get(f"/tenants/{tenant.id}/surveys/{uuid4()}/assigned").status_code == 404

    def test_import_rows(self, api, dispatcher, tenant, survey):
        response = api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/import",
            json={"rows": [
                {"subject_code": "S1", "evaluator_code": "E1", "relationship": "Manager"},
                {"subject_code": "S1", "evaluator_code": "E2", "relationship": "Peer"},
                {"subject_code": "S1", "evaluator_code": "", "relationship": "Peer"},
            ]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["assigned_count"] == 2
        assert body["error_count"] == 1
        assert body["errors"] == ["Row 4: SubjectCode, EvaluatorCode and Relationship are required."]
        assert dispatcher.pending() == 2

    def test_import_csv(self, api, tenant, survey):
        csv_bytes = b"SubjectCode,EvaluatorCode,Relationship\nS1,E1,Manager\nS1,S1,Self\n"

        response = api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/import/csv",
            files={"file": ("rows.csv", csv_bytes, "text/csv")},
        )

        assert response.status_code == 200
        assert response.json()["assigned_count"] == 2

    def test_import_csv_rejects_other_extensions(self, api, tenant, survey):
        response = api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/import/csv",
            files={"file": ("rows.xlsx", b"irrelevant", "application/octet-stream")},
        )

        assert response.status_code == 400

    def test_import_csv_missing_columns_is_400(self, api, tenant, survey):
        response = api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/import/csv",
            files={"file": ("rows.csv", b"SubjectCode\nS1\n", "text/csv")},
        )

        assert response.status_code == 400
        assert "missing required column" in response.json()["detail"]

    def test_import_csv_with_invalid_encoding_is_400(self, api, tenant, survey):
        response = api.post(
            f"/tenants/{tenant.id}/surveys/{survey.id}/import/csv",
            files={"file": ("rows.csv", b"SubjectCode,EvaluatorCode,Relationship\nS1,E1,Caf\xe9\n", "text/csv")},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "CSV file is not valid UTF-8"

    def test_concurrent_duplicate_assignment_is_reported(self, api, tenant, subject, survey):
        _connect(api, tenant, subject, [{"employee_code": "E1"}])
        edge_ids = _edge_ids(api, tenant, subject)
        url = f"/tenants/{tenant.id}/surveys/{survey.id}/assign"
        api.post(url, json={"relationship_edge_ids": [edge_ids["E1"]]})

        with patch.object(AssignmentRepository, "list_for_edges", return_value=[]):
            response = api.post(url, json={"relationship_edge_ids": [edge_ids["E1"]]})

        assert response.status_code == 500
        assert response.json()["detail"].startswith("Assignment failed:")
        count = api.get(f"/tenants/{tenant.id}/surveys/{survey.id}/assignment-count").json()
        assert count["count"] == 1

"""Attach and detach a survey to relationship edges.

Only a missing or inactive survey fails the whole call.  Every other
problem (unknown edge, inactive edge, edge from another tenant, already
active assignment) is recorded as a per-item error and the remaining
edges are still processed.

Re-assigning a previously removed (edge, survey) pair reactivates the
original ``Assignment`` row; a second row is never created.
"""
from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from feedback360.assignment.results import AssignmentResult, build_outcome, summary_message
from feedback360.db.models import Assignment, RelationshipEdge, Survey
from feedback360.db.repositories import AssignmentRepository, RelationshipEdgeRepository, SurveyRepository
from feedback360.db.session import flush

logger = logging.getLogger(__name__)


def _unique(ids: list[UUID]) -> list[UUID]:
    return list(dict.fromkeys(ids))


class AssignmentEngine:
    """Assign/unassign one survey across a set of edges."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.surveys = SurveyRepository(db_session)
        self.edges = RelationshipEdgeRepository(db_session)
        self.assignments = AssignmentRepository(db_session)

    def _survey(self, survey_id: UUID, tenant_id: UUID | None, *, active_only: bool = True) -> Survey | None:
        survey = self.surveys.get_active(survey_id) if active_only else self.surveys.get(survey_id)
        if survey is None or (tenant_id is not None and survey.tenant_id != tenant_id):
            return None
        return survey

    # -- assign ---------------------------------------------------------------

    def assign(self, survey_id: UUID, edge_ids: list[UUID], tenant_id: UUID | None = None) -> AssignmentResult:
        survey = self._survey(survey_id, tenant_id)
        if survey is None:
            return AssignmentResult.not_found("Survey not found")

        result = AssignmentResult()
        edge_ids = list(edge_ids)
        edges = {edge.id: edge for edge in self.edges.list_by_ids(_unique(edge_ids))}
        existing = {a.relationship_edge_id: a for a in self.assignments.list_for_edges(survey.id, edges.keys())}

        for edge_id in edge_ids:
            edge = edges.get(edge_id)
            if edge is None or not edge.is_active or edge.tenant_id != survey.tenant_id:
                result.errors.append(f"Subject-Evaluator relationship {edge_id} not found")
                continue

            assignment = existing.get(edge_id)
            if assignment is None:
                assignment = Assignment(
                    id=uuid4(),
                    tenant_id=survey.tenant_id,
                    relationship_edge_id=edge.id,
                    survey_id=survey.id,
                    is_active=True,
                )
                self.db.add(assignment)
                existing[edge_id] = assignment
            elif not assignment.activate():
                result.errors.append(
                    f"Relationship {edge.subject.employee.full_name} - "
                    f"{edge.evaluator.employee.full_name} is already assigned to this survey"
                )
                continue

            result.assigned_count += 1
            result.outcomes.append(self._outcome(assignment, edge))

        flush(self.db)
        result.message = summary_message("assigned", result.assigned_count, result.error_count)
        logger.info(
            "Assigned survey %s to %d edge(s), %d error(s)",
            survey.id,
            result.assigned_count,
            result.error_count,
        )
        return result

    @staticmethod
    def _outcome(assignment: Assignment, edge: RelationshipEdge):
        return build_outcome(
            assignment.id,
            assignment.survey_id,
            assignment.tenant_id,
            edge.subject.employee,
            edge.evaluator,
            edge.evaluator.employee,
        )

    # -- unassign -------------------------------------------------------------

    def unassign(self, survey_id: UUID, edge_ids: list[UUID], tenant_id: UUID | None = None) -> AssignmentResult:
        survey = self._survey(survey_id, tenant_id, active_only=False)
        if survey is None:
            return AssignmentResult.not_found("Survey not found")

        result = AssignmentResult()
        existing = {a.relationship_edge_id: a for a in self.assignments.list_for_edges(survey.id, _unique(edge_ids))}

        for edge_id in edge_ids:
            assignment = existing.get(edge_id)
            if assignment is None or not assignment.deactivate():
                result.errors.append(f"Assignment for relationship {edge_id} not found")
                continue
            result.unassigned_count += 1

        flush(self.db)
        result.message = summary_message("unassigned", result.unassigned_count, result.error_count)
        logger.info(
            "Unassigned survey %s from %d edge(s), %d error(s)",
            survey.id,
            result.unassigned_count,
            result.error_count,
        )
        return result

    # -- queries --------------------------------------------------------------

    def list_assigned(
        self,
        survey_id: UUID,
        search: str | None = None,
        relationship: str | None = None,
    ) -> list[RelationshipEdge]:
        survey = self.surveys.get(survey_id)
        if survey is None:
            return []
        assigned = self.assignments.active_edge_ids(survey.id)
        edges = self.edges.list_active_with_endpoints(survey.tenant_id, search=search, label=relationship)
        return [edge for edge in edges if edge.id in assigned]

    def list_available(
        self,
        survey_id: UUID,
        search: str | None = None,
        relationship: str | None = None,
    ) -> list[RelationshipEdge]:
        survey = self.surveys.get(survey_id)
        if survey is None:
            return []
        assigned = self.assignments.active_edge_ids(survey.id)
        edges = self.edges.list_active_with_endpoints(survey.tenant_id, search=search, label=relationship)
        return [edge for edge in edges if edge.id not in assigned]

    def assignment_count(self, survey_id: UUID) -> int:
        return self.assignments.count_active(survey_id)

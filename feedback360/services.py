"""Service-level operations exposed to the API layer.

``FeedbackService`` wires the resolver, graph builder, assignment engine
and import pipeline to one request-scoped session.  Mutating operations
commit their own unit of work so notifications are only queued for data
that is durably stored.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from feedback360.assignment.bulk_import import BulkImportPipeline, ImportRow
from feedback360.assignment.engine import AssignmentEngine
from feedback360.assignment.results import AssignmentResult
from feedback360.core.errors import NotFoundError, PersistenceError
from feedback360.core.security import CredentialService
from feedback360.db.models import RelationshipEdge
from feedback360.db.repositories import SurveyRepository, TenantRepository
from feedback360.db.session import commit
from feedback360.identity.resolver import BulkCreateResult, CodeValidation, IdentityResolver, Role
from feedback360.notification.dispatcher import NotificationDispatcher
from feedback360.relationships.graph import Counterpart, RelationshipGraphBuilder, RelationshipResult

logger = logging.getLogger(__name__)


class FeedbackService:
    def __init__(
        self,
        db_session: Session,
        credentials: CredentialService,
        dispatcher: NotificationDispatcher | None = None,
        import_conflict_retries: int = 1,
    ) -> None:
        self.db = db_session
        self.credentials = credentials
        self.dispatcher = dispatcher
        self.import_conflict_retries = import_conflict_retries
        self.resolver = IdentityResolver(db_session, credentials)
        self.graph = RelationshipGraphBuilder(db_session, self.resolver)
        self.engine = AssignmentEngine(db_session)

    # -- relationships --------------------------------------------------------

    def create_relationships(
        self,
        anchor_id: UUID,
        counterparts: Iterable[Counterpart | tuple[str, str | None] | str],
        tenant_id: UUID,
        anchor_role: Role = Role.SUBJECT,
    ) -> RelationshipResult:
        result = self.graph.create_edges(tenant_id, anchor_id, counterparts, anchor_role)
        commit(self.db)
        return result

    def merge_relationships(
        self,
        anchor_id: UUID,
        counterparts: Iterable[Counterpart | tuple[str, str | None] | str],
        tenant_id: UUID,
        anchor_role: Role = Role.SUBJECT,
    ) -> RelationshipResult:
        result = self.graph.merge_edges(tenant_id, anchor_id, counterparts, anchor_role)
        commit(self.db)
        return result

    def remove_relationship(self, tenant_id: UUID, subject_id: UUID, evaluator_id: UUID) -> None:
        self.graph.remove_edge(tenant_id, subject_id, evaluator_id)
        commit(self.db)

    def list_relationships(
        self,
        tenant_id: UUID,
        *,
        subject_id: UUID | None = None,
        evaluator_id: UUID | None = None,
    ) -> list[RelationshipEdge]:
        return self.graph.list_edges(tenant_id, subject_id=subject_id, evaluator_id=evaluator_id)

    # -- role records ---------------------------------------------------------

    def create_role_records(self, tenant_id: UUID, employee_codes: list[str], role: Role) -> BulkCreateResult:
        result = self.resolver.resolve_many(tenant_id, employee_codes, role)
        commit(self.db)
        return result

    def deactivate_role_record(self, tenant_id: UUID, record_id: UUID, role: Role) -> int:
        edges = self.resolver.deactivate(tenant_id, record_id, role)
        commit(self.db)
        return edges

    def validate_employee_codes(self, tenant_id: UUID, employee_codes: list[str], role: Role) -> list[CodeValidation]:
        return self.resolver.validate_codes(tenant_id, employee_codes, role)

    # -- assignments ----------------------------------------------------------

    def assign_survey(self, survey_id: UUID, edge_ids: list[UUID], tenant_id: UUID | None = None) -> AssignmentResult:
        try:
            result = self.engine.assign(survey_id, edge_ids, tenant_id)
            if not result.success:
                return result

            survey = SurveyRepository(self.db).get(survey_id)
            tenant = TenantRepository(self.db).get(survey.tenant_id)
            survey_title, tenant_name, tenant_slug = survey.title, tenant.name, tenant.slug
            commit(self.db)
        except PersistenceError as exc:
            logger.error("Assigning survey %s rolled back: %s", survey_id, exc)
            return AssignmentResult.failure(f"Assignment failed: {exc}")

        if self.dispatcher is not None and result.outcomes:
            try:
                self.dispatcher.dispatch(result.outcomes, survey_title, tenant_name, tenant_slug)
            except Exception:
                logger.exception("Queueing notifications for survey %s failed", survey_id)
        return result

    def unassign_survey(self, survey_id: UUID, edge_ids: list[UUID], tenant_id: UUID | None = None) -> AssignmentResult:
        try:
            result = self.engine.unassign(survey_id, edge_ids, tenant_id)
            if not result.success:
                return result
            commit(self.db)
        except PersistenceError as exc:
            logger.error("Unassigning survey %s rolled back: %s", survey_id, exc)
            return AssignmentResult.failure(f"Unassignment failed: {exc}")
        return result

    def import_assignments_from_rows(
        self,
        survey_id: UUID,
        rows: Sequence[ImportRow],
        tenant_id: UUID,
    ) -> AssignmentResult:
        pipeline = BulkImportPipeline(
            self.db,
            self.credentials,
            dispatcher=self.dispatcher,
            max_conflict_retries=self.import_conflict_retries,
        )
        return pipeline.run(survey_id, rows, tenant_id)

    def _require_survey(self, survey_id: UUID, tenant_id: UUID) -> None:
        survey = SurveyRepository(self.db).get(survey_id)
        if survey is None or survey.tenant_id != tenant_id:
            raise NotFoundError(f"Survey {survey_id} not found")

    def list_assigned(
        self,
        tenant_id: UUID,
        survey_id: UUID,
        search: str | None = None,
        relationship: str | None = None,
    ) -> list[RelationshipEdge]:
        self._require_survey(survey_id, tenant_id)
        return self.engine.list_assigned(survey_id, search, relationship)

    def list_available(
        self,
        tenant_id: UUID,
        survey_id: UUID,
        search: str | None = None,
        relationship: str | None = None,
    ) -> list[RelationshipEdge]:
        self._require_survey(survey_id, tenant_id)
        return self.engine.list_available(survey_id, search, relationship)

    def assignment_count(self, tenant_id: UUID, survey_id: UUID) -> int:
        self._require_survey(survey_id, tenant_id)
        return self.engine.assignment_count(survey_id)

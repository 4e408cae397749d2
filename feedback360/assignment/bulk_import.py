"""Bulk relationship/assignment import.

Each input row names a subject employee code, an evaluator employee code
and a relationship label.  A row, when valid, yields one edge and one
assignment of the target survey to that edge.

Database work is bounded independently of the row count:

1. collect the distinct subject and evaluator codes;
2. pre-fetch employees, subjects, evaluators, edges and assignments with
   at most five queries;
3. process rows sequentially against an ``ImportCache`` built from those
   results, writing every newly created record back into the cache so a
   later row referencing the same code reuses it;
4. commit once.

Row-level problems are collected as ``"Row <n>: <reason>"`` strings (row
numbers count the header as line 1) and never abort the batch.  A
storage failure at commit rolls back everything.  When the failure is a
uniqueness violation, another import raced us on the same identifiers;
the whole import is re-run against fresh data up to
``max_conflict_retries`` times before giving up.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from feedback360.assignment.results import AssignmentResult, build_outcome, summary_message
from feedback360.core.errors import ConflictingWriteError, PersistenceError
from feedback360.core.security import CredentialService
from feedback360.db.models import (
    RELATIONSHIP_LABEL_MAX,
    Assignment,
    Employee,
    Evaluator,
    RelationshipEdge,
    Subject,
    Survey,
)
from feedback360.db.repositories import (
    AssignmentRepository,
    EmployeeRepository,
    EvaluatorRepository,
    RelationshipEdgeRepository,
    SubjectRepository,
    SurveyRepository,
    TenantRepository,
)
from feedback360.db.session import commit
from feedback360.identity.resolver import IdentityResolver, Role
from feedback360.notification.dispatcher import NotificationDispatcher
from feedback360.relationships.graph import is_self_label

logger = logging.getLogger(__name__)

HEADER_OFFSET = 2


@dataclass(frozen=True)
class ImportRow:
    subject_code: str | None
    evaluator_code: str | None
    relationship: str | None


@dataclass
class ImportCache:
    """Lookup maps scoped to a single import call."""

    employees: dict[str, Employee] = field(default_factory=dict)
    subjects: dict[str, Subject] = field(default_factory=dict)
    evaluators: dict[str, Evaluator] = field(default_factory=dict)
    edges: dict[tuple[UUID, UUID], RelationshipEdge] = field(default_factory=dict)
    assignments: dict[UUID, Assignment] = field(default_factory=dict)

    def records(self, role: Role) -> dict[str, Subject] | dict[str, Evaluator]:
        return self.subjects if role is Role.SUBJECT else self.evaluators


def _clean(value: str | None) -> str:
    return (value or "").strip()


def distinct_codes(rows: Sequence[ImportRow]) -> tuple[set[str], set[str]]:
    """Return the distinct non-blank (subject codes, evaluator codes)."""
    subject_codes = {_clean(row.subject_code) for row in rows} - {""}
    evaluator_codes = {_clean(row.evaluator_code) for row in rows} - {""}
    return subject_codes, evaluator_codes


class BulkImportPipeline:
    """Import relationship rows and assign one survey to the resulting edges."""

    def __init__(
        self,
        db_session: Session,
        credentials: CredentialService,
        dispatcher: NotificationDispatcher | None = None,
        max_conflict_retries: int = 1,
    ) -> None:
        self.db = db_session
        self.resolver = IdentityResolver(db_session, credentials)
        self.dispatcher = dispatcher
        self.max_conflict_retries = max_conflict_retries

    # -- entry point ----------------------------------------------------------

    def run(self, survey_id: UUID, rows: Sequence[ImportRow], tenant_id: UUID) -> AssignmentResult:
        survey = SurveyRepository(self.db).get_active(survey_id)
        if survey is None or survey.tenant_id != tenant_id:
            return AssignmentResult.not_found("Survey not found")
        tenant = TenantRepository(self.db).get(tenant_id)
        if tenant is None or not tenant.is_active:
            return AssignmentResult.not_found("Tenant not found")

        survey_title, tenant_name, tenant_slug = survey.title, tenant.name, tenant.slug
        logger.info("Importing %d row(s) into survey %s", len(rows), survey_id)

        attempt = 0
        while True:
            try:
                result = self._run_once(survey, rows, tenant_id)
                commit(self.db)
                break
            except ConflictingWriteError as exc:
                if attempt >= self.max_conflict_retries:
                    logger.error("Import into survey %s failed after %d conflict(s)", survey_id, attempt + 1)
                    return AssignmentResult.failure(f"Import failed: {exc}")
                attempt += 1
                logger.warning("Concurrent write detected for survey %s, retrying import (%d)", survey_id, attempt)
                survey = SurveyRepository(self.db).get_active(survey_id)
                if survey is None:
                    return AssignmentResult.not_found("Survey not found")
            except PersistenceError as exc:
                logger.error("Import into survey %s rolled back: %s", survey_id, exc)
                return AssignmentResult.failure(f"Import failed: {exc}")
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("Import into survey %s rolled back: %s", survey_id, exc)
                return AssignmentResult.failure(f"Import failed: {exc}")

        logger.info(
            "Imported survey %s: %d assigned, %d error(s), %d conflict(s)",
            survey_id,
            result.assigned_count,
            result.error_count,
            len(result.conflicts),
        )
        if self.dispatcher is not None and result.outcomes:
            try:
                self.dispatcher.dispatch(result.outcomes, survey_title, tenant_name, tenant_slug)
            except Exception:
                logger.exception("Queueing notifications for survey %s failed", survey_id)
        return result

    def _run_once(self, survey: Survey, rows: Sequence[ImportRow], tenant_id: UUID) -> AssignmentResult:
        result = AssignmentResult()
        cache = self.prefetch(tenant_id, survey.id, rows)

        for index, row in enumerate(rows):
            row_number = index + HEADER_OFFSET
            try:
                self._process_row(row_number, row, cache, survey, tenant_id, result)
            except SQLAlchemyError:
                raise
            except Exception as exc:
                logger.exception("Row %d failed", row_number)
                result.errors.append(f"Row {row_number}: Error - {exc}")

        result.message = summary_message(
            "assigned", result.assigned_count, result.error_count, len(result.conflicts)
        )
        return result

    # -- pre-fetch ------------------------------------------------------------

    def prefetch(self, tenant_id: UUID, survey_id: UUID, rows: Sequence[ImportRow]) -> ImportCache:
        """Load everything the rows can touch with a bounded number of queries."""
        subject_codes, evaluator_codes = distinct_codes(rows)
        cache = ImportCache()

        for employee in EmployeeRepository(self.db).list_active_by_codes(tenant_id, subject_codes | evaluator_codes):
            cache.employees[employee.employee_code] = employee
        for subject in SubjectRepository(self.db).list_by_employee_codes(tenant_id, subject_codes):
            cache.subjects[subject.employee.employee_code] = subject
        for evaluator in EvaluatorRepository(self.db).list_by_employee_codes(tenant_id, evaluator_codes):
            cache.evaluators[evaluator.employee.employee_code] = evaluator

        edges = RelationshipEdgeRepository(self.db).list_between(
            tenant_id,
            {s.id for s in cache.subjects.values()},
            {e.id for e in cache.evaluators.values()},
        )
        for edge in edges:
            cache.edges[(edge.subject_id, edge.evaluator_id)] = edge
        for assignment in AssignmentRepository(self.db).list_for_edges(survey_id, {e.id for e in edges}):
            cache.assignments[assignment.relationship_edge_id] = assignment

        logger.debug(
            "Pre-fetched %d employee(s), %d subject(s), %d evaluator(s), %d edge(s), %d assignment(s)",
            len(cache.employees),
            len(cache.subjects),
            len(cache.evaluators),
            len(cache.edges),
            len(cache.assignments),
        )
        return cache

    # -- per row --------------------------------------------------------------

    def _process_row(
        self,
        row_number: int,
        row: ImportRow,
        cache: ImportCache,
        survey: Survey,
        tenant_id: UUID,
        result: AssignmentResult,
    ) -> None:
        subject_code = _clean(row.subject_code)
        evaluator_code = _clean(row.evaluator_code)
        label = _clean(row.relationship)

        if not subject_code or not evaluator_code or not label:
            result.errors.append(
                f"Row {row_number}: SubjectCode, EvaluatorCode and Relationship are required."
            )
            return
        if len(label) > RELATIONSHIP_LABEL_MAX:
            result.errors.append(
                f"Row {row_number}: Relationship must be between 1 and {RELATIONSHIP_LABEL_MAX} characters."
            )
            return

        subject_employee = cache.employees.get(subject_code)
        if subject_employee is None:
            result.errors.append(f"Row {row_number}: Subject Employee '{subject_code}' not found.")
            return
        evaluator_employee = cache.employees.get(evaluator_code)
        if evaluator_employee is None:
            result.errors.append(f"Row {row_number}: Evaluator Employee '{evaluator_code}' not found.")
            return

        if is_self_label(label) and subject_employee.id != evaluator_employee.id:
            result.errors.append(
                f"Row {row_number}: Self relationship requires subject and evaluator to be the same employee."
            )
            return

        subject = self._role_record(cache, Role.SUBJECT, subject_employee)
        evaluator = self._role_record(cache, Role.EVALUATOR, evaluator_employee)

        edge = cache.edges.get((subject.id, evaluator.id))
        if edge is None:
            edge = RelationshipEdge(
                id=uuid4(),
                tenant_id=tenant_id,
                subject_id=subject.id,
                evaluator_id=evaluator.id,
                label=label,
                is_active=True,
            )
            self.db.add(edge)
            cache.edges[(subject.id, evaluator.id)] = edge
        else:
            edge.activate()
            if edge.label != label:
                edge.label = label

        assignment = cache.assignments.get(edge.id)
        if assignment is None:
            assignment = Assignment(
                id=uuid4(),
                tenant_id=tenant_id,
                relationship_edge_id=edge.id,
                survey_id=survey.id,
                is_active=True,
            )
            self.db.add(assignment)
            cache.assignments[edge.id] = assignment
        elif not assignment.activate():
            result.conflicts.append(
                f"Row {row_number}: Relationship {subject_code} - {evaluator_code} is already assigned to this survey"
            )
            return

        result.assigned_count += 1
        result.outcomes.append(
            build_outcome(assignment.id, survey.id, tenant_id, subject_employee, evaluator, evaluator_employee)
        )

    def _role_record(self, cache: ImportCache, role: Role, employee: Employee) -> Subject | Evaluator:
        records = cache.records(role)
        record = records.get(employee.employee_code)
        if record is None:
            record = self.resolver.build_record(role, employee)
            self.db.add(record)
            records[employee.employee_code] = record
        else:
            record.activate()
        return record

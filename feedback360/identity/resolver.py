"""Employee-code to role-identity resolution.

An employee code typed into a form or read from an import file names an
``Employee``.  A *role record* (``Subject`` or ``Evaluator``) is the
tenant-scoped projection of that employee used by the relationship graph;
it is created lazily the first time the employee is referenced in that
role, with a deterministic credential so the plaintext can be recomputed
for notification display.

The resolver adds and flushes rows but never commits; the caller owns the
transaction.  Nothing is ever physically deleted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from feedback360.core.errors import NotFoundError
from feedback360.core.security import CredentialService
from feedback360.db.models import Employee, Evaluator, Subject
from feedback360.db.repositories import (
    EmployeeRepository,
    EvaluatorRepository,
    RelationshipEdgeRepository,
    SubjectRepository,
)
from feedback360.db.session import flush

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SUBJECT = "subject"
    EVALUATOR = "evaluator"

    @property
    def model(self) -> type[Subject] | type[Evaluator]:
        return Subject if self is Role.SUBJECT else Evaluator

    @property
    def opposite(self) -> Role:
        return Role.EVALUATOR if self is Role.SUBJECT else Role.SUBJECT

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass
class ResolvedIdentity:
    record: Subject | Evaluator
    employee: Employee
    created: bool = False
    reactivated: bool = False


@dataclass
class BulkCreateResult:
    total_requested: int = 0
    created: list[str] = field(default_factory=list)
    reactivated: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class CodeValidation:
    employee_code: str
    is_valid: bool
    message: str
    record_id: UUID | None = None
    full_name: str | None = None
    is_active: bool | None = None


class IdentityResolver:
    """Resolve employee codes to Subject/Evaluator records, creating them on demand."""

    def __init__(self, db_session: Session, credentials: CredentialService) -> None:
        self.db = db_session
        self.credentials = credentials
        self.employees = EmployeeRepository(db_session)
        self._repos = {
            Role.SUBJECT: SubjectRepository(db_session),
            Role.EVALUATOR: EvaluatorRepository(db_session),
        }

    def repository(self, role: Role) -> SubjectRepository | EvaluatorRepository:
        return self._repos[role]

    # -- resolve ------------------------------------------------------------

    def resolve(self, tenant_id: UUID, employee_code: str, role: Role) -> ResolvedIdentity:
        """Return the active role record for *employee_code*.

        Raises ``NotFoundError`` if the employee is missing or inactive.
        """
        code = (employee_code or "").strip()
        employee = self.employees.get_by_code(tenant_id, code) if code else None
        if employee is None or not employee.is_active:
            raise NotFoundError(f"{role.display_name} Employee '{code}' not found.")

        record = self.repository(role).get_for_employee(tenant_id, employee.id)
        if record is None:
            record = self.build_record(role, employee)
            self.db.add(record)
            flush(self.db)
            logger.info("Created %s %s for employee %s", role.value, record.id, employee.id)
            return ResolvedIdentity(record=record, employee=employee, created=True)

        if record.activate():
            flush(self.db)
            logger.info("Reactivated %s %s", role.value, record.id)
            return ResolvedIdentity(record=record, employee=employee, reactivated=True)

        return ResolvedIdentity(record=record, employee=employee)

    def build_record(self, role: Role, employee: Employee) -> Subject | Evaluator:
        """Construct (but do not add) a new active role record for *employee*."""
        return role.model(
            id=uuid4(),
            tenant_id=employee.tenant_id,
            employee_id=employee.id,
            employee=employee,
            credential_hash=self.credentials.issue(employee.email),
            is_active=True,
        )

    def resolve_many(self, tenant_id: UUID, employee_codes: list[str], role: Role) -> BulkCreateResult:
        """Explicitly create or reactivate role records for a list of codes."""
        result = BulkCreateResult(total_requested=len(employee_codes))
        seen: set[str] = set()
        for raw_code in employee_codes:
            code = (raw_code or "").strip()
            if not code or code in seen:
                continue
            seen.add(code)
            try:
                resolved = self.resolve(tenant_id, code, role)
            except NotFoundError as exc:
                result.errors.append(str(exc))
                continue
            if resolved.created:
                result.created.append(code)
            elif resolved.reactivated:
                result.reactivated.append(code)
            else:
                result.existing.append(code)
        return result

    # -- deactivate -----------------------------------------------------------

    def deactivate(self, tenant_id: UUID, record_id: UUID, role: Role) -> int:
        """Soft-delete a role record and every active edge that references it.

        Returns the number of edges deactivated.
        """
        record = self.repository(role).get_in_tenant(tenant_id, record_id)
        if record is None:
            raise NotFoundError(f"{role.display_name} {record_id} not found")

        record.deactivate()
        edges = RelationshipEdgeRepository(self.db).list_active_for(
            tenant_id,
            subject_id=record.id if role is Role.SUBJECT else None,
            evaluator_id=record.id if role is Role.EVALUATOR else None,
        )
        for edge in edges:
            edge.deactivate()
        flush(self.db)
        logger.info("Deactivated %s %s and %d edge(s)", role.value, record.id, len(edges))
        return len(edges)

    # -- validate -------------------------------------------------------------

    def validate_codes(self, tenant_id: UUID, employee_codes: list[str], role: Role) -> list[CodeValidation]:
        """Report, per code, whether a role record already exists for it."""
        codes = [(code or "").strip() for code in employee_codes]
        records = {
            record.employee.employee_code: record
            for record in self.repository(role).list_by_employee_codes(tenant_id, {c for c in codes if c})
        }

        results: list[CodeValidation] = []
        for code in codes:
            record = records.get(code)
            if record is None:
                results.append(
                    CodeValidation(
                        employee_code=code,
                        is_valid=False,
                        message=f"No {role.value} found with employee code '{code}'",
                    )
                )
                continue
            results.append(
                CodeValidation(
                    employee_code=code,
                    is_valid=True,
                    message=f"{role.display_name} found",
                    record_id=record.id,
                    full_name=record.employee.full_name,
                    is_active=record.is_active,
                )
            )
        return results

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from feedback360.db.models import Employee, Evaluator


@dataclass(frozen=True)
class AssignmentOutcome:
    """A created or reactivated assignment, as seen by the notification side."""

    assignment_id: UUID
    survey_id: UUID
    tenant_id: UUID
    evaluator_id: UUID
    evaluator_email: str
    evaluator_name: str
    evaluator_credential_hash: str
    subject_name: str

    @property
    def email(self) -> str:
        return self.evaluator_email


def build_outcome(
    assignment_id: UUID,
    survey_id: UUID,
    tenant_id: UUID,
    subject_employee: Employee,
    evaluator: Evaluator,
    evaluator_employee: Employee,
) -> AssignmentOutcome:
    return AssignmentOutcome(
        assignment_id=assignment_id,
        survey_id=survey_id,
        tenant_id=tenant_id,
        evaluator_id=evaluator.id,
        evaluator_email=evaluator_employee.email,
        evaluator_name=evaluator_employee.full_name,
        evaluator_credential_hash=evaluator.credential_hash,
        subject_name=subject_employee.full_name,
    )


@dataclass
class AssignmentResult:
    success: bool = True
    message: str = ""
    assigned_count: int = 0
    unassigned_count: int = 0
    errors: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    outcomes: list[AssignmentOutcome] = field(default_factory=list)
    anchor_missing: bool = False

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @classmethod
    def failure(cls, message: str) -> AssignmentResult:
        return cls(success=False, message=message, errors=[message])

    @classmethod
    def not_found(cls, message: str) -> AssignmentResult:
        result = cls.failure(message)
        result.anchor_missing = True
        return result


def summary_message(verb: str, count: int, error_count: int, conflict_count: int = 0) -> str:
    message = f"Successfully {verb} {count} relationship(s)."
    if error_count:
        message += f" {error_count} error(s) occurred."
    if conflict_count:
        message += f" {conflict_count} already assigned."
    return message

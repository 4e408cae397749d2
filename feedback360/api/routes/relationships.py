"""Subject/evaluator relationship routes.

Responses never carry email addresses or credentials; people are
identified by record id, employee code and display name only.
"""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from feedback360.api.deps import get_feedback_service
from feedback360.core.errors import ConflictingWriteError, PersistenceError
from feedback360.identity.resolver import BulkCreateResult, CodeValidation, Role
from feedback360.relationships.graph import Counterpart, RelationshipResult
from feedback360.services import FeedbackService

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["relationships"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CounterpartBody(BaseModel):
    employee_code: str
    relationship: str | None = Field(default=None, max_length=50)


class RelationshipsBody(BaseModel):
    counterparts: list[CounterpartBody]


class EmployeeCodesBody(BaseModel):
    employee_codes: list[str]


class ValidateCodesBody(EmployeeCodesBody):
    role: Role = Role.EVALUATOR


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _serialize_relationship_result(result: RelationshipResult):
    return {
        "successful_connections": result.successful_connections,
        "failed_employee_ids": result.failed_employee_ids,
        "duplicate_connections": result.duplicate_connections,
        "warnings": result.warnings,
    }


def serialize_edge(edge):
    return {
        "id": str(edge.id),
        "subject_id": str(edge.subject_id),
        "subject_employee_code": edge.subject.employee.employee_code,
        "subject_name": edge.subject.employee.full_name,
        "evaluator_id": str(edge.evaluator_id),
        "evaluator_employee_code": edge.evaluator.employee.employee_code,
        "evaluator_name": edge.evaluator.employee.full_name,
        "relationship": edge.label,
        "is_active": edge.is_active,
    }


def _serialize_bulk_result(result: BulkCreateResult):
    return {
        "total_requested": result.total_requested,
        "created": result.created,
        "reactivated": result.reactivated,
        "existing": result.existing,
        "errors": result.errors,
    }


def _serialize_validation(item: CodeValidation):
    return {
        "employee_code": item.employee_code,
        "is_valid": item.is_valid,
        "message": item.message,
        "record_id": str(item.record_id) if item.record_id else None,
        "full_name": item.full_name,
        "is_active": item.is_active,
    }


def _storage_error(exc: PersistenceError) -> HTTPException:
    status_code = 409 if isinstance(exc, ConflictingWriteError) else 500
    return HTTPException(status_code=status_code, detail=str(exc))


def _connect(
    service: FeedbackService,
    tenant_id: UUID,
    anchor_id: UUID,
    anchor_role: Role,
    body: RelationshipsBody,
    *,
    merge: bool,
):
    counterparts = [Counterpart(c.employee_code, c.relationship) for c in body.counterparts]
    operation = service.merge_relationships if merge else service.create_relationships
    try:
        result = operation(anchor_id, counterparts, tenant_id, anchor_role)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PersistenceError as exc:
        raise _storage_error(exc)
    return _serialize_relationship_result(result)


# ---------------------------------------------------------------------------
# Routes: edges
# ---------------------------------------------------------------------------

@router.post("/subjects/{subject_id}/evaluators", summary="Connect evaluators to a subject")
def add_subject_evaluators(
    tenant_id: UUID,
    subject_id: UUID,
    body: RelationshipsBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    return _connect(service, tenant_id, subject_id, Role.SUBJECT, body, merge=False)


@router.put("/subjects/{subject_id}/evaluators", summary="Merge a subject's evaluator list")
def merge_subject_evaluators(
    tenant_id: UUID,
    subject_id: UUID,
    body: RelationshipsBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    return _connect(service, tenant_id, subject_id, Role.SUBJECT, body, merge=True)


@router.post("/evaluators/{evaluator_id}/subjects", summary="Connect subjects to an evaluator")
def add_evaluator_subjects(
    tenant_id: UUID,
    evaluator_id: UUID,
    body: RelationshipsBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    return _connect(service, tenant_id, evaluator_id, Role.EVALUATOR, body, merge=False)


@router.put("/evaluators/{evaluator_id}/subjects", summary="Merge an evaluator's subject list")
def merge_evaluator_subjects(
    tenant_id: UUID,
    evaluator_id: UUID,
    body: RelationshipsBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    return _connect(service, tenant_id, evaluator_id, Role.EVALUATOR, body, merge=True)


@router.get("/subjects/{subject_id}/evaluators", summary="List a subject's active evaluators")
def list_subject_evaluators(
    tenant_id: UUID,
    subject_id: UUID,
    service: FeedbackService = Depends(get_feedback_service),
):
    return [serialize_edge(e) for e in service.list_relationships(tenant_id, subject_id=subject_id)]


@router.get("/evaluators/{evaluator_id}/subjects", summary="List an evaluator's active subjects")
def list_evaluator_subjects(
    tenant_id: UUID,
    evaluator_id: UUID,
    service: FeedbackService = Depends(get_feedback_service),
):
    return [serialize_edge(e) for e in service.list_relationships(tenant_id, evaluator_id=evaluator_id)]


@router.delete("/subjects/{subject_id}/evaluators/{evaluator_id}", summary="Remove a relationship")
def remove_relationship(
    tenant_id: UUID,
    subject_id: UUID,
    evaluator_id: UUID,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        service.remove_relationship(tenant_id, subject_id, evaluator_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PersistenceError as exc:
        raise _storage_error(exc)
    return {"removed": True}


# ---------------------------------------------------------------------------
# Routes: role records
# ---------------------------------------------------------------------------

@router.post("/subjects/bulk", summary="Create subjects from employee codes")
def create_subjects(
    tenant_id: UUID,
    body: EmployeeCodesBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        result = service.create_role_records(tenant_id, body.employee_codes, Role.SUBJECT)
    except PersistenceError as exc:
        raise _storage_error(exc)
    return _serialize_bulk_result(result)


@router.post("/evaluators/bulk", summary="Create evaluators from employee codes")
def create_evaluators(
    tenant_id: UUID,
    body: EmployeeCodesBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        result = service.create_role_records(tenant_id, body.employee_codes, Role.EVALUATOR)
    except PersistenceError as exc:
        raise _storage_error(exc)
    return _serialize_bulk_result(result)


@router.delete("/subjects/{subject_id}", summary="Deactivate a subject and its relationships")
def deactivate_subject(
    tenant_id: UUID,
    subject_id: UUID,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        edges = service.deactivate_role_record(tenant_id, subject_id, Role.SUBJECT)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PersistenceError as exc:
        raise _storage_error(exc)
    return {"deactivated": True, "relationships_deactivated": edges}


@router.delete("/evaluators/{evaluator_id}", summary="Deactivate an evaluator and its relationships")
def deactivate_evaluator(
    tenant_id: UUID,
    evaluator_id: UUID,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        edges = service.deactivate_role_record(tenant_id, evaluator_id, Role.EVALUATOR)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PersistenceError as exc:
        raise _storage_error(exc)
    return {"deactivated": True, "relationships_deactivated": edges}


@router.post("/employee-codes/validate", summary="Validate employee codes against existing records")
def validate_employee_codes(
    tenant_id: UUID,
    body: ValidateCodesBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    results = service.validate_employee_codes(tenant_id, body.employee_codes, body.role)
    valid = sum(1 for r in results if r.is_valid)
    return {
        "results": [_serialize_validation(r) for r in results],
        "total_requested": len(results),
        "valid_count": valid,
        "invalid_count": len(results) - valid,
    }

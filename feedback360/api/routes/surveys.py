"""Survey assignment routes: assign, unassign, bulk import and listings."""
from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from feedback360.api.deps import get_feedback_service
from feedback360.api.routes.relationships import serialize_edge
from feedback360.assignment.bulk_import import ImportRow
from feedback360.assignment.csv_rows import parse_assignment_csv
from feedback360.assignment.results import AssignmentResult
from feedback360.services import FeedbackService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants/{tenant_id}/surveys", tags=["surveys"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class EdgeIdsBody(BaseModel):
    relationship_edge_ids: list[UUID]


class ImportRowBody(BaseModel):
    subject_code: str | None = None
    evaluator_code: str | None = None
    relationship: str | None = None


class ImportBody(BaseModel):
    rows: list[ImportRowBody]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _result_or_error(result: AssignmentResult):
    if result.anchor_missing:
        raise HTTPException(status_code=404, detail=result.message)
    if not result.success:
        raise HTTPException(status_code=500, detail=result.message)
    return {
        "success": result.success,
        "message": result.message,
        "assigned_count": result.assigned_count,
        "unassigned_count": result.unassigned_count,
        "error_count": result.error_count,
        "errors": result.errors,
        "conflicts": result.conflicts,
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/{survey_id}/assign", summary="Assign a survey to relationships")
def assign_survey(
    tenant_id: UUID,
    survey_id: UUID,
    body: EdgeIdsBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    return _result_or_error(service.assign_survey(survey_id, body.relationship_edge_ids, tenant_id))


@router.post("/{survey_id}/unassign", summary="Remove a survey from relationships")
def unassign_survey(
    tenant_id: UUID,
    survey_id: UUID,
    body: EdgeIdsBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    return _result_or_error(service.unassign_survey(survey_id, body.relationship_edge_ids, tenant_id))


@router.post("/{survey_id}/import", summary="Import relationship rows and assign the survey")
def import_rows(
    tenant_id: UUID,
    survey_id: UUID,
    body: ImportBody,
    service: FeedbackService = Depends(get_feedback_service),
):
    rows = [ImportRow(r.subject_code, r.evaluator_code, r.relationship) for r in body.rows]
    return _result_or_error(service.import_assignments_from_rows(survey_id, rows, tenant_id))


@router.post("/{survey_id}/import/csv", summary="Import relationships from an uploaded CSV")
def import_csv(
    tenant_id: UUID,
    survey_id: UUID,
    file: UploadFile = File(...),
    service: FeedbackService = Depends(get_feedback_service),
):
    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only .csv files are supported")
    try:
        rows = parse_assignment_csv(file.file)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Parsed %d row(s) from uploaded CSV for survey %s", len(rows), survey_id)
    return _result_or_error(service.import_assignments_from_rows(survey_id, rows, tenant_id))


@router.get("/{survey_id}/assigned", summary="Relationships the survey is assigned to")
def list_assigned(
    tenant_id: UUID,
    survey_id: UUID,
    search: str | None = None,
    relationship: str | None = None,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        edges = service.list_assigned(tenant_id, survey_id, search, relationship)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return [serialize_edge(e) for e in edges]


@router.get("/{survey_id}/available", summary="Relationships the survey can still be assigned to")
def list_available(
    tenant_id: UUID,
    survey_id: UUID,
    search: str | None = None,
    relationship: str | None = None,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        edges = service.list_available(tenant_id, survey_id, search, relationship)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return [serialize_edge(e) for e in edges]


@router.get("/{survey_id}/assignment-count", summary="Number of active assignments")
def assignment_count(
    tenant_id: UUID,
    survey_id: UUID,
    service: FeedbackService = Depends(get_feedback_service),
):
    try:
        count = service.assignment_count(tenant_id, survey_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"survey_id": str(survey_id), "count": count}

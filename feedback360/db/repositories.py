from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, aliased, contains_eager, joinedload

from feedback360.db import models

ModelT = TypeVar("ModelT")
RoleT = TypeVar("RoleT", models.Subject, models.Evaluator)


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: UUID) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = select(self.model).offset(offset).limit(limit)
        return self.db.execute(stmt).scalars().all()

    def update(self, entity: ModelT, **kwargs) -> ModelT:
        for key, value in kwargs.items():
            setattr(entity, key, value)
        self.db.flush()
        return entity


class TenantRepository(BaseRepository[models.Tenant]):
    model = models.Tenant


class EmployeeRepository(BaseRepository[models.Employee]):
    model = models.Employee

    def get_by_code(self, tenant_id: UUID, employee_code: str) -> models.Employee | None:
        stmt = select(models.Employee).where(
            models.Employee.tenant_id == tenant_id,
            models.Employee.employee_code == employee_code,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_active_by_codes(self, tenant_id: UUID, codes: Collection[str]) -> list[models.Employee]:
        if not codes:
            return []
        stmt = select(models.Employee).where(
            models.Employee.tenant_id == tenant_id,
            models.Employee.is_active.is_(True),
            models.Employee.employee_code.in_(list(codes)),
        )
        return list(self.db.execute(stmt).scalars())


class _RoleRepository(BaseRepository[RoleT]):
    """Shared lookups for the Subject and Evaluator role projections."""

    def get_for_employee(self, tenant_id: UUID, employee_id: UUID) -> RoleT | None:
        stmt = select(self.model).where(
            self.model.tenant_id == tenant_id,
            self.model.employee_id == employee_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_in_tenant(self, tenant_id: UUID, record_id: UUID) -> RoleT | None:
        stmt = (
            select(self.model)
            .join(self.model.employee)
            .options(contains_eager(self.model.employee))
            .where(self.model.id == record_id, self.model.tenant_id == tenant_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_by_employee_codes(self, tenant_id: UUID, codes: Collection[str]) -> list[RoleT]:
        """Role rows (active or not) whose employee code is in *codes*, employee eagerly loaded."""
        if not codes:
            return []
        stmt = (
            select(self.model)
            .join(self.model.employee)
            .options(contains_eager(self.model.employee))
            .where(
                self.model.tenant_id == tenant_id,
                models.Employee.employee_code.in_(list(codes)),
            )
        )
        return list(self.db.execute(stmt).scalars())


class SubjectRepository(_RoleRepository[models.Subject]):
    model = models.Subject


class EvaluatorRepository(_RoleRepository[models.Evaluator]):
    model = models.Evaluator


class RelationshipEdgeRepository(BaseRepository[models.RelationshipEdge]):
    model = models.RelationshipEdge

    def get_pair(self, tenant_id: UUID, subject_id: UUID, evaluator_id: UUID) -> models.RelationshipEdge | None:
        stmt = select(models.RelationshipEdge).where(
            models.RelationshipEdge.tenant_id == tenant_id,
            models.RelationshipEdge.subject_id == subject_id,
            models.RelationshipEdge.evaluator_id == evaluator_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_between(
        self,
        tenant_id: UUID,
        subject_ids: Collection[UUID],
        evaluator_ids: Collection[UUID],
    ) -> list[models.RelationshipEdge]:
        if not subject_ids or not evaluator_ids:
            return []
        stmt = select(models.RelationshipEdge).where(
            models.RelationshipEdge.tenant_id == tenant_id,
            models.RelationshipEdge.subject_id.in_(list(subject_ids)),
            models.RelationshipEdge.evaluator_id.in_(list(evaluator_ids)),
        )
        return list(self.db.execute(stmt).scalars())

    def list_by_ids(self, edge_ids: Collection[UUID]) -> list[models.RelationshipEdge]:
        if not edge_ids:
            return []
        stmt = (
            select(models.RelationshipEdge)
            .options(
                joinedload(models.RelationshipEdge.subject).joinedload(models.Subject.employee),
                joinedload(models.RelationshipEdge.evaluator).joinedload(models.Evaluator.employee),
            )
            .where(models.RelationshipEdge.id.in_(list(edge_ids)))
        )
        return list(self.db.execute(stmt).unique().scalars())

    def list_active_for(
        self,
        tenant_id: UUID,
        *,
        subject_id: UUID | None = None,
        evaluator_id: UUID | None = None,
    ) -> list[models.RelationshipEdge]:
        stmt = (
            select(models.RelationshipEdge)
            .options(
                joinedload(models.RelationshipEdge.subject).joinedload(models.Subject.employee),
                joinedload(models.RelationshipEdge.evaluator).joinedload(models.Evaluator.employee),
            )
            .where(
                models.RelationshipEdge.tenant_id == tenant_id,
                models.RelationshipEdge.is_active.is_(True),
            )
        )
        if subject_id is not None:
            stmt = stmt.where(models.RelationshipEdge.subject_id == subject_id)
        if evaluator_id is not None:
            stmt = stmt.where(models.RelationshipEdge.evaluator_id == evaluator_id)
        return list(self.db.execute(stmt).unique().scalars())

    def list_active_with_endpoints(
        self,
        tenant_id: UUID,
        *,
        search: str | None = None,
        label: str | None = None,
    ) -> list[models.RelationshipEdge]:
        """Active edges whose subject and evaluator are both active, optionally filtered."""
        subject_employee = aliased(models.Employee)
        evaluator_employee = aliased(models.Employee)
        stmt = (
            select(models.RelationshipEdge)
            .join(models.RelationshipEdge.subject)
            .join(models.Subject.employee.of_type(subject_employee))
            .join(models.RelationshipEdge.evaluator)
            .join(models.Evaluator.employee.of_type(evaluator_employee))
            .options(
                contains_eager(models.RelationshipEdge.subject).contains_eager(
                    models.Subject.employee.of_type(subject_employee)
                ),
                contains_eager(models.RelationshipEdge.evaluator).contains_eager(
                    models.Evaluator.employee.of_type(evaluator_employee)
                ),
            )
            .where(
                models.RelationshipEdge.tenant_id == tenant_id,
                models.RelationshipEdge.is_active.is_(True),
                models.Subject.is_active.is_(True),
                models.Evaluator.is_active.is_(True),
            )
            .order_by(subject_employee.first_name, evaluator_employee.first_name)
        )
        if label:
            stmt = stmt.where(func.lower(models.RelationshipEdge.label) == label.strip().lower())
        if search:
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(subject_employee.first_name).like(pattern),
                    func.lower(subject_employee.last_name).like(pattern),
                    func.lower(subject_employee.employee_code).like(pattern),
                    func.lower(evaluator_employee.first_name).like(pattern),
                    func.lower(evaluator_employee.last_name).like(pattern),
                    func.lower(evaluator_employee.employee_code).like(pattern),
                )
            )
        return list(self.db.execute(stmt).scalars())


class SurveyRepository(BaseRepository[models.Survey]):
    model = models.Survey

    def get_active(self, survey_id: UUID) -> models.Survey | None:
        stmt = select(models.Survey).where(
            models.Survey.id == survey_id,
            models.Survey.is_active.is_(True),
        )
        return self.db.execute(stmt).scalar_one_or_none()


class AssignmentRepository(BaseRepository[models.Assignment]):
    model = models.Assignment

    def get_for_edge(self, survey_id: UUID, edge_id: UUID) -> models.Assignment | None:
        stmt = select(models.Assignment).where(
            models.Assignment.survey_id == survey_id,
            models.Assignment.relationship_edge_id == edge_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_edges(self, survey_id: UUID, edge_ids: Collection[UUID]) -> list[models.Assignment]:
        if not edge_ids:
            return []
        stmt = select(models.Assignment).where(
            models.Assignment.survey_id == survey_id,
            models.Assignment.relationship_edge_id.in_(list(edge_ids)),
        )
        return list(self.db.execute(stmt).scalars())

    def active_edge_ids(self, survey_id: UUID) -> set[UUID]:
        stmt = select(models.Assignment.relationship_edge_id).where(
            models.Assignment.survey_id == survey_id,
            models.Assignment.is_active.is_(True),
        )
        return set(self.db.execute(stmt).scalars())

    def count_active(self, survey_id: UUID) -> int:
        stmt = select(func.count()).select_from(models.Assignment).where(
            models.Assignment.survey_id == survey_id,
            models.Assignment.is_active.is_(True),
        )
        return self.db.execute(stmt).scalar_one()

    def list_due_for_reminder(self, created_before: datetime) -> list[models.Assignment]:
        """Active, never-reminded assignments on active surveys created before the cutoff."""
        stmt = (
            select(models.Assignment)
            .join(models.Assignment.survey)
            .join(models.Assignment.edge)
            .options(
                contains_eager(models.Assignment.survey),
                contains_eager(models.Assignment.edge)
                .joinedload(models.RelationshipEdge.subject)
                .joinedload(models.Subject.employee),
                contains_eager(models.Assignment.edge)
                .joinedload(models.RelationshipEdge.evaluator)
                .joinedload(models.Evaluator.employee),
            )
            .where(
                models.Assignment.is_active.is_(True),
                models.Assignment.last_reminder_sent_at.is_(None),
                models.Assignment.created_at < created_before,
                models.Survey.is_active.is_(True),
                models.RelationshipEdge.is_active.is_(True),
            )
            .order_by(models.Assignment.created_at)
        )
        return list(self.db.execute(stmt).unique().scalars())

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint, func, text as sql_text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from feedback360.db.base import Base

RELATIONSHIP_LABEL_MAX = 50
SELF_LABEL = "Self"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SoftDeleteMixin:
    """Two-state Active/Inactive lifecycle shared by every soft-deleted row.

    ``activate`` and ``deactivate`` return ``True`` when the state changed,
    so reactivation is an ordinary transition rather than a special case.
    """

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=sql_text("true"))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    def activate(self) -> bool:
        if self.is_active:
            return False
        self.is_active = True
        self.updated_at = _utcnow()
        return True

    def deactivate(self) -> bool:
        if not self.is_active:
            return False
        self.is_active = False
        self.updated_at = _utcnow()
        return True


class Tenant(SoftDeleteMixin, Base):
    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class Employee(SoftDeleteMixin, Base):
    __tablename__ = "employees"
    __table_args__ = (UniqueConstraint("tenant_id", "employee_code", name="uq_employees_tenant_code"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_code: Mapped[str] = mapped_column(String(50), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="", server_default=sql_text("''"))
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    designation: Mapped[str | None] = mapped_column(String(100), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Subject(SoftDeleteMixin, Base):
    __tablename__ = "subjects"
    __table_args__ = (UniqueConstraint("tenant_id", "employee_id", name="uq_subjects_tenant_employee"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    credential_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    employee: Mapped[Employee] = relationship()


class Evaluator(SoftDeleteMixin, Base):
    __tablename__ = "evaluators"
    __table_args__ = (UniqueConstraint("tenant_id", "employee_id", name="uq_evaluators_tenant_employee"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    credential_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    employee: Mapped[Employee] = relationship()


class RelationshipEdge(SoftDeleteMixin, Base):
    __tablename__ = "subject_evaluators"
    __table_args__ = (
        UniqueConstraint("tenant_id", "subject_id", "evaluator_id", name="uq_subject_evaluators_pair"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id: Mapped[UUID] = mapped_column(ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluator_id: Mapped[UUID] = mapped_column(
        ForeignKey("evaluators.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column("relationship", String(RELATIONSHIP_LABEL_MAX), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    subject: Mapped[Subject] = relationship()
    evaluator: Mapped[Evaluator] = relationship()


class Survey(SoftDeleteMixin, Base):
    __tablename__ = "surveys"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class Assignment(SoftDeleteMixin, Base):
    __tablename__ = "subject_evaluator_surveys"
    __table_args__ = (
        UniqueConstraint("relationship_edge_id", "survey_id", name="uq_subject_evaluator_surveys_edge_survey"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    relationship_edge_id: Mapped[UUID] = mapped_column(
        ForeignKey("subject_evaluators.id", ondelete="CASCADE"), nullable=False
    )
    survey_id: Mapped[UUID] = mapped_column(ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    last_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    edge: Mapped[RelationshipEdge] = relationship()
    survey: Mapped[Survey] = relationship()

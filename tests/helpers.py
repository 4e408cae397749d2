"""Record builders shared across the test modules."""
from uuid import uuid4

from sqlalchemy.orm import Session

from feedback360.db.models import Employee, Survey, Tenant


def make_tenant(db: Session, *, slug: str = "acme", name: str = "Acme Corp", is_active: bool = True) -> Tenant:
    tenant = Tenant(id=uuid4(), name=name, slug=slug, is_active=is_active)
    db.add(tenant)
    db.flush()
    return tenant


def make_employee(
    db: Session,
    tenant: Tenant,
    code: str,
    *,
    first_name: str | None = None,
    last_name: str = "Tester",
    email: str | None = None,
    is_active: bool = True,
) -> Employee:
    employee = Employee(
        id=uuid4(),
        tenant_id=tenant.id,
        employee_code=code,
        first_name=first_name or code.title(),
        last_name=last_name,
        email=email if email is not None else f"{code.lower()}@{tenant.slug}.example",
        is_active=is_active,
    )
    db.add(employee)
    db.flush()
    return employee


def make_survey(db: Session, tenant: Tenant, *, title: str = "Annual 360", is_active: bool = True) -> Survey:
    survey = Survey(id=uuid4(), tenant_id=tenant.id, title=title, is_active=is_active)
    db.add(survey)
    db.flush()
    return survey

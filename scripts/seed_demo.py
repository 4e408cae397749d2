#!/usr/bin/env python3
"""Seed demo data: one tenant, eight employees, a survey and an imported relationship set.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from feedback360.assignment.bulk_import import BulkImportPipeline, ImportRow
from feedback360.core.security import get_credential_service
from feedback360.core.settings import get_settings
from feedback360.db.base import Base
from feedback360.db.models import Employee, Survey, Tenant


def seed(session: Session) -> None:
    """Insert a demo tenant with employees and a survey, then import relationships."""
    tenant = Tenant(id=uuid4(), name="Acme Corp", slug="acme")
    session.add(tenant)

    demo_people = [
        # (code, first, last, designation, department)
        ("EMP001", "Alice", "Johnson", "Engineering Manager", "Engineering"),
        ("EMP002", "Bob", "Smith", "Senior Engineer", "Engineering"),
        ("EMP003", "Priya", "Patel", "Engineer", "Engineering"),
        ("EMP004", "Carlos", "Rivera", "Engineer", "Engineering"),
        ("EMP005", "Fatima", "Khan", "Product Manager", "Product"),
        ("EMP006", "David", "Chen", "Designer", "Product"),
        ("EMP007", "Emily", "Williams", "HR Partner", "People"),
        ("EMP008", "Raj", "Sharma", "Director", "Engineering"),
    ]
    for code, first, last, designation, department in demo_people:
        session.add(
            Employee(
                id=uuid4(),
                tenant_id=tenant.id,
                employee_code=code,
                first_name=first,
                last_name=last,
                email=f"{first.lower()}.{last.lower()}@acme.example",
                designation=designation,
                department=department,
            )
        )

    survey = Survey(id=uuid4(), tenant_id=tenant.id, title="2026 Mid-Year 360 Review")
    session.add(survey)
    session.commit()

    rows = [
        ImportRow("EMP002", "EMP001", "Manager"),
        ImportRow("EMP002", "EMP003", "Peer"),
        ImportRow("EMP002", "EMP002", "Self"),
        ImportRow("EMP003", "EMP001", "Manager"),
        ImportRow("EMP003", "EMP004", "Peer"),
        ImportRow("EMP001", "EMP008", "Manager"),
        ImportRow("EMP001", "EMP002", "Direct Report"),
        ImportRow("EMP005", "EMP006", "Peer"),
    ]
    result = BulkImportPipeline(session, get_credential_service()).run(survey.id, rows, tenant.id)
    print(f"Seeded tenant 'acme' with {len(demo_people)} employees. {result.message}")


def main() -> None:
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        seed(session)


if __name__ == "__main__":
    main()

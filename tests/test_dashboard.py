"""Unit tests for hr/dashboard.py."""

from conftest import make_account

from auth.models import Principal, Role
from hr.models import Employee, Gender, Project


def _employee(hr_store, account, contact_no: str) -> None:
    hr_store.create_employee(
        Employee(
            account_id=account.id,
            employee_name=account.username,
            contact_no=contact_no,
            email=account.email,
            gender=Gender.OTHER,
            department="Engineering",
            sub_department="Platform",
        )
    )


def test_empty_dashboard(dashboard_service):
    assert dashboard_service.get_stats() == {
        "total_projects": 0,
        "total_employees": 0,
        "assigned_employees": 0,
        "bench_employees": 0,
    }


def test_counts_assigned_and_bench(dashboard_service, hr_store, account_store):
    admin = Principal.from_account(make_account(account_store, "admin@x.com", role=Role.ADMIN))
    staff = [make_account(account_store, f"e{i}@x.com", role=Role.EMPLOYEE) for i in range(4)]
    for i, account in enumerate(staff):
        _employee(hr_store, account, f"555{i}")

    # The admin leads the project but has no employee record: not counted.
    hr_store.create_project(
        Project(
            project_name="Apollo",
            start_date="2026-01-01",
            end_date="2026-12-31",
            delivery_manager=staff[0].id,
            manager=staff[0].id,
            lead=admin.id,
            developers=[staff[1].id],
            created_by=admin.id,
        )
    )
    hr_store.create_project(
        Project(
            project_name="Gemini",
            start_date="2026-01-01",
            end_date="2026-12-31",
            delivery_manager=staff[0].id,
            manager=staff[1].id,
            lead=admin.id,
            created_by=admin.id,
        )
    )

    assert dashboard_service.get_stats() == {
        "total_projects": 2,
        "total_employees": 4,
        "assigned_employees": 2,
        "bench_employees": 2,
    }

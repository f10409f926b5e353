"""
hr/employees.py -- Employee records and their link to auth accounts.

Every employee is backed by exactly one account (Employee.account_id).
Creating an employee either adopts the account already registered under the
same email (promoting role user -> employee) or creates a new, pre-verified
employee account. Deleting an employee reverts that promotion.

Permissions:
  create / delete       admin or superadmin
  update                admin, or the employee's own account; non-admins
                        cannot touch department, sub_department, email or
                        leave balances (those keys are dropped, not rejected)
  read                  any authenticated account

Layer rule: may import from auth/ and core/, never from api/.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Optional

from auth.models import ADMIN_ROLES, Account, Principal, Role
from auth.permissions import authorize
from auth.store import AccountStore, normalize_email
from auth.tokens import hash_password
from core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError, require_fields
from hr.models import Employee, Gender, page_meta
from hr.store import HRStore

logger = logging.getLogger("peoplehub.hr.employees")

MAX_PAGE_SIZE = 100

_UPDATABLE = {
    "employee_name",
    "contact_no",
    "email",
    "gender",
    "department",
    "sub_department",
    "sick_leave",
    "casual_leave",
    "privilege_leave",
}
_ADMIN_ONLY = {"department", "sub_department", "email", "sick_leave", "casual_leave", "privilege_leave"}
_LEAVE_FIELDS = ("sick_leave", "casual_leave", "privilege_leave")


def _parse_gender(value) -> Gender:
    try:
        return Gender(value)
    except ValueError as exc:
        allowed = ", ".join(g.value for g in Gender)
        raise ValidationError(f"gender must be one of: {allowed}", code="invalid_gender") from exc


def check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be 1 or greater.", code="invalid_page")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}.", code="invalid_limit")


class EmployeeService:
    """Business rules for employee records."""

    def __init__(self, hr_store: HRStore, accounts: AccountStore, min_password_length: int = 6) -> None:
        self.hr = hr_store
        self.accounts = accounts
        self._min_password_length = min_password_length

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, actor: Principal, data: dict) -> dict:
        """Create an employee, adopting or creating the backing account.

        data keys: employee_name, contact_no, email, gender, department,
        sub_department; password and username are only used when no account
        exists for the email yet.
        """
        authorize(actor, ADMIN_ROLES)
        require_fields(
            employee_name=data.get("employee_name"),
            contact_no=data.get("contact_no"),
            email=data.get("email"),
            gender=data.get("gender"),
            department=data.get("department"),
            sub_department=data.get("sub_department"),
        )
        gender = _parse_gender(data["gender"])
        email = normalize_email(data["email"])
        contact_no = data["contact_no"].strip()

        if self.hr.get_employee_by_email(email) is not None:
            raise ConflictError("Employee with this email already exists.", code="employee_exists")
        if self.hr.get_employee_by_contact(contact_no) is not None:
            raise ConflictError("Employee with this contact number already exists.", code="contact_taken")

        account = self.accounts.get_by_email(email)
        user_created = account is None
        if account is None:
            account = self._create_account(data, email)
        else:
            if self.hr.get_employee_by_account(account.id) is not None:
                raise ConflictError("This account is already linked to an employee.", code="employee_exists")
            if account.role is Role.USER:
                self.accounts.update_account(account.id, role=Role.EMPLOYEE)
                account.role = Role.EMPLOYEE

        employee = Employee(
            account_id=account.id,
            employee_name=data["employee_name"].strip(),
            contact_no=contact_no,
            email=email,
            gender=gender,
            department=data["department"].strip(),
            sub_department=data["sub_department"].strip(),
        )
        employee.id = self.hr.create_employee(employee)
        logger.info(
            "Employee %s created for account %s by account %s (new account: %s)",
            employee.id,
            account.id,
            actor.id,
            user_created,
        )
        return {
            "message": "Employee created successfully",
            "employee": self._present(self.hr.get_employee(employee.id), account),
            "user_created": user_created,
        }

    def _create_account(self, data: dict, email: str) -> Account:
        password = data.get("password")
        require_fields(password=password)
        if len(password) < self._min_password_length:
            raise ValidationError(
                f"Password must be at least {self._min_password_length} characters long.",
                code="password_too_short",
            )
        username = (data.get("username") or "").strip() or "".join(data["employee_name"].lower().split())
        account = Account(
            username=username,
            email=email,
            hashed_password=hash_password(password),
            role=Role.EMPLOYEE,
            verified=True,
        )
        account.id = self.accounts.create_account(account)
        return account

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, employee_id: int) -> dict:
        employee = self._load(employee_id)
        return self._present(employee, self.accounts.get_by_id(employee.account_id))

    def list_employees(
        self,
        page: int = 1,
        limit: int = 10,
        department: Optional[str] = None,
        sub_department: Optional[str] = None,
        gender: Optional[str] = None,
    ) -> dict:
        check_paging(page, limit)
        if gender:
            gender = _parse_gender(gender).value
        employees, total = self.hr.list_employees(
            offset=(page - 1) * limit,
            limit=limit,
            department=department,
            sub_department=sub_department,
            gender=gender,
        )
        accounts = self.accounts.get_by_ids([e.account_id for e in employees])
        return {
            "employees": [self._present(e, accounts.get(e.account_id)) for e in employees],
            **page_meta(page, limit, total),
        }

    def emails(self) -> list[str]:
        return self.hr.list_employee_emails()

    def leaves(self, employee_id: int) -> dict:
        employee = self._load(employee_id)
        return {name: getattr(employee, name) for name in _LEAVE_FIELDS}

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def update(self, actor: Principal, employee_id: int, changes: dict) -> dict:
        employee = self._load(employee_id)
        if not actor.is_admin and employee.account_id != actor.id:
            logger.warning("Account %s denied update of employee %s", actor.id, employee_id)
            raise ForbiddenError("Access denied. You can only update your own profile or be an admin.")

        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(
                "Unknown fields in update.",
                code="unknown_fields",
                errors=[f"{name} cannot be updated" for name in sorted(unknown)],
            )
        if not actor.is_admin:
            changes = {k: v for k, v in changes.items() if k not in _ADMIN_ONLY}

        fields = {}
        for name, value in changes.items():
            if value is None:
                continue
            if isinstance(value, str):
                value = value.strip()
                if not value:
                    raise ValidationError(f"{name} cannot be blank.", code="missing_fields")
            if name == "gender":
                value = _parse_gender(value)
            elif name in _LEAVE_FIELDS and value < 0:
                raise ValidationError(f"{name} cannot be negative.", code="invalid_leave")
            fields[name] = value

        if fields:
            self.hr.update_employee(employee.id, **fields)
            logger.info("Employee %s updated by account %s (%s)", employee.id, actor.id, ", ".join(sorted(fields)))
        return self.get(employee.id)

    def delete(self, actor: Principal, employee_id: int) -> dict:
        """Remove the employee record and revert its account's promotion.

        Refused while the account still holds a position on any project.
        """
        authorize(actor, ADMIN_ROLES)
        employee = self._load(employee_id)
        assigned = self.hr.count_projects_for_member(employee.account_id)
        if assigned:
            raise ConflictError(
                "Cannot delete employee. They are assigned to active projects.",
                code="employee_assigned",
            )

        self.hr.delete_employee(employee.id)
        account = self.accounts.get_by_id(employee.account_id)
        if account is not None and account.role is Role.EMPLOYEE:
            self.accounts.update_account(account.id, role=Role.USER, verified=False)
            self.accounts.delete_sessions(account.id)
        logger.info("Employee %s deleted by account %s", employee.id, actor.id)
        return {"message": "Employee deleted successfully"}

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def accrue_monthly_leave(self, today: Optional[date] = None) -> int:
        """Apply this month's leave accrual once; later calls in the month are no-ops."""
        period = (today or datetime.now(timezone.utc).date()).strftime("%Y-%m")
        updated = self.hr.accrue_monthly_leave(period)
        if updated:
            logger.info("Leave accrual for %s applied to %d employee(s)", period, updated)
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, employee_id: int) -> Employee:
        employee = self.hr.get_employee(employee_id)
        if employee is None:
            raise NotFoundError("Employee not found.", code="employee_not_found")
        return employee

    @staticmethod
    def _present(employee: Employee, account: Optional[Account]) -> dict:
        return {
            "id": employee.id,
            "account_id": employee.account_id,
            "employee_name": employee.employee_name,
            "contact_no": employee.contact_no,
            "email": employee.email,
            "gender": employee.gender.value,
            "department": employee.department,
            "sub_department": employee.sub_department,
            "sick_leave": employee.sick_leave,
            "casual_leave": employee.casual_leave,
            "privilege_leave": employee.privilege_leave,
            "created_at": employee.created_at,
            "updated_at": employee.updated_at,
            "user": account.summary() if account is not None else None,
        }

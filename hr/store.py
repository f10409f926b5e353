"""
hr/store.py -- SQLAlchemy-backed persistence layer for employees and projects.

Uses SQLAlchemy Core (not ORM) so the dataclasses in hr/models.py remain the
authoritative domain representation.

Pattern: Repository + Data Mapper. HRStore is the repository; the _row_to_*
functions are the mappers. Services never touch SQL directly.

Developers are stored in a join table (project_developers) rather than a JSON
column so "projects where account X is a member" stays a single indexed query.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = HRStore("sqlite:///:memory:")
    emp_id = store.create_employee(employee)
    page, total = store.list_employees(offset=0, limit=10, department="Engineering")
    store.close()
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.errors import ConflictError
from hr.models import Employee, Gender, Project, ProjectPriority, ProjectStatus

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_employees = Table(
    "employees",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, unique=True),
    Column("employee_name", String(255), nullable=False),
    Column("contact_no", String(32), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("gender", String(10), nullable=False),
    Column("department", String(100), nullable=False),
    Column("sub_department", String(100), nullable=False),
    Column("sick_leave", Integer, nullable=False, server_default="0"),
    Column("casual_leave", Integer, nullable=False, server_default="1"),
    Column("privilege_leave", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_name", String(100), nullable=False),
    Column("description", Text),
    Column("start_date", String(10), nullable=False),  # YYYY-MM-DD
    Column("end_date", String(10), nullable=False),
    Column("status", String(20), nullable=False, server_default=ProjectStatus.NOT_STARTED.value),
    Column("priority", String(20), nullable=False, server_default=ProjectPriority.MEDIUM.value),
    Column("budget", Float),
    Column("delivery_manager", Integer, nullable=False, index=True),
    Column("manager", Integer, nullable=False, index=True),
    Column("lead", Integer, nullable=False, index=True),
    Column("created_by", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_project_developers = Table(
    "project_developers",
    metadata,
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("account_id", Integer, primary_key=True, index=True),
)

_leave_accruals = Table(
    "leave_accruals",
    metadata,
    Column("period", String(7), primary_key=True),  # YYYY-MM
    Column("applied_at", String(32), nullable=False),
)

_EMPLOYEE_FIELDS = {
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
_PROJECT_FIELDS = {
    "project_name",
    "description",
    "start_date",
    "end_date",
    "status",
    "priority",
    "budget",
    "delivery_manager",
    "manager",
    "lead",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _enum_values(fields: dict) -> dict:
    """Store enum members by value."""
    return {k: (v.value if hasattr(v, "value") else v) for k, v in fields.items()}


def _member_clause(account_id: int):
    """WHERE clause: account_id holds any position on the project."""
    return or_(
        _projects.c.delivery_manager == account_id,
        _projects.c.manager == account_id,
        _projects.c.lead == account_id,
        _projects.c.id.in_(select(_project_developers.c.project_id).where(_project_developers.c.account_id == account_id)),
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class HRStore:
    """Repository for Employee and Project entities."""

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Employees
    # ------------------------------------------------------------------

    def create_employee(self, employee: Employee) -> int:
        """Insert an employee and return its id.

        Raises ConflictError when the account, email or contact number is
        already linked to another employee record.
        """
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _employees.insert().values(
                        account_id=employee.account_id,
                        employee_name=employee.employee_name,
                        contact_no=employee.contact_no,
                        email=employee.email.strip().lower(),
                        gender=Gender(employee.gender).value,
                        department=employee.department,
                        sub_department=employee.sub_department,
                        sick_leave=employee.sick_leave,
                        casual_leave=employee.casual_leave,
                        privilege_leave=employee.privilege_leave,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("Employee with this email or contact number already exists.") from exc
        return result.inserted_primary_key[0]

    def get_employee(self, employee_id: int) -> Optional[Employee]:
        return self._one_employee(_employees.c.id == employee_id)

    def get_employee_by_email(self, email: str) -> Optional[Employee]:
        return self._one_employee(_employees.c.email == email.strip().lower())

    def get_employee_by_contact(self, contact_no: str) -> Optional[Employee]:
        return self._one_employee(_employees.c.contact_no == contact_no)

    def get_employee_by_account(self, account_id: int) -> Optional[Employee]:
        return self._one_employee(_employees.c.account_id == account_id)

    def _one_employee(self, clause) -> Optional[Employee]:
        with self.engine.connect() as conn:
            row = conn.execute(_employees.select().where(clause)).fetchone()
        return _row_to_employee(row) if row is not None else None

    def list_employees(
        self,
        offset: int = 0,
        limit: int = 10,
        department: Optional[str] = None,
        sub_department: Optional[str] = None,
        gender: Optional[str] = None,
    ) -> tuple[list[Employee], int]:
        """Return (page, total) newest first, filtered by the given fields."""
        clauses = []
        if department:
            clauses.append(_employees.c.department == department)
        if sub_department:
            clauses.append(_employees.c.sub_department == sub_department)
        if gender:
            clauses.append(_employees.c.gender == Gender(gender).value)
        query = _employees.select().where(*clauses)
        count_query = select(func.count()).select_from(_employees).where(*clauses)
        with self.engine.connect() as conn:
            rows = conn.execute(
                query.order_by(_employees.c.created_at.desc(), _employees.c.id.desc()).offset(offset).limit(limit)
            ).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_employee(r) for r in rows], total

    def list_employee_emails(self) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_employees.c.email).order_by(_employees.c.email)).fetchall()
        return [r.email for r in rows]

    def employee_account_ids(self) -> set[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_employees.c.account_id)).fetchall()
        return {r.account_id for r in rows}

    def update_employee(self, employee_id: int, **fields) -> bool:
        """Update mutable employee fields. Returns False if the id was not found."""
        unknown = set(fields) - _EMPLOYEE_FIELDS
        if unknown:
            raise ValueError(f"Unknown employee fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        values = _enum_values(fields)
        values["updated_at"] = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_employees.update().where(_employees.c.id == employee_id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("Employee with this email or contact number already exists.") from exc
        return result.rowcount > 0

    def delete_employee(self, employee_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_employees.delete().where(_employees.c.id == employee_id))
            conn.commit()
        return result.rowcount > 0

    def count_employees(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_employees)).scalar() or 0

    def accrue_monthly_leave(self, period: str) -> int:
        """Monthly leave update: casual resets to 1, privilege and sick +1.

        period ("YYYY-MM") is recorded in the same transaction, so a period is
        applied at most once. Returns the number of employee records updated,
        0 when the period was already applied.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(_leave_accruals.insert().values(period=period, applied_at=_now_iso()))
                result = conn.execute(
                    _employees.update().values(
                        casual_leave=1,
                        privilege_leave=_employees.c.privilege_leave + 1,
                        sick_leave=_employees.c.sick_leave + 1,
                        updated_at=_now_iso(),
                    )
                )
        except IntegrityError:
            return 0
        return result.rowcount

    def accrual_applied(self, period: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_leave_accruals.c.period).where(_leave_accruals.c.period == period)).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> int:
        """Insert a project and its developer rows in one transaction."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _projects.insert().values(
                    project_name=project.project_name,
                    description=project.description,
                    start_date=project.start_date,
                    end_date=project.end_date,
                    status=ProjectStatus(project.status).value,
                    priority=ProjectPriority(project.priority).value,
                    budget=project.budget,
                    delivery_manager=project.delivery_manager,
                    manager=project.manager,
                    lead=project.lead,
                    created_by=project.created_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            project_id = result.inserted_primary_key[0]
            self._write_developers(conn, project_id, project.developers)
        return project_id

    def get_project(self, project_id: int) -> Optional[Project]:
        with self.engine.connect() as conn:
            row = conn.execute(_projects.select().where(_projects.c.id == project_id)).fetchone()
            if row is None:
                return None
            developers = self._developers_for(conn, [project_id])
        return _row_to_project(row, developers.get(project_id, []))

    def get_project_by_name(self, name: str) -> Optional[Project]:
        """Case-insensitive exact-name lookup."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _projects.select().where(func.lower(_projects.c.project_name) == name.strip().lower())
            ).fetchone()
            if row is None:
                return None
            developers = self._developers_for(conn, [row.id])
        return _row_to_project(row, developers.get(row.id, []))

    def list_projects(
        self,
        offset: int = 0,
        limit: int = 10,
        member_id: Optional[int] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        manager: Optional[int] = None,
        lead: Optional[int] = None,
    ) -> tuple[list[Project], int]:
        """Return (page, total) newest first.

        member_id restricts results to projects where that account holds any
        position; the other arguments are exact-match filters.
        """
        clauses = []
        if member_id is not None:
            clauses.append(_member_clause(member_id))
        if status:
            clauses.append(_projects.c.status == ProjectStatus(status).value)
        if priority:
            clauses.append(_projects.c.priority == ProjectPriority(priority).value)
        if manager is not None:
            clauses.append(_projects.c.manager == manager)
        if lead is not None:
            clauses.append(_projects.c.lead == lead)
        with self.engine.connect() as conn:
            rows = conn.execute(
                _projects.select()
                .where(*clauses)
                .order_by(_projects.c.created_at.desc(), _projects.c.id.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
            total = conn.execute(select(func.count()).select_from(_projects).where(*clauses)).scalar() or 0
            developers = self._developers_for(conn, [r.id for r in rows])
        return [_row_to_project(r, developers.get(r.id, [])) for r in rows], total

    def list_all_projects(self) -> list[Project]:
        with self.engine.connect() as conn:
            rows = conn.execute(_projects.select().order_by(_projects.c.created_at.desc(), _projects.c.id.desc())).fetchall()
            developers = self._developers_for(conn, [r.id for r in rows])
        return [_row_to_project(r, developers.get(r.id, [])) for r in rows]

    def projects_for_member(self, account_id: int) -> list[Project]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _projects.select()
                .where(_member_clause(account_id))
                .order_by(_projects.c.created_at.desc(), _projects.c.id.desc())
            ).fetchall()
            developers = self._developers_for(conn, [r.id for r in rows])
        return [_row_to_project(r, developers.get(r.id, [])) for r in rows]

    def count_projects_for_member(self, account_id: int) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(select(func.count()).select_from(_projects).where(_member_clause(account_id))).scalar()
                or 0
            )

    def update_project(self, project_id: int, developers: Optional[list[int]] = None, **fields) -> bool:
        """Update project fields; developers (when given) replaces the whole list."""
        unknown = set(fields) - _PROJECT_FIELDS
        if unknown:
            raise ValueError(f"Unknown project fields: {unknown!r}")
        values = _enum_values(fields)
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_projects.update().where(_projects.c.id == project_id).values(**values))
            if result.rowcount == 0:
                return False
            if developers is not None:
                conn.execute(_project_developers.delete().where(_project_developers.c.project_id == project_id))
                self._write_developers(conn, project_id, developers)
        return True

    def delete_project(self, project_id: int) -> bool:
        with self.engine.begin() as conn:
            conn.execute(_project_developers.delete().where(_project_developers.c.project_id == project_id))
            result = conn.execute(_projects.delete().where(_projects.c.id == project_id))
        return result.rowcount > 0

    def count_projects(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_projects)).scalar() or 0

    def assigned_account_ids(self) -> set[int]:
        """Every account id holding any position on any project."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(_projects.c.delivery_manager, _projects.c.manager, _projects.c.lead)).fetchall()
            dev_rows = conn.execute(select(_project_developers.c.account_id)).fetchall()
        assigned = {member for row in rows for member in row}
        assigned.update(r.account_id for r in dev_rows)
        return assigned

    @staticmethod
    def _write_developers(conn, project_id: int, developers: list[int]) -> None:
        unique = list(dict.fromkeys(developers))
        if unique:
            conn.execute(
                _project_developers.insert(),
                [{"project_id": project_id, "account_id": account_id} for account_id in unique],
            )

    @staticmethod
    def _developers_for(conn, project_ids: list[int]) -> dict[int, list[int]]:
        if not project_ids:
            return {}
        rows = conn.execute(
            select(_project_developers.c.project_id, _project_developers.c.account_id)
            .where(_project_developers.c.project_id.in_(project_ids))
            .order_by(_project_developers.c.account_id)
        ).fetchall()
        grouped: dict[int, list[int]] = {}
        for row in rows:
            grouped.setdefault(row.project_id, []).append(row.account_id)
        return grouped

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_employee(row) -> Employee:
    return Employee(
        id=row.id,
        account_id=row.account_id,
        employee_name=row.employee_name,
        contact_no=row.contact_no,
        email=row.email,
        gender=Gender(row.gender),
        department=row.department,
        sub_department=row.sub_department,
        sick_leave=row.sick_leave,
        casual_leave=row.casual_leave,
        privilege_leave=row.privilege_leave,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_project(row, developers: list[int]) -> Project:
    return Project(
        id=row.id,
        project_name=row.project_name,
        description=row.description,
        start_date=row.start_date,
        end_date=row.end_date,
        status=ProjectStatus(row.status),
        priority=ProjectPriority(row.priority),
        budget=row.budget,
        delivery_manager=row.delivery_manager,
        manager=row.manager,
        lead=row.lead,
        developers=developers,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

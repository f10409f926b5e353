"""
hr/models.py -- Domain dataclasses for employees and projects.

Data containers plus Project's team-membership lookup and the pagination
envelope used by list endpoints. Business rules (who may create, update
or delete what) live in hr/employees.py and hr/projects.py; persistence in
hr/store.py.

Employee.account_id and every Project team field reference auth accounts by
id. The HR store never reads the accounts table; services resolve member
details through AccountStore.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class ProjectStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class ProjectPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProjectRole(str, Enum):
    """A member's position on one project team."""

    DELIVERY_MANAGER = "delivery_manager"
    MANAGER = "manager"
    LEAD = "lead"
    DEVELOPER = "developer"


@dataclass
class Employee:
    """An employee record linked one-to-one with an auth account.

    email is stored lowercased. Leave balances are whole days and are
    adjusted by the monthly accrual job (see HRStore.accrue_monthly_leave).

    id is None before the record is written to the database.
    """

    account_id: int
    employee_name: str
    contact_no: str
    email: str
    gender: Gender
    department: str
    sub_department: str
    sick_leave: int = 0
    casual_leave: int = 1
    privilege_leave: int = 0
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Project:
    """A project and its team.

    The team is a small hierarchy: one delivery manager, one manager, one
    lead and any number of developers, each an account id. One account may
    hold several positions on the same project.

    id is None before the record is written to the database.
    """

    project_name: str
    start_date: str  # YYYY-MM-DD
    end_date: str  # YYYY-MM-DD
    delivery_manager: int
    manager: int
    lead: int
    created_by: int
    developers: list[int] = field(default_factory=list)
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.NOT_STARTED
    priority: ProjectPriority = ProjectPriority.MEDIUM
    budget: Optional[float] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""

    def member_ids(self) -> set[int]:
        return {self.delivery_manager, self.manager, self.lead, *self.developers}

    def role_of(self, account_id: int) -> Optional[ProjectRole]:
        """Highest-ranking position held by account_id, or None."""
        if account_id == self.delivery_manager:
            return ProjectRole.DELIVERY_MANAGER
        if account_id == self.manager:
            return ProjectRole.MANAGER
        if account_id == self.lead:
            return ProjectRole.LEAD
        if account_id in self.developers:
            return ProjectRole.DEVELOPER
        return None


def page_meta(page: int, limit: int, total: int) -> dict:
    """Pagination envelope shared by the employee and project listings."""
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }

"""
hr/projects.py -- Projects and their team hierarchy.

A team is delivery manager -> manager -> lead -> developers, each position
holding an account id. Every member must be an existing account whose role is
employee, admin or superadmin (STAFF_ROLES); plain users cannot be staffed.

Permissions:
  create / delete       admin or superadmin
  update                admin, or the project's manager or delivery manager
  get                   admin, or any team member
  list / tree           admins see every project, others only their own
  by user               admin, or the user asking about themselves

Project names are unique case-insensitively. A project that is in progress
cannot be deleted; change its status first.

Layer rule: may import from auth/ and core/, never from api/.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from auth.models import ADMIN_ROLES, STAFF_ROLES, Account, Principal
from auth.permissions import authorize
from auth.store import AccountStore
from core.errors import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError, require_fields
from hr.employees import check_paging
from hr.models import Project, ProjectPriority, ProjectRole, ProjectStatus, page_meta
from hr.store import HRStore

logger = logging.getLogger("peoplehub.hr.projects")

_TEAM_FIELDS = ("delivery_manager", "manager", "lead")
_UPDATABLE = {
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
    "developers",
}


def _parse_date(name: str, value) -> str:
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError as exc:
        raise ValidationError(f"{name} must be a date in YYYY-MM-DD format.", code="invalid_date") from exc


def _parse_enum(enum_cls, name: str, value):
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{name} must be one of: {allowed}", code=f"invalid_{name}") from exc


def _check_dates(start_date: str, end_date: str) -> None:
    if end_date < start_date:
        raise ValidationError("end_date cannot be before start_date.", code="invalid_date_range")


def _check_budget(budget) -> None:
    if budget is not None and budget < 0:
        raise ValidationError("budget cannot be negative.", code="invalid_budget")


def _member(account: Optional[Account], account_id: int) -> dict:
    if account is None:
        return {"id": account_id, "username": None, "email": None}
    return {"id": account.id, "username": account.username, "email": account.email}


class ProjectService:
    """Business rules for projects and team membership."""

    def __init__(self, hr_store: HRStore, accounts: AccountStore) -> None:
        self.hr = hr_store
        self.accounts = accounts

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, actor: Principal, data: dict) -> dict:
        authorize(actor, ADMIN_ROLES)
        require_fields(
            project_name=data.get("project_name"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            delivery_manager=data.get("delivery_manager"),
            manager=data.get("manager"),
            lead=data.get("lead"),
        )
        start_date = _parse_date("start_date", data["start_date"])
        end_date = _parse_date("end_date", data["end_date"])
        _check_dates(start_date, end_date)
        _check_budget(data.get("budget"))
        status = _parse_enum(ProjectStatus, "status", data.get("status") or ProjectStatus.NOT_STARTED)
        priority = _parse_enum(ProjectPriority, "priority", data.get("priority") or ProjectPriority.MEDIUM)

        developers = list(dict.fromkeys(data.get("developers") or []))
        self._check_team([data["delivery_manager"], data["manager"], data["lead"], *developers])

        name = data["project_name"].strip()
        if self.hr.get_project_by_name(name) is not None:
            raise ConflictError("Project with this name already exists.", code="project_exists")

        project = Project(
            project_name=name,
            description=data.get("description"),
            start_date=start_date,
            end_date=end_date,
            status=status,
            priority=priority,
            budget=data.get("budget"),
            delivery_manager=data["delivery_manager"],
            manager=data["manager"],
            lead=data["lead"],
            developers=developers,
            created_by=actor.id,
        )
        project.id = self.hr.create_project(project)
        logger.info("Project %s created by account %s", project.id, actor.id)
        return {"message": "Project created successfully", "project": self._present(self.hr.get_project(project.id))}

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, actor: Principal, project_id: int) -> dict:
        project = self._load(project_id)
        if not actor.is_admin and actor.id not in project.member_ids():
            logger.warning("Account %s denied access to project %s", actor.id, project_id)
            raise ForbiddenError("Access denied. You are not a member of this project.")
        return self._present(project)

    def list_projects(
        self,
        actor: Principal,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        manager: Optional[int] = None,
        lead: Optional[int] = None,
    ) -> dict:
        """Paginated listing; non-admins only ever see projects they are on."""
        check_paging(page, limit)
        if status:
            status = _parse_enum(ProjectStatus, "status", status).value
        if priority:
            priority = _parse_enum(ProjectPriority, "priority", priority).value
        projects, total = self.hr.list_projects(
            offset=(page - 1) * limit,
            limit=limit,
            member_id=None if actor.is_admin else actor.id,
            status=status,
            priority=priority,
            manager=manager,
            lead=lead,
        )
        accounts = self._accounts_for(projects)
        return {"projects": [self._present(p, accounts) for p in projects], **page_meta(page, limit, total)}

    def projects_for_user(self, actor: Principal, account_id: int) -> list[dict]:
        """Projects where account_id holds a position, tagged with that position."""
        if not actor.is_admin and actor.id != account_id:
            logger.warning("Account %s denied project list of account %s", actor.id, account_id)
            raise ForbiddenError("Access denied. You can only view your own projects.")
        projects = self.hr.projects_for_member(account_id)
        accounts = self._accounts_for(projects)
        result = []
        for project in projects:
            item = self._present(project, accounts)
            item["user_role"] = project.role_of(account_id).value
            result.append(item)
        return result

    def tree(self, actor: Principal) -> list[dict]:
        """Each visible project with its team nested by reporting line."""
        if actor.is_admin:
            projects = self.hr.list_all_projects()
        else:
            projects = self.hr.projects_for_member(actor.id)
        accounts = self._accounts_for(projects)

        def node(account_id: int, role: ProjectRole, reports: list[dict]) -> dict:
            return {**_member(accounts.get(account_id), account_id), "role": role.value, "reports": reports}

        tree = []
        for p in projects:
            developers = [node(d, ProjectRole.DEVELOPER, []) for d in p.developers]
            lead = node(p.lead, ProjectRole.LEAD, developers)
            manager = node(p.manager, ProjectRole.MANAGER, [lead])
            tree.append(
                {
                    "id": p.id,
                    "project_name": p.project_name,
                    "status": p.status.value,
                    "priority": p.priority.value,
                    "team": node(p.delivery_manager, ProjectRole.DELIVERY_MANAGER, [manager]),
                }
            )
        return tree

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def update(self, actor: Principal, project_id: int, changes: dict) -> dict:
        project = self._load(project_id)
        if not actor.is_admin and actor.id not in (project.manager, project.delivery_manager):
            logger.warning("Account %s denied update of project %s", actor.id, project_id)
            raise ForbiddenError(
                "Access denied. Only admins, project managers, or delivery managers can update projects."
            )

        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(
                "Unknown fields in update.",
                code="unknown_fields",
                errors=[f"{name} cannot be updated" for name in sorted(unknown)],
            )
        changes = {k: v for k, v in changes.items() if v is not None}

        fields = {}
        if "project_name" in changes:
            name = changes["project_name"].strip()
            if not name:
                raise ValidationError("project_name cannot be blank.", code="missing_fields")
            existing = self.hr.get_project_by_name(name)
            if existing is not None and existing.id != project.id:
                raise ConflictError("Project with this name already exists.", code="project_exists")
            fields["project_name"] = name
        if "description" in changes:
            fields["description"] = changes["description"]
        for name in ("start_date", "end_date"):
            if name in changes:
                fields[name] = _parse_date(name, changes[name])
        _check_dates(fields.get("start_date", project.start_date), fields.get("end_date", project.end_date))
        if "status" in changes:
            fields["status"] = _parse_enum(ProjectStatus, "status", changes["status"])
        if "priority" in changes:
            fields["priority"] = _parse_enum(ProjectPriority, "priority", changes["priority"])
        if "budget" in changes:
            _check_budget(changes["budget"])
            fields["budget"] = changes["budget"]

        developers = None
        team_ids = [changes[name] for name in _TEAM_FIELDS if name in changes]
        if "developers" in changes:
            developers = list(dict.fromkeys(changes["developers"]))
            team_ids.extend(developers)
        if team_ids:
            self._check_team(team_ids)
        for name in _TEAM_FIELDS:
            if name in changes:
                fields[name] = changes[name]

        if fields or developers is not None:
            self.hr.update_project(project.id, developers=developers, **fields)
            changed = sorted([*fields, *(["developers"] if developers is not None else [])])
            logger.info("Project %s updated by account %s (%s)", project.id, actor.id, ", ".join(changed))
        return self._present(self.hr.get_project(project.id))

    def delete(self, actor: Principal, project_id: int) -> dict:
        authorize(actor, ADMIN_ROLES)
        project = self._load(project_id)
        if project.status is ProjectStatus.IN_PROGRESS:
            raise StateError(
                "Cannot delete project that is currently in progress. Please change status first.",
                code="project_in_progress",
            )
        self.hr.delete_project(project.id)
        logger.info("Project %s deleted by account %s", project.id, actor.id)
        return {"message": "Project deleted successfully"}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, project_id: int) -> Project:
        project = self.hr.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found.", code="project_not_found")
        return project

    def _check_team(self, account_ids: list[int]) -> None:
        unique = list(dict.fromkeys(account_ids))
        found = self.accounts.get_by_ids(unique)
        invalid = [i for i in unique if i not in found or found[i].role not in STAFF_ROLES]
        if invalid:
            raise ValidationError(
                "One or more assigned users do not exist or are not employees.",
                code="invalid_team_member",
                errors=[f"account {i} cannot be assigned" for i in invalid],
            )

    def _accounts_for(self, projects: list[Project]) -> dict[int, Account]:
        ids: set[int] = set()
        for p in projects:
            ids.update(p.member_ids())
            ids.add(p.created_by)
        return self.accounts.get_by_ids(list(ids))

    def _present(self, project: Project, accounts: Optional[dict[int, Account]] = None) -> dict:
        if accounts is None:
            accounts = self._accounts_for([project])
        return {
            "id": project.id,
            "project_name": project.project_name,
            "description": project.description,
            "start_date": project.start_date,
            "end_date": project.end_date,
            "status": project.status.value,
            "priority": project.priority.value,
            "budget": project.budget,
            "delivery_manager": _member(accounts.get(project.delivery_manager), project.delivery_manager),
            "manager": _member(accounts.get(project.manager), project.manager),
            "lead": _member(accounts.get(project.lead), project.lead),
            "developers": [_member(accounts.get(d), d) for d in project.developers],
            "created_by": _member(accounts.get(project.created_by), project.created_by),
            "created_at": project.created_at,
            "updated_at": project.updated_at,
        }

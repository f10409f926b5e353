"""
api/routes/v1/projects.py -- Project and team endpoints.

Routes:
  POST   /api/v1/projects                    -- create (admin only)
  GET    /api/v1/projects                    -- paginated list; non-admins see their own
  GET    /api/v1/projects/tree               -- projects with nested team hierarchy
  GET    /api/v1/projects/user/{account_id}  -- projects an account is on, with its role
  GET    /api/v1/projects/{id}               -- one project (admin or team member)
  PUT    /api/v1/projects/{id}               -- update (admin, manager, delivery manager)
  DELETE /api/v1/projects/{id}               -- delete (admin only; not while in progress)

/projects/tree and /projects/user/... are registered before /projects/{id}.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    MessageResponse,
    ProjectCreate,
    ProjectCreatedResponse,
    ProjectListResponse,
    ProjectPriorityEnum,
    ProjectResponse,
    ProjectStatusEnum,
    ProjectUpdate,
)
from auth.guard import get_current_principal, require_admin
from auth.models import Principal
from hr.employees import MAX_PAGE_SIZE
from hr.projects import ProjectService

# Auth policy:
# - POST, DELETE:   admin or superadmin (require_admin)
# - everything else: any authenticated account; membership and manager
#                    checks happen in ProjectService
router = APIRouter()


def _projects(request: Request) -> ProjectService:
    return request.app.state.projects


@router.post("/projects", response_model=ProjectCreatedResponse, status_code=201)
def create_project(
    request: Request,
    body: ProjectCreate,
    principal: Principal = Depends(require_admin),
) -> ProjectCreatedResponse:
    result = _projects(request).create(principal, body.model_dump(mode="json"))
    return ProjectCreatedResponse(**result)


@router.get("/projects", response_model=ProjectListResponse)
def list_projects(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[ProjectStatusEnum] = None,
    priority: Optional[ProjectPriorityEnum] = None,
    manager: Optional[int] = None,
    lead: Optional[int] = None,
    principal: Principal = Depends(get_current_principal),
) -> ProjectListResponse:
    result = _projects(request).list_projects(
        principal,
        page=page,
        limit=limit,
        status=status.value if status else None,
        priority=priority.value if priority else None,
        manager=manager,
        lead=lead,
    )
    return ProjectListResponse(**result)


@router.get("/projects/tree", response_model=list[dict])
def project_tree(request: Request, principal: Principal = Depends(get_current_principal)) -> list[dict]:
    """Projects with their team as delivery manager -> manager -> lead -> developers."""
    return _projects(request).tree(principal)


@router.get("/projects/user/{account_id}", response_model=list[ProjectResponse])
def projects_for_user(
    request: Request,
    account_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[ProjectResponse]:
    return [ProjectResponse(**p) for p in _projects(request).projects_for_user(principal, account_id)]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    return ProjectResponse(**_projects(request).get(principal, project_id))


@router.put("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    request: Request,
    project_id: int,
    body: ProjectUpdate,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    changes = body.model_dump(mode="json", exclude_unset=True)
    return ProjectResponse(**_projects(request).update(principal, project_id, changes))


@router.delete("/projects/{project_id}", response_model=MessageResponse)
def delete_project(
    request: Request,
    project_id: int,
    principal: Principal = Depends(require_admin),
) -> MessageResponse:
    return MessageResponse(**_projects(request).delete(principal, project_id))

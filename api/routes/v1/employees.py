"""
api/routes/v1/employees.py -- Employee record endpoints.

Routes:
  POST   /api/v1/employees               -- create (admin only)
  GET    /api/v1/employees               -- paginated list with filters
  GET    /api/v1/employees/emails        -- every employee email, sorted
  GET    /api/v1/employees/{id}          -- one employee with its account
  GET    /api/v1/employees/{id}/leaves   -- leave balances
  PUT    /api/v1/employees/{id}          -- update (admin, or the employee)
  DELETE /api/v1/employees/{id}          -- delete (admin only)

/employees/emails is registered before /employees/{id} so "emails" is never
parsed as an id.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from api.models import (
    EmployeeCreate,
    EmployeeCreatedResponse,
    EmployeeListResponse,
    EmployeeResponse,
    EmployeeUpdate,
    GenderEnum,
    LeaveBalance,
    MessageResponse,
)
from auth.guard import get_current_principal, require_admin
from auth.models import Principal
from hr.employees import MAX_PAGE_SIZE, EmployeeService

# Auth policy:
# - POST, DELETE:        admin or superadmin (require_admin)
# - GET (all), PUT:      any authenticated account; PUT ownership is checked
#                        in EmployeeService.update
router = APIRouter()


def _employees(request: Request) -> EmployeeService:
    return request.app.state.employees


@router.post("/employees", response_model=EmployeeCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_employee(
    request: Request,
    body: EmployeeCreate,
    principal: Principal = Depends(require_admin),
) -> EmployeeCreatedResponse:
    """Create an employee, adopting an existing account with the same email.

    When no account exists, one is created with role employee, already
    verified, using body.password.
    """
    result = _employees(request).create(principal, body.model_dump(mode="json"))
    return EmployeeCreatedResponse(**result)


@router.get("/employees", response_model=EmployeeListResponse)
def list_employees(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    department: Optional[str] = Query(default=None, max_length=100),
    sub_department: Optional[str] = Query(default=None, max_length=100),
    gender: Optional[GenderEnum] = None,
    principal: Principal = Depends(get_current_principal),
) -> EmployeeListResponse:
    result = _employees(request).list_employees(
        page=page,
        limit=limit,
        department=department,
        sub_department=sub_department,
        gender=gender.value if gender else None,
    )
    return EmployeeListResponse(**result)


@router.get("/employees/emails", response_model=list[str])
def list_employee_emails(request: Request, principal: Principal = Depends(get_current_principal)) -> list[str]:
    return _employees(request).emails()


@router.get("/employees/{employee_id}", response_model=EmployeeResponse)
def get_employee(
    request: Request,
    employee_id: int,
    principal: Principal = Depends(get_current_principal),
) -> EmployeeResponse:
    return EmployeeResponse(**_employees(request).get(employee_id))


@router.get("/employees/{employee_id}/leaves", response_model=LeaveBalance)
def get_employee_leaves(
    request: Request,
    employee_id: int,
    principal: Principal = Depends(get_current_principal),
) -> LeaveBalance:
    return LeaveBalance(**_employees(request).leaves(employee_id))


@router.put("/employees/{employee_id}", response_model=EmployeeResponse)
def update_employee(
    request: Request,
    employee_id: int,
    body: EmployeeUpdate,
    principal: Principal = Depends(get_current_principal),
) -> EmployeeResponse:
    """Update the fields present in the body.

    Non-admins may only update their own record, and department,
    sub_department, email and leave balances are ignored for them.
    """
    changes = body.model_dump(mode="json", exclude_unset=True)
    return EmployeeResponse(**_employees(request).update(principal, employee_id, changes))


@router.delete("/employees/{employee_id}", response_model=MessageResponse)
def delete_employee(
    request: Request,
    employee_id: int,
    principal: Principal = Depends(require_admin),
) -> MessageResponse:
    """Delete the employee; 409 while they still hold a project position."""
    return MessageResponse(**_employees(request).delete(principal, employee_id))

"""
API request and response models for PeopleHub REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
hr/models.py, which own the internal domain representation. Route handlers
map between the two.

Request fields the services validate themselves (required fields, password
rules, team membership) are Optional here on purpose: the service raises a
ValidationError listing every missing field, which a Pydantic 400 could not
phrase the same way for all callers.

Separation of concerns: auth/ and hr/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    superadmin = "superadmin"
    admin = "admin"
    user = "user"
    employee = "employee"


class GenderEnum(str, Enum):
    Male = "Male"
    Female = "Female"
    Other = "Other"


class ProjectStatusEnum(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"
    on_hold = "on_hold"
    cancelled = "cancelled"


class ProjectPriorityEnum(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    errors lists per-field problems (missing fields, request validation) when
    there is more than one thing to fix.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    errors: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    Not stripped at the model level: the password must reach the hash exactly
    as typed. AuthService trims username and email itself.
    """

    username: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=128)
    confirm_password: Optional[str] = Field(default=None, max_length=128)


class VerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)
    code: Optional[str] = Field(default=None, max_length=32)


class EmailRequest(BaseModel):
    """Body for endpoints that only take an email (resend, forgot-password)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Passwords are not stripped; leading/trailing spaces are significant.
    """

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=128)


class ResetPasswordRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    reset_code: Optional[str] = Field(default=None, max_length=32)
    new_password: Optional[str] = Field(default=None, max_length=128)
    confirm_password: Optional[str] = Field(default=None, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = Field(default=None, max_length=128)
    new_password: Optional[str] = Field(default=None, max_length=128)
    confirm_password: Optional[str] = Field(default=None, max_length=128)


class RefreshRequest(BaseModel):
    """Optional body for POST /api/v1/auth/refresh; the cookie is used when absent."""

    refresh_token: Optional[str] = None


class RoleUpdate(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{id}/role."""

    role: RoleEnum


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Sanitized account: never carries the password hash or one-time codes."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str
    verified: bool


class SignupUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    verified: bool


class SignupResponse(BaseModel):
    """Response body for POST /signup and POST /verify."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: SignupUser


class LoginResponse(BaseModel):
    """Response body for POST /api/v1/auth/login and /refresh.

    The same tokens are also set as httpOnly cookies for browser clients.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserSummary
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int


# ---------------------------------------------------------------------------
# Employees
# ---------------------------------------------------------------------------


class EmployeeCreate(BaseModel):
    """Request body for POST /api/v1/employees.

    password and username are used only when no account exists for email;
    an existing account is adopted instead.

    Strings are trimmed by EmployeeService, not here, so password keeps
    its edge spaces.
    """

    employee_name: Optional[str] = Field(default=None, max_length=255)
    contact_no: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    gender: Optional[GenderEnum] = None
    department: Optional[str] = Field(default=None, max_length=100)
    sub_department: Optional[str] = Field(default=None, max_length=100)
    password: Optional[str] = Field(default=None, max_length=128)
    username: Optional[str] = Field(default=None, max_length=100)


class EmployeeUpdate(BaseModel):
    """Request body for PUT /api/v1/employees/{id}. Only set fields change."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    employee_name: Optional[str] = Field(default=None, max_length=255)
    contact_no: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    gender: Optional[GenderEnum] = None
    department: Optional[str] = Field(default=None, max_length=100)
    sub_department: Optional[str] = Field(default=None, max_length=100)
    sick_leave: Optional[int] = Field(default=None, ge=0)
    casual_leave: Optional[int] = Field(default=None, ge=0)
    privilege_leave: Optional[int] = Field(default=None, ge=0)


class EmployeeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    account_id: int
    employee_name: str
    contact_no: str
    email: str
    gender: str
    department: str
    sub_department: str
    sick_leave: int
    casual_leave: int
    privilege_leave: int
    created_at: str
    updated_at: str
    user: Optional[UserSummary] = None


class EmployeeCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    employee: EmployeeResponse
    user_created: bool


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_next: bool
    has_prev: bool


class EmployeeListResponse(Pagination):
    model_config = ConfigDict(frozen=True)

    employees: list[EmployeeResponse]


class LeaveBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    sick_leave: int
    casual_leave: int
    privilege_leave: int


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    """Request body for POST /api/v1/projects. Team fields are account ids."""

    model_config = ConfigDict(str_strip_whitespace=True)

    project_name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[ProjectStatusEnum] = None
    priority: Optional[ProjectPriorityEnum] = None
    budget: Optional[float] = Field(default=None, ge=0)
    delivery_manager: Optional[int] = None
    manager: Optional[int] = None
    lead: Optional[int] = None
    developers: list[int] = Field(default_factory=list, max_length=100)


class ProjectUpdate(BaseModel):
    """Request body for PUT /api/v1/projects/{id}. developers replaces the whole list."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    project_name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[ProjectStatusEnum] = None
    priority: Optional[ProjectPriorityEnum] = None
    budget: Optional[float] = Field(default=None, ge=0)
    delivery_manager: Optional[int] = None
    manager: Optional[int] = None
    lead: Optional[int] = None
    developers: Optional[list[int]] = Field(default=None, max_length=100)


class TeamMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: Optional[str]
    email: Optional[str]


class ProjectResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    project_name: str
    description: Optional[str]
    start_date: str
    end_date: str
    status: str
    priority: str
    budget: Optional[float]
    delivery_manager: TeamMember
    manager: TeamMember
    lead: TeamMember
    developers: list[TeamMember]
    created_by: TeamMember
    created_at: str
    updated_at: str
    user_role: Optional[str] = None


class ProjectCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    project: ProjectResponse


class ProjectListResponse(Pagination):
    model_config = ConfigDict(frozen=True)

    projects: list[ProjectResponse]


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class DashboardStats(BaseModel):
    """Response for GET /api/v1/dashboard/stats."""

    model_config = ConfigDict(frozen=True)

    total_projects: int
    total_employees: int
    assigned_employees: int
    bench_employees: int

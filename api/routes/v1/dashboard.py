"""
api/routes/v1/dashboard.py -- Aggregated headcount metrics for the admin dashboard.

Returns a single payload suitable for driving dashboard widgets:
  - Total project and employee counts
  - Employees currently staffed on a project vs on the bench

This is a read-only aggregate route -- no mutations here.
"""

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import DashboardStats
from auth.guard import get_current_principal

# Auth policy:
# - GET /api/v1/dashboard/stats: requires auth -- headcount data is internal
# Router-level dependency enforces auth; the single handler does not repeat it.
router = APIRouter(dependencies=[Depends(get_current_principal)])


@limiter.limit("60/minute")
@router.get("/dashboard/stats", response_model=DashboardStats)
def get_stats(request: Request) -> DashboardStats:
    """Return project and staffing totals.

    Response:
      total_projects      -- number of projects in any status
      total_employees     -- number of employee records
      assigned_employees  -- employees holding at least one project position
      bench_employees     -- total_employees - assigned_employees
    """
    return DashboardStats(**request.app.state.dashboard.get_stats())

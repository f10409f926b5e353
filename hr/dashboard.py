"""
hr/dashboard.py -- Headline numbers for the admin dashboard.

assigned_employees counts distinct employee accounts holding any position on
any project. Team members without an employee record (e.g. admins staffed on a
project) are not counted, so bench_employees never goes negative.
"""

from hr.store import HRStore


class DashboardService:
    def __init__(self, hr_store: HRStore) -> None:
        self.hr = hr_store

    def get_stats(self) -> dict:
        total_employees = self.hr.count_employees()
        assigned = len(self.hr.assigned_account_ids() & self.hr.employee_account_ids())
        return {
            "total_projects": self.hr.count_projects(),
            "total_employees": total_employees,
            "assigned_employees": assigned,
            "bench_employees": total_employees - assigned,
        }

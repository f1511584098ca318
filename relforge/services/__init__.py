# SPDX-License-Identifier: MIT
"""Application services for the relforge CLI.

Services implement release planning and publishing, coordinating between the
domain layer (core/) and external tools (dotnet, gh) through platform/.
"""

from relforge.services.release.executor import ExecutorSettings, execute_plan
from relforge.services.release.planner import PlanSettings, plan_release
from relforge.services.release.versions import resolve_versions

__all__ = [
    # Planning
    "PlanSettings",
    "plan_release",
    "resolve_versions",
    # Publishing
    "ExecutorSettings",
    "execute_plan",
]

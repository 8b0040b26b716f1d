"""
Fix Result Model
================
Terminal output of exactly one pipeline run.

Statuses:
    applied       — sandbox passed, fix committed and merged into trunk
    pr_created    — sandbox passed, fix pushed on a branch for human review
    tests_failed  — sandbox failed, nothing was mutated
    rejected      — no actionable patch, a git failure, or an unexpected error
"""
from typing import Literal, Optional

from pydantic import BaseModel

from incident_agent.models.test_result import TestResult
from incident_agent.models.vcs_result import ApplyResult, PullRequestResult

FixStatus = Literal["applied", "pr_created", "tests_failed", "rejected"]


class FixResult(BaseModel):
    status: FixStatus
    incident_id: str = ""
    message: str = ""
    patch: Optional[str] = None
    test_result: Optional[TestResult] = None
    apply_result: Optional[ApplyResult] = None
    pr: Optional[PullRequestResult] = None

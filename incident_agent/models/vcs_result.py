"""
Version Control Results
=======================
Returned by the Executor. A failed git step never raises out of the
Executor; it shows up here as success=False plus an error string.

Fields:
    branch        — the agent/fix-<epoch-ms> branch (empty if never created)
    success       — True only when every step of the sequence completed
    error         — first failing git step and its stderr
    rolled_back   — True if the fix branch was discarded after a failure
"""
from typing import Optional

from pydantic import BaseModel


class ApplyResult(BaseModel):
    branch: str = ""
    success: bool = False
    merged: bool = False
    commit_sha: str = ""
    error: Optional[str] = None
    rolled_back: bool = False


class PullRequestResult(BaseModel):
    branch: str = ""
    success: bool = False
    title: str = ""
    description: str = ""
    pushed: bool = False
    commit_sha: str = ""
    error: Optional[str] = None
    rolled_back: bool = False

"""
Incident Model
==============
The read-only input of one pipeline run. Created by the external
monitoring/CI system and never mutated by the agent.

Fields:
    id              — caller-assigned incident identifier (audit key)
    type            — test_fail / runtime_error / performance / security
    timestamp       — when the incident was detected
    stack_trace     — optional raw trace
    failing_tests   — test names; each one gets a targeted sandbox command
    affected_files  — files the reporter believes are involved
    context         — opaque reporter payload, passed through to the prompt
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

IncidentType = Literal["test_fail", "runtime_error", "performance", "security"]


class Incident(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: IncidentType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stack_trace: Optional[str] = None
    failing_tests: List[str] = Field(default_factory=list)
    affected_files: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)

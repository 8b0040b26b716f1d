"""
Audit Entry Models
==================
One record per line of the audit trail, discriminated by `action`.

Every record carries:
    schema_version — format version of the line (AUDIT_SCHEMA_VERSION)
    timestamp      — filled by the Auditor at write time when absent
    incident_id    — the incident the record belongs to (None for global notes)

Kinds:
    incident_received  — intake of an Incident
    diagnosis          — every ProviderResponse, including failed providers
    fusion             — the FusionResult
    plan_created       — the Plan handed to the sandbox
    test_result        — the sandbox TestResult
    applied            — ApplyResult after an unattended apply
    pr_created         — PullRequestResult after pushing for review
    rejected           — terminal rejection with its reason
    note               — free-form details for external callers
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from incident_agent.models.diagnosis import FusionResult, ProviderResponse
from incident_agent.models.incident import Incident
from incident_agent.models.plan import Plan
from incident_agent.models.test_result import TestResult
from incident_agent.models.vcs_result import ApplyResult, PullRequestResult

AUDIT_SCHEMA_VERSION = 1


class _AuditRecord(BaseModel):
    schema_version: int = AUDIT_SCHEMA_VERSION
    timestamp: Optional[datetime] = None
    incident_id: Optional[str] = None


class IncidentLogged(_AuditRecord):
    action: Literal["incident_received"] = "incident_received"
    incident: Incident


class DiagnosisLogged(_AuditRecord):
    action: Literal["diagnosis"] = "diagnosis"
    prompt: str = ""
    responses: List[ProviderResponse] = Field(default_factory=list)


class FusionLogged(_AuditRecord):
    action: Literal["fusion"] = "fusion"
    fusion: FusionResult


class PlanLogged(_AuditRecord):
    action: Literal["plan_created"] = "plan_created"
    plan: Plan


class TestResultLogged(_AuditRecord):
    __test__ = False

    action: Literal["test_result"] = "test_result"
    test_result: TestResult


class ApplyLogged(_AuditRecord):
    action: Literal["applied"] = "applied"
    apply_result: ApplyResult
    test_result: Optional[TestResult] = None


class PRLogged(_AuditRecord):
    action: Literal["pr_created"] = "pr_created"
    pr: PullRequestResult
    test_result: Optional[TestResult] = None


class RejectedLogged(_AuditRecord):
    action: Literal["rejected"] = "rejected"
    reason: str


class NoteLogged(_AuditRecord):
    action: Literal["note"] = "note"
    details: Dict[str, Any] = Field(default_factory=dict)


AuditEntry = Annotated[
    Union[
        IncidentLogged,
        DiagnosisLogged,
        FusionLogged,
        PlanLogged,
        TestResultLogged,
        ApplyLogged,
        PRLogged,
        RejectedLogged,
        NoteLogged,
    ],
    Field(discriminator="action"),
]

audit_entry_adapter = TypeAdapter(AuditEntry)

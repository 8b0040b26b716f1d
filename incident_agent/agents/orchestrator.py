"""
Orchestrator Agent
==================
The only entry point external callers use. Drives one incident through

    INTAKE -> DIAGNOSE -> FUSE -> PLAN -> AUDIT(plan) -> SANDBOX_TEST
        -> tests_failed                                   (terminal)
        -> DECIDE -> APPLY (merge to trunk) | PR (push for review)

Core Guarantees:
    - Write-ahead audit: each state's output is logged (awaited) before
      the next state starts, so a crash leaves a recoverable trail.
    - Safety invariant: Executor.apply_patch is only called after a
      sandbox run of the same plan returned passed=True.
    - An empty plan patch is non-actionable and rejected before the sandbox.
    - handle_incident() never raises: unexpected errors become a
      "rejected" FixResult.

Decision Rule:
    APPLY iff auto-apply is enabled AND risk < AUTO_APPLY_MAX_RISK (0.4)
    AND confidence > AUTO_APPLY_MIN_CONFIDENCE (0.7). Otherwise PR.

Concurrency:
    Independent incidents may run as concurrent handle_incident() calls.
    The Executor serializes access to the shared working tree.
"""
import inspect
import logging
from typing import List, Optional, Protocol

from incident_agent.agents.executor import Executor
from incident_agent.agents.planner import Planner
from incident_agent.core.config import (
    AUTO_APPLY,
    AUTO_APPLY_MAX_RISK,
    AUTO_APPLY_MIN_CONFIDENCE,
    DIAGNOSIS_TEMPERATURE,
)
from incident_agent.executor.sandbox_runner import SandboxRunner
from incident_agent.llm.client import ProviderAdapter
from incident_agent.llm.fusion import ResponseFusion
from incident_agent.llm.prompts import build_diagnostic_prompt, build_pr_description, build_pr_title
from incident_agent.models.audit import (
    ApplyLogged,
    DiagnosisLogged,
    FusionLogged,
    IncidentLogged,
    PlanLogged,
    PRLogged,
    RejectedLogged,
    TestResultLogged,
)
from incident_agent.models.diagnosis import FusionResult, ProviderResponse
from incident_agent.models.fix_result import FixResult
from incident_agent.models.incident import Incident
from incident_agent.models.plan import Plan
from incident_agent.models.test_result import TestResult
from incident_agent.services.auditor import Auditor
from incident_agent.services.repo_service import GitRepository

logger = logging.getLogger(__name__)


class DiagnosisProvider(Protocol):
    async def call_all_providers(self, prompt: str, temperature: float = ...) -> List[ProviderResponse]:
        ...


class FusionEngine(Protocol):
    def fuse(self, responses: List[ProviderResponse]) -> FusionResult:
        ...


class Orchestrator:
    """
    Composes the pipeline collaborators. Every collaborator is injectable;
    defaults are built from configuration.

    Usage:
        result = await Orchestrator().handle_incident(incident)
    """

    def __init__(
        self,
        provider_adapter: Optional[DiagnosisProvider] = None,
        fusion: Optional[FusionEngine] = None,
        planner: Optional[Planner] = None,
        sandbox_runner: Optional[SandboxRunner] = None,
        executor: Optional[Executor] = None,
        auditor: Optional[Auditor] = None,
        auto_apply: Optional[bool] = None,
        max_risk: float = AUTO_APPLY_MAX_RISK,
        min_confidence: float = AUTO_APPLY_MIN_CONFIDENCE,
    ) -> None:
        self.provider_adapter = provider_adapter or ProviderAdapter()
        self.fusion = fusion or ResponseFusion(
            weights={p.name: p.weight for p in getattr(self.provider_adapter, "providers", [])}
        )
        self.planner = planner or Planner()
        # sandbox worktrees and fix branches share one repository handle and lock
        repo = GitRepository() if sandbox_runner is None or executor is None else None
        self.sandbox_runner = sandbox_runner or SandboxRunner(repo=repo)
        self.executor = executor or Executor(repo=repo)
        self.auditor = auditor or Auditor()
        self.auto_apply = AUTO_APPLY if auto_apply is None else auto_apply
        self.max_risk = max_risk
        self.min_confidence = min_confidence

    def should_auto_apply(self, fusion: FusionResult) -> bool:
        return (
            self.auto_apply
            and fusion.risk_score < self.max_risk
            and fusion.confidence > self.min_confidence
        )

    async def handle_incident(self, incident: Incident) -> FixResult:
        logger.info("Processing incident %s (%s)", incident.id, incident.type)
        try:
            result = await self._run(incident)
        except Exception as e:
            logger.exception("Pipeline for incident %s aborted", incident.id)
            result = await self._reject(incident, f"Pipeline aborted: {type(e).__name__}: {e}")

        logger.info("Incident %s finished: %s", incident.id, result.status)
        return result

    # -------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------
    async def _run(self, incident: Incident) -> FixResult:
        # INTAKE
        await self.auditor.log(IncidentLogged(incident_id=incident.id, incident=incident))

        # DIAGNOSE
        prompt = build_diagnostic_prompt(incident)
        responses = await self.provider_adapter.call_all_providers(prompt, temperature=DIAGNOSIS_TEMPERATURE)
        await self.auditor.log(DiagnosisLogged(incident_id=incident.id, prompt=prompt, responses=responses))

        # FUSE
        fusion = self.fusion.fuse(responses)
        if inspect.isawaitable(fusion):
            fusion = await fusion
        await self.auditor.log(FusionLogged(incident_id=incident.id, fusion=fusion))
        logger.info(
            "Incident %s fusion: confidence=%.2f risk=%.2f providers=%s",
            incident.id, fusion.confidence, fusion.risk_score, ",".join(fusion.providers) or "-",
        )

        # PLAN + AUDIT(plan)
        plan = self.planner.create_plan(fusion, incident)
        await self.auditor.log(PlanLogged(incident_id=incident.id, plan=plan))

        if not plan.is_actionable:
            return await self._reject(incident, "No actionable patch: providers proposed no usable fix")

        # SANDBOX_TEST
        test_result = await self.sandbox_runner.run_tests(plan)
        await self.auditor.log(TestResultLogged(incident_id=incident.id, test_result=test_result))

        if not test_result.passed:
            return FixResult(
                status="tests_failed",
                incident_id=incident.id,
                patch=plan.patch,
                test_result=test_result,
                message=f"Sandbox tests failed ({test_result.failed}/{test_result.total} failing); nothing applied",
            )

        # DECIDE
        if self.should_auto_apply(fusion):
            return await self._apply(incident, plan, test_result)
        return await self._open_review(incident, fusion, plan, test_result)

    async def _apply(self, incident: Incident, plan: Plan, test_result: TestResult) -> FixResult:
        if not test_result.passed:
            raise RuntimeError("refusing to apply a patch whose sandbox run did not pass")

        apply_result = await self.executor.apply_patch(plan.patch, create_branch=True, auto_merge=True)
        await self.auditor.log(
            ApplyLogged(incident_id=incident.id, apply_result=apply_result, test_result=test_result)
        )

        if not apply_result.success:
            result = await self._reject(incident, f"Apply failed: {apply_result.error}")
            return result.model_copy(update={
                "patch": plan.patch, "test_result": test_result, "apply_result": apply_result,
            })

        return FixResult(
            status="applied",
            incident_id=incident.id,
            patch=plan.patch,
            test_result=test_result,
            apply_result=apply_result,
            message=(
                f"Fix applied automatically on {apply_result.branch} and merged. "
                f"Tests: {test_result.total - test_result.failed}/{test_result.total} passed"
            ),
        )

    async def _open_review(
        self,
        incident: Incident,
        fusion: FusionResult,
        plan: Plan,
        test_result: TestResult,
    ) -> FixResult:
        pr = await self.executor.create_pull_request(
            plan.patch,
            title=build_pr_title(incident),
            description=build_pr_description(incident, fusion, test_result),
        )
        await self.auditor.log(PRLogged(incident_id=incident.id, pr=pr, test_result=test_result))

        if not pr.success:
            result = await self._reject(incident, f"Review branch failed: {pr.error}")
            return result.model_copy(update={"patch": plan.patch, "test_result": test_result, "pr": pr})

        return FixResult(
            status="pr_created",
            incident_id=incident.id,
            patch=plan.patch,
            test_result=test_result,
            pr=pr,
            message=f"Review branch {pr.branch} pushed. Confidence: {fusion.confidence * 100:.0f}%",
        )

    async def _reject(self, incident: Incident, reason: str) -> FixResult:
        logger.warning("Incident %s rejected: %s", incident.id, reason)
        await self.auditor.log(RejectedLogged(incident_id=incident.id, reason=reason))
        return FixResult(status="rejected", incident_id=incident.id, message=reason)

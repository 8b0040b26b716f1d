"""
Orchestrator Tests
==================
Drives the full pipeline with providers, sandbox and git mocked. The
Auditor is real and writes under tmp_path, so the audit trail itself is
checked too.
"""
import asyncio
import re
import shlex
import shutil
import subprocess
import sys

import pytest
from unittest.mock import AsyncMock, MagicMock

from incident_agent.agents.executor import Executor
from incident_agent.agents.orchestrator import Orchestrator
from incident_agent.agents.planner import Planner
from incident_agent.executor.process import LocalProcessRunner
from incident_agent.executor.sandbox_runner import SandboxRunner
from incident_agent.models.diagnosis import FusionResult, ProviderResponse
from incident_agent.models.incident import Incident
from incident_agent.models.test_result import TestResult
from incident_agent.models.vcs_result import ApplyResult, PullRequestResult
from incident_agent.services.auditor import Auditor
from incident_agent.services.repo_service import GitRepository

INCIDENT = Incident(id="INC-42", type="test_fail", failing_tests=["testFoo"])


def _fusion(confidence=0.85, risk=0.2, patch="diff A"):
    return FusionResult(
        confidence=confidence,
        risk_score=risk,
        consensus_response="[openai] null check missing",
        providers=["openai", "gemini"],
        patch=patch,
    )


def _passed():
    return TestResult(passed=True, total=5, failed=0, duration_ms=120, output="ok")


def _failed():
    return TestResult(passed=False, total=5, failed=2, duration_ms=120, output="2 failed")


@pytest.fixture
def adapter():
    mock = MagicMock()
    mock.providers = []
    mock.call_all_providers = AsyncMock(return_value=[
        ProviderResponse(provider="openai", content="{}", patch="diff A", confidence=0.9),
    ])
    return mock


@pytest.fixture
def fusion():
    mock = MagicMock()
    mock.fuse.return_value = _fusion()
    return mock


@pytest.fixture
def sandbox():
    mock = MagicMock(spec=SandboxRunner)
    mock.run_tests = AsyncMock(return_value=_passed())
    return mock


@pytest.fixture
def executor():
    mock = MagicMock(spec=Executor)
    mock.apply_patch = AsyncMock(return_value=ApplyResult(
        branch="agent/fix-1760000000000", success=True, merged=True, commit_sha="abc123",
    ))
    mock.create_pull_request = AsyncMock(return_value=PullRequestResult(
        branch="agent/fix-1760000000001", success=True, pushed=True, title="t",
    ))
    return mock


@pytest.fixture
def auditor(tmp_path):
    return Auditor(str(tmp_path / "audit.log"))


@pytest.fixture
def orchestrator(adapter, fusion, sandbox, executor, auditor):
    return Orchestrator(
        provider_adapter=adapter,
        fusion=fusion,
        planner=Planner(test_command="pytest", targeted_test_command="pytest -k {test}"),
        sandbox_runner=sandbox,
        executor=executor,
        auditor=auditor,
        auto_apply=True,
    )


def _actions(auditor, incident_id="INC-42"):
    return [e.action for e in asyncio.run(auditor.get_history(incident_id))]


# ---------------------------------------------------------------------------
# 1. Terminal outcomes
# ---------------------------------------------------------------------------
def test_low_risk_fix_is_applied(orchestrator, executor, sandbox, auditor):
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "applied"
    assert re.match(r"^agent/fix-\d+$", result.apply_result.branch)
    assert result.patch == "diff A"
    executor.apply_patch.assert_awaited_once_with("diff A", create_branch=True, auto_merge=True)
    executor.create_pull_request.assert_not_awaited()

    plan = sandbox.run_tests.await_args.args[0]
    assert plan.test_commands == ["pytest", "pytest -k testFoo"]

    assert _actions(auditor) == [
        "incident_received", "diagnosis", "fusion", "plan_created", "test_result", "applied",
    ]


def test_failing_sandbox_never_touches_git(orchestrator, executor, sandbox, auditor):
    sandbox.run_tests.return_value = _failed()
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "tests_failed"
    assert result.test_result.failed == 2
    assert executor.apply_patch.await_count == 0
    assert executor.create_pull_request.await_count == 0
    assert _actions(auditor)[-1] == "test_result"


def test_risky_fix_goes_to_review(orchestrator, fusion, executor, auditor):
    fusion.fuse.return_value = _fusion(confidence=0.5, risk=0.6)
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "pr_created"
    executor.apply_patch.assert_not_awaited()
    kwargs = executor.create_pull_request.await_args.kwargs
    assert kwargs["title"] == "Agent Fix: test_fail (INC-42)"
    assert "INC-42" in kwargs["description"]
    assert _actions(auditor)[-1] == "pr_created"


def test_auto_apply_disabled_goes_to_review(orchestrator, executor):
    orchestrator.auto_apply = False
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "pr_created"
    executor.apply_patch.assert_not_awaited()


def test_empty_patch_is_rejected_before_sandbox(orchestrator, fusion, sandbox, executor, auditor):
    fusion.fuse.return_value = _fusion(patch=None)
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "rejected"
    assert "No actionable patch" in result.message
    sandbox.run_tests.assert_not_awaited()
    executor.apply_patch.assert_not_awaited()
    assert _actions(auditor) == [
        "incident_received", "diagnosis", "fusion", "plan_created", "rejected",
    ]


def test_apply_failure_is_rejected(orchestrator, executor):
    executor.apply_patch.return_value = ApplyResult(
        branch="agent/fix-1", success=False, error="git merge failed: conflict", rolled_back=True,
    )
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "rejected"
    assert "conflict" in result.message
    assert result.apply_result.rolled_back is True
    assert result.test_result.passed is True


def test_review_failure_is_rejected(orchestrator, fusion, executor):
    fusion.fuse.return_value = _fusion(confidence=0.5, risk=0.6)
    executor.create_pull_request.return_value = PullRequestResult(
        branch="agent/fix-1", success=False, error="git push failed: rejected",
    )
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "rejected"
    assert result.pr.error == "git push failed: rejected"


def test_unexpected_error_never_escapes(orchestrator, adapter, executor, auditor):
    adapter.call_all_providers.side_effect = RuntimeError("network on fire")
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))

    assert result.status == "rejected"
    assert "network on fire" in result.message
    executor.apply_patch.assert_not_awaited()
    assert _actions(auditor) == ["incident_received", "rejected"]


def test_async_fusion_engine_is_awaited(orchestrator, fusion):
    fusion.fuse = AsyncMock(return_value=_fusion())
    result = asyncio.run(orchestrator.handle_incident(INCIDENT))
    assert result.status == "applied"


# ---------------------------------------------------------------------------
# 2. Decision rule
# ---------------------------------------------------------------------------
@pytest.mark.parametrize("confidence, risk, expected", [
    (0.9, 0.1, True),
    (0.85, 0.2, True),
    (0.85, 0.4, False),   # risk must be strictly below
    (0.7, 0.2, False),    # confidence must be strictly above
    (0.99, 0.9, False),
    (0.0, 0.0, False),
])
def test_decision_thresholds(orchestrator, confidence, risk, expected):
    assert orchestrator.should_auto_apply(_fusion(confidence=confidence, risk=risk)) is expected


def test_high_risk_is_never_applied(orchestrator, fusion, executor):
    for confidence in (0.71, 0.9, 1.0):
        fusion.fuse.return_value = _fusion(confidence=confidence, risk=0.9)
        asyncio.run(orchestrator.handle_incident(INCIDENT))
    assert executor.apply_patch.await_count == 0
    assert executor.create_pull_request.await_count == 3


# ---------------------------------------------------------------------------
# 3. Concurrency
# ---------------------------------------------------------------------------
def test_concurrent_incidents_keep_separate_trails(orchestrator, auditor):
    incidents = [Incident(id=f"INC-{n}", type="runtime_error") for n in range(5)]

    async def run_test():
        return await asyncio.gather(*(orchestrator.handle_incident(i) for i in incidents))

    results = asyncio.run(run_test())
    assert [r.incident_id for r in results] == [i.id for i in incidents]
    for incident in incidents:
        assert _actions(auditor, incident.id)[0] == "incident_received"
        assert _actions(auditor, incident.id)[-1] == "applied"


# ---------------------------------------------------------------------------
# 4. Real sandbox
# ---------------------------------------------------------------------------
FIX_PATCH = (
    "--- a/app.py\n"
    "+++ b/app.py\n"
    "@@ -1,2 +1,2 @@\n"
    " def f():\n"
    "-    return 1\n"
    "+    return 2\n"
)
CHECK_F = shlex.quote(sys.executable) + ' -c "import app, sys; sys.exit(0 if app.f() == 2 else 1)"'


@pytest.fixture
def real_sandbox(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    for args in (
        ["init"],
        ["checkout", "-b", "main"],
    ):
        subprocess.run(["git", *args], cwd=root, check=True, capture_output=True)
    (root / "app.py").write_text("def f():\n    return 1\n")
    subprocess.run(["git", "add", "-A"], cwd=root, check=True, capture_output=True)
    subprocess.run(
        ["git", "-c", "user.name=Dev", "-c", "user.email=dev@x", "commit", "-m", "init"],
        cwd=root, check=True, capture_output=True,
    )
    repo = GitRepository(str(root), trunk="main")
    return SandboxRunner(runner=LocalProcessRunner(cwd=str(root)), repo=repo, timeout_seconds=30)


@pytest.mark.skipif(
    shutil.which("git") is None or sys.platform == "win32", reason="needs git and a POSIX shell",
)
@pytest.mark.parametrize("patch, expected", [
    (FIX_PATCH, "applied"),
    (FIX_PATCH.replace("+    return 2", "+    return 3"), "tests_failed"),
])
def test_sandbox_validates_the_proposed_patch(
    adapter, fusion, executor, auditor, real_sandbox, patch, expected,
):
    fusion.fuse.return_value = _fusion(patch=patch)
    orchestrator = Orchestrator(
        provider_adapter=adapter,
        fusion=fusion,
        planner=Planner(test_command=CHECK_F),
        sandbox_runner=real_sandbox,
        executor=executor,
        auditor=auditor,
        auto_apply=True,
    )
    result = asyncio.run(orchestrator.handle_incident(Incident(id="INC-42", type="runtime_error")))

    assert result.status == expected
    assert executor.apply_patch.await_count == (1 if expected == "applied" else 0)


def test_default_collaborators_share_one_repository(adapter, fusion, auditor):
    orchestrator = Orchestrator(provider_adapter=adapter, fusion=fusion, auditor=auditor)
    assert orchestrator.sandbox_runner.repo is orchestrator.executor.repo

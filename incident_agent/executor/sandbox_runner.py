"""
Sandbox Runner
==============
Validates a Plan by applying its patch to an isolated copy of trunk and
running its test commands there, returning a structured TestResult.

BOUNDARY RULES (CRITICAL):
    - SandboxRunner never touches the shared working tree. Each run gets a
      detached `git worktree` of trunk in a temp dir (created under the
      repository lock), the plan's patch is applied there, and the
      worktree is removed afterwards whatever the outcome.
    - run_tests() NEVER raises: a patch that does not apply, timeouts,
      output overflow and crashes become
      TestResult(passed=False, failed=1, total=0, error=...).
    - Commands are ANDed: execution stops at the first failing command.
    - All commands of one plan share a single wall-clock budget.
    - No retry: a timeout is a single-shot hard failure.
"""
import asyncio
import logging
import os
import shutil
import tempfile
import time
from typing import List, Optional

from incident_agent.core.config import (
    REPO_PATH,
    SANDBOX_BACKEND,
    SANDBOX_MAX_OUTPUT_BYTES,
    SANDBOX_TIMEOUT_SECONDS,
)
from incident_agent.core.errors import SandboxTimeout, VCSOperationError
from incident_agent.executor.process import LocalProcessRunner, ProcessRunner
from incident_agent.models.plan import Plan
from incident_agent.models.test_result import TestResult
from incident_agent.parser.test_report import parse_test_output
from incident_agent.services.repo_service import GitRepository, patch_file

logger = logging.getLogger(__name__)


def build_process_runner(backend: str = SANDBOX_BACKEND, workspace_path: str = REPO_PATH) -> ProcessRunner:
    """Select the execution primitive configured for the sandbox."""
    if backend == "docker":
        from incident_agent.executor.container import DockerProcessRunner
        return DockerProcessRunner(workspace_path)
    if backend != "local":
        logger.warning("Unknown sandbox backend %r, using local subprocesses", backend)
    return LocalProcessRunner(cwd=workspace_path)


class SandboxRunner:
    """
    Runs plan test commands through a ProcessRunner, inside a patched
    worktree of the repository's trunk.

    Parameters
    ----------
    runner : ProcessRunner | None
        Execution primitive; defaults to the configured backend.
    repo : GitRepository | None
        Repository whose trunk is checked out for every run.
    timeout_seconds : float
        Hard wall-clock budget for the whole plan.
    max_output_bytes : int
        Output cap applied to every command.
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        repo: Optional[GitRepository] = None,
        timeout_seconds: float = SANDBOX_TIMEOUT_SECONDS,
        max_output_bytes: int = SANDBOX_MAX_OUTPUT_BYTES,
    ) -> None:
        self.runner = runner or build_process_runner()
        self.repo = repo or GitRepository()
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes

    async def run_tests(self, plan: Plan) -> TestResult:
        start = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        if not plan.test_commands:
            return TestResult.from_error("Plan has no test commands", elapsed_ms())
        if not plan.is_actionable:
            return TestResult.from_error("Plan has no patch to validate", elapsed_ms())

        scratch = tempfile.mkdtemp(prefix="agent-sandbox-")
        workspace = os.path.join(scratch, "tree")
        try:
            try:
                await asyncio.to_thread(self._prepare_workspace, workspace, plan.patch)
            except VCSOperationError as e:
                message = f"Patch could not be applied to {self.repo.trunk}: {e}"
                logger.error(message)
                return TestResult.from_error(message, elapsed_ms())
            except Exception as e:
                message = f"Sandbox workspace could not be prepared: {type(e).__name__}: {e}"
                logger.error(message)
                return TestResult.from_error(message, elapsed_ms())

            return await self._run_commands(plan.test_commands, workspace, start)
        finally:
            await asyncio.to_thread(self._discard_workspace, workspace)
            shutil.rmtree(scratch, ignore_errors=True)

    # -------------------------------------------------------------------
    # Workspace
    # -------------------------------------------------------------------
    def _prepare_workspace(self, workspace: str, patch: str) -> None:
        with self.repo.lock:
            self.repo.add_worktree(workspace, self.repo.trunk)
        with patch_file(patch) as path:
            self.repo.apply_diff(path, worktree=workspace)
        logger.info("Sandbox worktree of %s ready at %s", self.repo.trunk, workspace)

    def _discard_workspace(self, workspace: str) -> None:
        with self.repo.lock:
            try:
                if os.path.exists(workspace):
                    self.repo.remove_worktree(workspace)
                else:
                    self.repo.prune_worktrees()
            except VCSOperationError as e:
                logger.warning("Could not remove sandbox worktree %s: %s", workspace, e)

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------
    async def _run_commands(self, commands: List[str], workspace: str, start: float) -> TestResult:
        deadline = time.monotonic() + self.timeout_seconds
        outputs: List[str] = []
        total = 0
        failed = 0

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            for command in commands:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise SandboxTimeout(command, self.timeout_seconds)

                logger.info("Sandbox running: %s (%.1fs left)", command, remaining)
                result = await self.runner.run(
                    command,
                    timeout_seconds=remaining,
                    max_output_bytes=self.max_output_bytes,
                    cwd=workspace,
                )
                outputs.append(f"$ {command}\n{result.output}")

                counts = parse_test_output(result.output, result.report)
                command_failed = counts.failed
                if result.exit_code != 0 and command_failed == 0:
                    # a non-zero exit is a failure whatever the summary claims
                    command_failed = 1
                total += max(counts.total, command_failed)
                failed += command_failed

                logger.info(
                    "Sandbox command finished | exit=%d | total=%d | failed=%d | source=%s",
                    result.exit_code, counts.total, command_failed, counts.source,
                )
                if command_failed:
                    break

        except SandboxTimeout as e:
            # the overall budget is exhausted: report it as the plan timeout
            message = f"Sandbox timed out after {self.timeout_seconds:g}s: {e.command}"
            logger.error(message)
            return TestResult.from_error(message, elapsed_ms(), "\n".join(outputs + [message]))
        except Exception as e:
            message = f"Sandbox execution failed: {type(e).__name__}: {e}"
            logger.error(message)
            return TestResult.from_error(message, elapsed_ms(), "\n".join(outputs + [message]))

        return TestResult.from_counts(
            total=total,
            failed=failed,
            duration_ms=elapsed_ms(),
            output="\n".join(outputs),
        )

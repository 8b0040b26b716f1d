"""
Container Runner
================
Docker-backed implementation of the ProcessRunner primitive. Each command
runs in an ephemeral container with the sandbox workspace mounted at
/workspace.

DOCKER STRATEGY:
    - One container per command (ephemeral), destroyed afterwards.
    - The workspace passed as `cwd` (the patched sandbox worktree) is
      mounted read-write at /workspace; no cloning inside.
    - A host temp dir is mounted at /agent-report for the structured
      test report (AGENT_TEST_REPORT=/agent-report/report.json).
    - No network by default.
    - Output is streamed while the container runs and counted against the
      byte budget; the container is killed as soon as the budget is spent.
"""
import asyncio
import logging
import os
import shutil
import tempfile
import threading
import time
from typing import Dict, Optional

import docker
from docker.errors import APIError, ImageNotFound
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import ReadTimeout

from incident_agent.core.config import SANDBOX_DOCKER_IMAGE
from incident_agent.core.errors import OutputLimitExceeded, SandboxError, SandboxTimeout
from incident_agent.executor.process import OutputBudget, ProcessResult
from incident_agent.parser.test_report import REPORT_ENV_VAR

logger = logging.getLogger(__name__)

_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2
_REPORT_MOUNT = "/agent-report"
_WATCHER_GRACE_SECONDS = 5


def _watch_output(container, budget: OutputBudget, overflow: threading.Event) -> None:
    """Follow the container's combined output; kill it once the budget is spent."""
    try:
        for chunk in container.logs(stdout=True, stderr=True, stream=True, follow=True):
            budget.consume(len(chunk))
    except OutputLimitExceeded:
        overflow.set()
        logger.warning("Sandbox container exceeded %d output bytes, killing it", budget.limit)
        try:
            container.kill()
        except APIError:
            logger.warning("Failed to kill sandbox container", exc_info=True)
    except (APIError, RequestsConnectionError) as e:
        logger.debug("Output stream of sandbox container closed: %s", e)


class DockerProcessRunner:
    """Runs each command with `sh -c` inside a fresh sandbox container."""

    def __init__(
        self,
        workspace_path: str,
        image: str = SANDBOX_DOCKER_IMAGE,
        network_mode: Optional[str] = "none",
    ) -> None:
        self.workspace_path = os.path.abspath(workspace_path)
        self.image = image
        self.network_mode = network_mode

    async def run(
        self,
        command: str,
        timeout_seconds: float,
        max_output_bytes: int,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessResult:
        workspace = os.path.abspath(cwd) if cwd else self.workspace_path
        return await asyncio.to_thread(
            self._run_sync, command, timeout_seconds, max_output_bytes, workspace, env or {}
        )

    def _run_sync(
        self,
        command: str,
        timeout_seconds: float,
        max_output_bytes: int,
        workspace: str,
        env: Dict[str, str],
    ) -> ProcessResult:
        report_dir = tempfile.mkdtemp(prefix="agent-report-")
        client = None
        container = None
        try:
            client = docker.from_env()
            logger.info(
                "Starting container | image=%s | timeout=%.0fs | command=%s",
                self.image, timeout_seconds, command,
            )
            container = client.containers.run(
                image=self.image,
                command=["sh", "-c", command],
                volumes={
                    workspace: {"bind": "/workspace", "mode": "rw"},
                    report_dir: {"bind": _REPORT_MOUNT, "mode": "rw"},
                },
                environment={
                    **env,
                    "CI": "true",
                    REPORT_ENV_VAR: f"{_REPORT_MOUNT}/report.json",
                },
                working_dir="/workspace",
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                network_mode=self.network_mode,
                name=f"incident-sandbox-{time.time_ns()}",
                labels={"project": "incident-agent", "role": "sandbox"},
                detach=True,
            )

            overflow = threading.Event()
            watcher = threading.Thread(
                target=_watch_output,
                args=(container, OutputBudget(command, max_output_bytes), overflow),
                daemon=True,
            )
            watcher.start()

            try:
                wait_result = container.wait(timeout=timeout_seconds)
            except (ReadTimeout, RequestsConnectionError):
                raise SandboxTimeout(command, timeout_seconds)

            watcher.join(timeout=_WATCHER_GRACE_SECONDS)
            if overflow.is_set():
                raise OutputLimitExceeded(command, max_output_bytes)

            # bounded by the budget checked above
            stdout = container.logs(stdout=True, stderr=False)
            stderr = container.logs(stdout=False, stderr=True)

            report = None
            report_path = os.path.join(report_dir, "report.json")
            if os.path.exists(report_path):
                with open(report_path, "r", encoding="utf-8", errors="replace") as f:
                    report = f.read()

            return ProcessResult(
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=stderr.decode("utf-8", errors="replace"),
                exit_code=wait_result.get("StatusCode", -1),
                report=report,
            )

        except ImageNotFound:
            raise SandboxError(f"Docker image '{self.image}' not found")
        except APIError as e:
            raise SandboxError(f"Docker API error: {e}")

        finally:
            # Always destroy the container
            if container is not None:
                try:
                    container.remove(force=True)
                except APIError:
                    logger.warning("Failed to remove sandbox container", exc_info=True)
            if client is not None:
                client.close()
            shutil.rmtree(report_dir, ignore_errors=True)

"""
Process Runner
==============
Execution primitive used by the SandboxRunner:

    run(command, timeout_seconds, max_output_bytes, cwd=None) -> ProcessResult

`cwd` is the workspace the command runs in; a runner falls back to its
own default workspace when it is None.

BOUNDARY RULES:
    - The runner ONLY executes and captures. It never interprets test output.
    - A command that outlives its budget is killed (whole process group)
      and SandboxTimeout is raised.
    - A command that prints more than max_output_bytes (stdout + stderr)
      is killed and OutputLimitExceeded is raised.

Structured Report Channel:
    Every run gets a fresh report path exported as AGENT_TEST_REPORT.
    Whatever the command writes there comes back in ProcessResult.report.
"""
import asyncio
import logging
import os
import shutil
import signal
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from incident_agent.core.errors import OutputLimitExceeded, SandboxTimeout
from incident_agent.parser.test_report import REPORT_ENV_VAR

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


@dataclass
class ProcessResult:
    """Captured output of one finished command."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    report: Optional[str] = None

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


class ProcessRunner(Protocol):
    async def run(
        self,
        command: str,
        timeout_seconds: float,
        max_output_bytes: int,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessResult:
        ...


class OutputBudget:
    """Shared byte budget for the stdout and stderr readers of one process."""

    def __init__(self, command: str, limit: int) -> None:
        self.command = command
        self.limit = limit
        self.used = 0

    def consume(self, size: int) -> None:
        self.used += size
        if self.used > self.limit:
            raise OutputLimitExceeded(self.command, self.limit)


async def _drain(stream: asyncio.StreamReader, budget: OutputBudget) -> bytes:
    chunks: List[bytes] = []
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        budget.consume(len(chunk))
        chunks.append(chunk)
    return b"".join(chunks)


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


class LocalProcessRunner:
    """
    Runs shell commands as local subprocesses in their own session.

    Parameters
    ----------
    cwd : str | None
        Default working directory when run() is given no cwd.
    """

    def __init__(self, cwd: Optional[str] = None) -> None:
        self.cwd = cwd

    async def run(
        self,
        command: str,
        timeout_seconds: float,
        max_output_bytes: int,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessResult:
        report_dir = tempfile.mkdtemp(prefix="agent-report-")
        report_path = os.path.join(report_dir, "report.json")

        run_env = os.environ.copy()
        if env:
            run_env.update(env)
        run_env[REPORT_ENV_VAR] = report_path

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd or self.cwd,
                env=run_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
            budget = OutputBudget(command, max_output_bytes)
            readers = [
                asyncio.ensure_future(_drain(proc.stdout, budget)),
                asyncio.ensure_future(_drain(proc.stderr, budget)),
            ]

            async def _finish():
                out, err = await asyncio.gather(*readers)
                code = await proc.wait()
                return out, err, code

            try:
                out, err, code = await asyncio.wait_for(_finish(), timeout=timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("Sandbox command timed out after %.1fs: %s", timeout_seconds, command)
                _kill_group(proc)
                await proc.wait()
                raise SandboxTimeout(command, timeout_seconds)
            except OutputLimitExceeded:
                logger.warning("Sandbox command exceeded %d output bytes: %s", max_output_bytes, command)
                _kill_group(proc)
                await proc.wait()
                raise
            finally:
                for reader in readers:
                    if not reader.done():
                        reader.cancel()

            report = None
            if os.path.exists(report_path):
                with open(report_path, "r", encoding="utf-8", errors="replace") as f:
                    report = f.read()

            return ProcessResult(
                stdout=out.decode("utf-8", errors="replace"),
                stderr=err.decode("utf-8", errors="replace"),
                exit_code=code,
                report=report,
            )
        finally:
            shutil.rmtree(report_dir, ignore_errors=True)

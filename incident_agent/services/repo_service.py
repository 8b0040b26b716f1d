"""
Repo Service
============
Explicit handle on the one working tree the agent mutates.

Philosophy:
    - The handle owns the mutual-exclusion lock. Every multi-step
      mutation (checkout -> apply -> commit -> merge/push) must hold it
      for its whole duration; see Executor.
    - Each method is one git primitive. Failures raise VCSOperationError
      carrying the git stderr; the Executor converts them into results.
    - Sandbox runs never touch the shared tree: they get a detached
      worktree of trunk (add_worktree) and apply the patch there.
"""
import logging
import os
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from incident_agent.core.config import GIT_COMMAND_TIMEOUT, GIT_REMOTE, REPO_PATH, TRUNK_BRANCH
from incident_agent.core.errors import VCSOperationError

logger = logging.getLogger(__name__)


@contextmanager
def patch_file(patch: str) -> Iterator[str]:
    """Write a diff to a temp file for `git apply`; the file is removed on exit."""
    fd, path = tempfile.mkstemp(prefix="agent-fix-", suffix=".patch")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(patch if patch.endswith("\n") else patch + "\n")
        yield path
    finally:
        os.unlink(path)


class GitRepository:
    """
    Version-control primitives for a single repository.

    Parameters
    ----------
    path : str
        Working tree root.
    trunk : str
        Primary integration branch.
    remote : str
        Remote that review branches are pushed to.
    """

    def __init__(self, path: str = REPO_PATH, trunk: str = TRUNK_BRANCH, remote: str = GIT_REMOTE) -> None:
        self.path = os.path.abspath(path)
        self.trunk = trunk
        self.remote = remote
        self.lock = threading.Lock()

    def _git(self, *args: str, env: dict = None, cwd: Optional[str] = None) -> str:
        cmd: List[str] = ["git", *args]
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)
        try:
            res = subprocess.run(
                cmd,
                cwd=cwd or self.path,
                check=True,
                capture_output=True,
                text=True,
                timeout=GIT_COMMAND_TIMEOUT,
                env=run_env,
            )
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            logger.warning("git %s failed: %s", args[0], detail)
            raise VCSOperationError(args[0], detail)
        except subprocess.TimeoutExpired:
            raise VCSOperationError(args[0], f"timed out after {GIT_COMMAND_TIMEOUT}s")
        except OSError as e:
            raise VCSOperationError(args[0], str(e))
        return res.stdout

    def is_clean(self) -> bool:
        return self._git("status", "--porcelain").strip() == ""

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD").strip()

    def head_sha(self) -> str:
        return self._git("rev-parse", "HEAD").strip()

    def checkout_new_branch(self, branch: str, start_point: Optional[str] = None) -> None:
        if start_point:
            self._git("checkout", "-b", branch, start_point)
        else:
            self._git("checkout", "-b", branch)

    def checkout(self, branch: str) -> None:
        self._git("checkout", branch)

    def apply_diff(self, patch_file: str, worktree: Optional[str] = None) -> None:
        self._git("apply", "--whitespace=nowarn", patch_file, cwd=worktree)

    def stage_all(self) -> None:
        self._git("add", "-A")

    def commit(self, message: str, author_name: str, author_email: str) -> str:
        """Commit staged changes as the bot identity; returns the new HEAD sha."""
        self._git(
            "commit",
            "-m", message,
            "--author", f"{author_name} <{author_email}>",
            env={"GIT_COMMITTER_NAME": author_name, "GIT_COMMITTER_EMAIL": author_email},
        )
        return self.head_sha()

    def merge(self, branch: str) -> None:
        self._git("merge", "--no-edit", branch)

    def push(self, remote: str, branch: str) -> None:
        self._git("push", remote, branch)

    def delete_branch(self, branch: str, force: bool = False) -> None:
        self._git("branch", "-D" if force else "-d", branch)

    def reset_hard(self) -> None:
        self._git("reset", "--hard", "HEAD")

    def clean_untracked(self) -> None:
        self._git("clean", "-fd")

    def add_worktree(self, path: str, ref: str) -> None:
        """Detached checkout of ref at path, sharing this repository's objects."""
        self._git("worktree", "add", "--detach", path, ref)

    def remove_worktree(self, path: str) -> None:
        self._git("worktree", "remove", "--force", path)

    def prune_worktrees(self) -> None:
        self._git("worktree", "prune")

"""
Executor
========
Applies a validated patch to the repository, either merging it into trunk
unattended or pushing it on a branch for human review.

Sequence (held under the repository lock from start to finish):
    clean-tree check -> checkout agent/fix-<ms> from trunk -> git apply -> add -A
    -> commit as bot -> {checkout trunk + merge | push + checkout trunk}

Failure Policy:
    - Any git failure is caught here and returned as success=False with
      the failing step's error; nothing propagates to the caller.
    - With rollback enabled, a failure after the branch exists hard-resets
      the tree, returns to trunk and force-deletes the branch. Without a
      fix branch (create_branch=False) only the half-applied changes are
      reset.
"""
import asyncio
import logging
import threading
import time
from typing import Optional

from incident_agent.core.config import GIT_USER_EMAIL, GIT_USER_NAME, ROLLBACK_ON_FAILURE
from incident_agent.core.errors import VCSOperationError
from incident_agent.models.vcs_result import ApplyResult, PullRequestResult
from incident_agent.services.repo_service import GitRepository, patch_file

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "agent/fix-"
AUTO_FIX_COMMIT_MESSAGE = "Agent: auto-fix applied"


class Executor:
    """
    Agent responsible for turning a patch into commits on the shared tree.

    Parameters
    ----------
    repo : GitRepository | None
        Repository handle; its lock serializes concurrent pipelines.
    author_name, author_email : str
        Bot identity used for author and committer.
    rollback_on_failure : bool
        Discard the fix branch when a git step fails.
    """

    _stamp_lock = threading.Lock()
    _last_stamp = 0

    def __init__(
        self,
        repo: Optional[GitRepository] = None,
        author_name: str = GIT_USER_NAME,
        author_email: str = GIT_USER_EMAIL,
        rollback_on_failure: bool = ROLLBACK_ON_FAILURE,
    ) -> None:
        self.repo = repo or GitRepository()
        self.author_name = author_name
        self.author_email = author_email
        self.rollback_on_failure = rollback_on_failure

    @classmethod
    def generate_branch_name(cls) -> str:
        """agent/fix-<epoch-ms>, strictly increasing within the process."""
        with cls._stamp_lock:
            stamp = max(int(time.time() * 1000), cls._last_stamp + 1)
            cls._last_stamp = stamp
        return f"{BRANCH_PREFIX}{stamp}"

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def apply_patch(
        self,
        patch: str,
        create_branch: bool = True,
        auto_merge: bool = False,
    ) -> ApplyResult:
        return await asyncio.to_thread(self._apply_patch_sync, patch, create_branch, auto_merge)

    async def create_pull_request(self, patch: str, title: str, description: str = "") -> PullRequestResult:
        return await asyncio.to_thread(self._create_pull_request_sync, patch, title, description)

    async def rollback(self, branch_name: str) -> bool:
        """Return to trunk and force-delete branch_name. Never invoked implicitly."""
        return await asyncio.to_thread(self._rollback_sync, branch_name)

    # -------------------------------------------------------------------
    # Sequences
    # -------------------------------------------------------------------
    def _apply_patch_sync(self, patch: str, create_branch: bool, auto_merge: bool) -> ApplyResult:
        result = ApplyResult()
        if not patch.strip():
            result.error = "Refusing to apply an empty patch"
            logger.warning(result.error)
            return result

        with self.repo.lock:
            created = False
            touched = False
            try:
                self._require_clean_tree()
                if create_branch:
                    result.branch = self.generate_branch_name()
                    self.repo.checkout_new_branch(result.branch, self.repo.trunk)
                    created = True
                else:
                    result.branch = self.repo.current_branch()

                touched = True
                result.commit_sha = self._apply_and_commit(patch, AUTO_FIX_COMMIT_MESSAGE)

                if created:
                    self.repo.checkout(self.repo.trunk)
                    if auto_merge:
                        self.repo.merge(result.branch)
                        result.merged = True

                result.success = True
                logger.info(
                    "Patch applied on %s (sha=%s, merged=%s)",
                    result.branch, result.commit_sha[:8], result.merged,
                )
            except Exception as e:
                result.error = str(e)
                logger.error("Failed to apply patch on %s: %s", result.branch or "<none>", e)
                if created and self.rollback_on_failure:
                    result.rolled_back = self._discard_branch(result.branch)
                elif touched and self.rollback_on_failure:
                    result.rolled_back = self._restore_tree()

        return result

    def _create_pull_request_sync(self, patch: str, title: str, description: str) -> PullRequestResult:
        result = PullRequestResult(title=title, description=description)
        if not patch.strip():
            result.error = "Refusing to open a review branch for an empty patch"
            logger.warning(result.error)
            return result

        with self.repo.lock:
            created = False
            try:
                self._require_clean_tree()
                result.branch = self.generate_branch_name()
                self.repo.checkout_new_branch(result.branch, self.repo.trunk)
                created = True

                result.commit_sha = self._apply_and_commit(patch, title)
                self.repo.push(self.repo.remote, result.branch)
                result.pushed = True
                self.repo.checkout(self.repo.trunk)

                result.success = True
                logger.info("Review branch %s pushed to %s", result.branch, self.repo.remote)
            except Exception as e:
                result.error = str(e)
                logger.error("Failed to create review branch %s: %s", result.branch or "<none>", e)
                if created and self.rollback_on_failure and not result.pushed:
                    result.rolled_back = self._discard_branch(result.branch)

        return result

    def _rollback_sync(self, branch_name: str) -> bool:
        with self.repo.lock:
            try:
                self.repo.checkout(self.repo.trunk)
                self.repo.delete_branch(branch_name, force=True)
            except VCSOperationError as e:
                logger.error("Rollback of %s failed: %s", branch_name, e)
                return False
        logger.info("Rolled back branch %s", branch_name)
        return True

    # -------------------------------------------------------------------
    # Steps (caller holds the repository lock)
    # -------------------------------------------------------------------
    def _require_clean_tree(self) -> None:
        if not self.repo.is_clean():
            raise VCSOperationError("status", "working tree has uncommitted changes")

    def _apply_and_commit(self, patch: str, message: str) -> str:
        with patch_file(patch) as path:
            self.repo.apply_diff(path)

        self.repo.stage_all()
        return self.repo.commit(message, self.author_name, self.author_email)

    def _discard_branch(self, branch: str) -> bool:
        try:
            self.repo.reset_hard()
            self.repo.clean_untracked()
            self.repo.checkout(self.repo.trunk)
            self.repo.delete_branch(branch, force=True)
        except VCSOperationError as e:
            logger.error("Could not discard branch %s after failure: %s", branch, e)
            return False
        logger.info("Discarded branch %s after failure", branch)
        return True

    def _restore_tree(self) -> bool:
        """Drop a half-applied patch from the current branch."""
        try:
            self.repo.reset_hard()
            self.repo.clean_untracked()
        except VCSOperationError as e:
            logger.error("Could not restore working tree after failure: %s", e)
            return False
        logger.info("Restored working tree after failure")
        return True

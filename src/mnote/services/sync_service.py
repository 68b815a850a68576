"""Git synchronisation of the notes root.

A sync pass commits local changes, rebases onto the configured remote
branch and pushes. Manual syncs wait briefly for the lock and exit the
process on failure; automatic syncs (after a write, or from the daemon)
never block the caller and only log what went wrong.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional

from mnote.config import CONFIG_FILENAME, DB_FILENAME, LOCK_FILENAME
from mnote.config_store import ConfigStore
from mnote.exceptions import (ErrorCode, GitUnavailableError, MnoteError,
                              NotARepositoryError, SyncConflictError,
                              SyncError, SyncLockedError)
from mnote.models.schema import SyncResult
from mnote.observability import timed_operation
from mnote.services.lock_manager import LockManager
from mnote.storage.git_client import (GitConflictError, GitError,
                                      GitNotFoundError, VersionControlClient)
from mnote.utils import sync_commit_message

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"
DEFAULT_BRANCH = "master"
INIT_COMMIT_MESSAGE = "Initializing mnote repository"

# Local state that must never be committed
GITIGNORE_ENTRIES = [
    DB_FILENAME,
    f"{DB_FILENAME}-wal",
    f"{DB_FILENAME}-shm",
    f"{DB_FILENAME}-journal",
    LOCK_FILENAME,
    f"{LOCK_FILENAME}.*.stale",
    CONFIG_FILENAME,
]


class SyncOrchestrator:
    """Runs sync passes for one notes root.

    Args:
        root: Notes root (must be the top of a git working tree).
        client: Version-control capability, ``GitClient`` in production.
        config_store: Source of the ``autosync.*`` keys.
        lock: Lock manager shared with the daemon.
        lock_timeout: Seconds a manual sync waits for the lock.
    """

    def __init__(
        self,
        root: Path,
        client: VersionControlClient,
        config_store: ConfigStore,
        lock: Optional[LockManager] = None,
        lock_timeout: float = 30.0,
    ) -> None:
        self.root = Path(root)
        self.client = client
        self.config_store = config_store
        self.lock = lock or LockManager(self.root)
        self.lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _git(self, operation: str, func: Callable, *args, **kwargs):
        """Call a client method, translating git errors into SyncErrors."""
        try:
            return func(*args, **kwargs)
        except GitNotFoundError as e:
            raise GitUnavailableError(original_error=e) from e
        except GitConflictError as e:
            raise SyncConflictError(original_error=e) from e
        except GitError as e:
            code = ErrorCode.SYNC_COMMIT_FAILED if operation == "commit" else ErrorCode.SYNC_REMOTE_FAILED
            raise SyncError(
                f"Git {operation} failed: {e.stderr or e.message}",
                operation=operation,
                code=code,
                original_error=e,
            ) from e

    def remote_name(self) -> str:
        remote = self.config_store.get("autosync.git.remote", DEFAULT_REMOTE)
        return str(remote) if remote else DEFAULT_REMOTE

    def branch_name(self) -> str:
        """Configured branch, else the checked-out branch, else master."""
        branch = self.config_store.get("autosync.git.branch", None)
        if branch:
            return str(branch)
        current = self._git("branch", self.client.current_branch)
        return current or DEFAULT_BRANCH

    # ------------------------------------------------------------------
    # Sync pass
    # ------------------------------------------------------------------

    def _sync_pass(self) -> SyncResult:
        result = SyncResult()

        if not self.client.is_available():
            raise GitUnavailableError()
        if not self._git("status", self.client.is_repository):
            raise NotARepositoryError(str(self.root))

        changed = self._git("status", self.client.status)
        if changed:
            logger.info(f"Committing {len(changed)} local change(s)")
            self._git("add", self.client.add_all)
            self._git("commit", self.client.commit, sync_commit_message())
            result.committed = True
        else:
            logger.debug("No local changes to commit")

        remote = self.remote_name()
        if remote not in self._git("remote", self.client.remotes):
            logger.warning(f"No remote '{remote}' configured; changes kept locally only")
            result.local_only = True
            result.message = "Committed locally (no remote configured)"
            return result

        branch = self.branch_name()
        remote_has_branch = self._git(
            "ls-remote", self.client.remote_branch_exists, remote, branch
        )
        if remote_has_branch:
            logger.info(f"Pulling {remote}/{branch}")
            self._git("pull", self.client.pull, remote, branch, rebase=True)
            result.pulled = True

        logger.info(f"Pushing to {remote}/{branch}")
        self._git("push", self.client.push, remote, branch,
                  set_upstream=not remote_has_branch)
        result.pushed = True
        result.message = "Sync complete"
        return result

    def perform_sync(self, exit_on_error: bool = True) -> SyncResult:
        """Run one sync pass.

        Args:
            exit_on_error: Manual mode; log the failure and exit with
                status 1. Otherwise the SyncError propagates.

        Raises:
            SyncError: On failure when ``exit_on_error`` is false
            SystemExit: On failure when ``exit_on_error`` is true
        """
        try:
            with timed_operation("sync", root=str(self.root)) as op:
                result = self._sync_pass()
                op["pushed"] = result.pushed
            return result
        except SyncError as e:
            if isinstance(e, SyncConflictError):
                logger.error(f"Sync conflict detected! Resolve conflicts manually in {self.root}")
            else:
                logger.error(f"Sync failed: {e.message}")
            logger.debug(f"Sync error details: {e.to_dict()}")
            if exit_on_error:
                raise SystemExit(1) from e
            raise

    def sync_notes(self) -> SyncResult:
        """Manual sync: wait for the lock, exit non-zero on any failure."""
        if not self.lock.acquire(wait=True, timeout=self.lock_timeout):
            logger.error(SyncLockedError(str(self.lock.lock_path)).message)
            raise SystemExit(1)
        try:
            return self.perform_sync(exit_on_error=True)
        finally:
            self.lock.release()

    def autosync_enabled(self) -> bool:
        return self.config_store.get_bool("autosync.enabled", False)

    def auto_sync(self) -> bool:
        """Background sync after a write. Never raises.

        Returns:
            True if a sync pass ran and succeeded.
        """
        try:
            if not self.autosync_enabled():
                return False
        except MnoteError as e:
            logger.warning(f"Cannot read autosync setting: {e}")
            return False

        if not self.lock.acquire(wait=False):
            logger.debug("Sync lock held elsewhere, skipping auto-sync")
            return False
        try:
            logger.info("Auto-syncing")
            self.perform_sync(exit_on_error=False)
            return True
        except MnoteError as e:
            logger.warning(f"Auto-sync failed: {e.message}")
            return False
        finally:
            self.lock.release()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _write_gitignore(self) -> Path:
        path = self.root / ".gitignore"
        existing: List[str] = []
        if path.exists():
            existing = path.read_text(encoding="utf-8").splitlines()
        missing = [entry for entry in GITIGNORE_ENTRIES if entry not in existing]
        if missing:
            lines = existing + missing
            path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def init_sync(self, remote_url: str, branch: Optional[str] = None,
                  remote: str = DEFAULT_REMOTE) -> SyncResult:
        """Prepare the root for syncing with ``remote_url``.

        Initialises the repository if needed, ignores local state files,
        registers the remote, enables autosync and, when the remote branch
        does not exist yet, creates it with an initial commit.
        """
        result = SyncResult()
        if not self.client.is_available():
            raise GitUnavailableError()
        self.root.mkdir(parents=True, exist_ok=True)
        if not self._git("status", self.client.is_repository):
            logger.info(f"Initialising git repository in {self.root}")
            self._git("init", self.client.init)

        self._write_gitignore()

        if remote not in self._git("remote", self.client.remotes):
            self._git("remote", self.client.add_remote, remote, remote_url)

        branch = branch or self._git("branch", self.client.current_branch) or DEFAULT_BRANCH
        self.config_store.set("autosync.enabled", True)
        self.config_store.set("autosync.git.remote", remote)
        self.config_store.set("autosync.git.branch", branch)

        if not self._git("ls-remote", self.client.remote_branch_exists, remote, branch):
            logger.info(f"Creating branch {branch} on {remote}")
            self._git("checkout", self.client.checkout_new_branch, branch)
            if ".gitignore" in self._git("status", self.client.status):
                self._git("add", self.client.add, [".gitignore"])
                self._git("commit", self.client.commit, INIT_COMMIT_MESSAGE)
                result.committed = True
            self._git("push", self.client.push, remote, branch, set_upstream=True)
            result.pushed = True

        result.message = f"Sync configured for {remote}/{branch}"
        return result

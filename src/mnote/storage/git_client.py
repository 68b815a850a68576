"""Git client used by the sync orchestrator.

``VersionControlClient`` is the capability the orchestrator depends on;
``GitClient`` implements it with subprocess git so tests can substitute
a fake without spawning processes.
"""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# git prints this when another process holds .git/index.lock
INDEX_LOCK_MARKER = "index.lock"


class GitError(Exception):
    """A git command failed or could not be run.

    ``stderr`` holds git's own explanation when there is one; the sync
    orchestrator shows it in preference to ``message``.
    """

    def __init__(self, message: str, command: Optional[Sequence[str]] = None,
                 returncode: Optional[int] = None, stderr: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.command = list(command) if command else None
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        text = self.message
        if self.returncode is not None:
            text += f" (exit {self.returncode})"
        if self.stderr:
            text += f": {self.stderr[:200]}"
        return text


class GitNotFoundError(GitError):
    """The git executable cannot be started."""


class GitConflictError(GitError):
    """A pull stopped on merge or rebase conflicts."""


class VersionControlClient(Protocol):
    """Operations the sync orchestrator needs from a version-control tool."""

    def is_available(self) -> bool: ...

    def is_repository(self) -> bool: ...

    def init(self) -> None: ...

    def status(self) -> List[str]: ...

    def add_all(self) -> None: ...

    def add(self, paths: List[str]) -> None: ...

    def commit(self, message: str) -> None: ...

    def remotes(self) -> List[str]: ...

    def add_remote(self, name: str, url: str) -> None: ...

    def pull(self, remote: str, branch: str, rebase: bool = True) -> str: ...

    def push(self, remote: str, branch: str, set_upstream: bool = False) -> None: ...

    def remote_branch_exists(self, remote: str, branch: str) -> bool: ...

    def current_branch(self) -> Optional[str]: ...

    def checkout_new_branch(self, branch: str) -> None: ...


class GitClient:
    """``VersionControlClient`` backed by the git command line.

    Every command runs as ``git -C <root> ...`` with terminal prompts
    disabled, so a missing credential fails instead of hanging the daemon.
    """

    def __init__(self, repo_path: Path, timeout: int = 300, lock_retries: int = 3):
        self.repo_path = Path(repo_path).resolve()
        self.timeout = timeout
        self.lock_retries = lock_retries
        self._env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

    def _exec(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, capture_output=True, text=True,
                                  timeout=self.timeout, env=self._env)
        except FileNotFoundError as e:
            raise GitNotFoundError("Git is not installed or not in PATH", cmd) from e
        except subprocess.TimeoutExpired as e:
            raise GitError(f"git {cmd[3]} timed out after {self.timeout}s", cmd) from e

    def _run_git(self, args: List[str], check: bool = True,
                 retry: bool = True) -> subprocess.CompletedProcess:
        """Run ``git -C <root> <args>``.

        A command refused because of index.lock contention is retried with a
        growing pause, since a concurrent editor integration or IDE may be
        touching the repository.

        Raises:
            GitNotFoundError: If git is not installed
            GitError: If ``check`` is set and git exits non-zero, or on timeout
        """
        cmd = ["git", "-C", str(self.repo_path), *args]
        attempts = self.lock_retries + 1 if retry else 1
        for attempt in range(1, attempts + 1):
            result = self._exec(cmd)
            contended = result.returncode != 0 and INDEX_LOCK_MARKER in (result.stderr or "")
            if not contended or attempt == attempts:
                break
            logger.debug(f"index.lock busy, retrying git {args[0]} ({attempt}/{self.lock_retries})")
            time.sleep(0.1 * attempt)

        if check and result.returncode != 0:
            raise GitError(
                f"git {' '.join(args)} failed",
                cmd,
                result.returncode,
                (result.stderr or result.stdout or "").strip() or None,
            )
        return result

    def is_available(self) -> bool:
        try:
            self._run_git(["--version"], retry=False)
            return True
        except GitError:
            return False

    def is_repository(self) -> bool:
        """True when the root itself is the top of a git working tree."""
        if not self.repo_path.is_dir():
            return False
        result = self._run_git(["rev-parse", "--show-toplevel"], check=False, retry=False)
        if result.returncode != 0:
            return False
        return Path(result.stdout.strip()).resolve() == self.repo_path

    def init(self) -> None:
        self.repo_path.mkdir(parents=True, exist_ok=True)
        self._run_git(["init"])

    def status(self) -> List[str]:
        """Paths with uncommitted changes (including untracked files)."""
        result = self._run_git(["status", "--porcelain"])
        return [line[3:] for line in result.stdout.splitlines() if line.strip()]

    def add_all(self) -> None:
        self._run_git(["add", "-A"])

    def add(self, paths: List[str]) -> None:
        self._run_git(["add", "--"] + list(paths))

    def commit(self, message: str) -> None:
        self._run_git(["commit", "-m", message])

    def remotes(self) -> List[str]:
        result = self._run_git(["remote"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def add_remote(self, name: str, url: str) -> None:
        self._run_git(["remote", "add", name, url])

    def pull(self, remote: str, branch: str, rebase: bool = True) -> str:
        """Integrate ``remote/branch``; returns git's output.

        Raises:
            GitConflictError: If git stopped on conflicts
        """
        args = ["pull", remote, branch]
        if rebase:
            args.append("--rebase")
        result = self._run_git(args, check=False)
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            error_cls = GitConflictError if "CONFLICT" in output else GitError
            raise error_cls(f"git pull {remote} {branch} failed", args,
                            result.returncode, output.strip() or None)
        return output

    def push(self, remote: str, branch: str, set_upstream: bool = False) -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        self._run_git(args + [remote, branch])

    def remote_branch_exists(self, remote: str, branch: str) -> bool:
        """True only for an exact ``refs/heads/<branch>`` on the remote.

        ls-remote matches patterns against the tail of ref names, so
        ``feature/main`` would otherwise count as ``main``.
        """
        ref = f"refs/heads/{branch}"
        result = self._run_git(["ls-remote", "--heads", remote, ref])
        return any(
            line.split("\t", 1)[-1].strip() == ref for line in result.stdout.splitlines()
        )

    def current_branch(self) -> Optional[str]:
        result = self._run_git(["symbolic-ref", "--short", "HEAD"], check=False, retry=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def checkout_new_branch(self, branch: str) -> None:
        # -B: also works on an unborn branch right after init
        self._run_git(["checkout", "-B", branch])

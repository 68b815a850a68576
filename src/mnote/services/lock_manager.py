"""Cross-process sync lock: ``<root>/.mnote-sync.lock``.

The lock file holds ``<pid>|<epoch-millis>`` and is created with
O_CREAT|O_EXCL, so exactly one process wins a race. A lock whose owner
is gone, or which is older than the staleness threshold, is renamed aside
(only one process can win that rename) and the create is retried.
"""

import errno
import logging
import os
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from mnote.config import LOCK_FILENAME
from mnote.exceptions import SyncLockedError

logger = logging.getLogger(__name__)

DEFAULT_STALE_SECONDS = 600.0
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_TIMEOUT = 5.0


def is_process_running(pid: int) -> bool:
    """Signal-0 liveness check; EPERM means the process exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as e:
        return e.errno == errno.EPERM
    return True


class LockManager:
    """Advisory lock serialising sync passes for one notes root.

    Args:
        root: Notes root; the lock file lives directly inside it.
        stale_after: Seconds after which any lock is considered abandoned.
        poll_interval: Seconds between attempts while waiting.
    """

    def __init__(
        self,
        root: Path,
        stale_after: float = DEFAULT_STALE_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.lock_path = Path(root) / LOCK_FILENAME
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self.pid = os.getpid()

    def _read_raw(self, path: Optional[Path] = None) -> Optional[str]:
        try:
            return (path or self.lock_path).read_text(encoding="utf-8").strip()
        except (FileNotFoundError, UnicodeDecodeError):
            return None

    @staticmethod
    def _parse(raw: Optional[str]) -> Optional[Tuple[int, int]]:
        parts = (raw or "").split("|")
        if len(parts) != 2:
            return None
        try:
            return int(parts[0]), int(parts[1])
        except ValueError:
            return None

    def read_owner(self) -> Optional[Tuple[int, int]]:
        """(pid, epoch-millis) recorded in the lock file, or None."""
        return self._parse(self._read_raw())

    def _stale_snapshot(self) -> Optional[str]:
        """Content of the lock file if it is stale, else None.

        The snapshot is what a takeover must find when it claims the file.
        """
        raw = self._read_raw()
        owner = self._parse(raw)
        if owner is None:
            # Unreadable or half-written: only its age can condemn it
            try:
                age = time.time() - self.lock_path.stat().st_mtime
            except FileNotFoundError:
                return None
            return (raw or "") if age > self.stale_after else None
        pid, timestamp = owner
        if not is_process_running(pid):
            logger.info(f"Found stale lock from PID {pid}, taking over")
            return raw
        age = time.time() - timestamp / 1000
        if age > self.stale_after:
            logger.warning(
                f"Found lock from PID {pid} held for {int(age // 60)} minutes, taking over"
            )
            return raw
        return None

    def _is_stale(self) -> bool:
        return self._stale_snapshot() is not None

    def _try_create(self) -> bool:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(f"{self.pid}|{int(time.time() * 1000)}")
        return True

    def _claim_stale(self, snapshot: str) -> bool:
        """Move the stale lock aside; True if it was still the one judged.

        Only one process can win the rename. If the file moved aside turns
        out to be a newer lock (another process took over in between), it
        is put back without overwriting anything.
        """
        tombstone = self.lock_path.with_name(
            f"{self.lock_path.name}.{self.pid}-{uuid.uuid4().hex[:8]}.stale"
        )
        try:
            os.rename(self.lock_path, tombstone)
        except FileNotFoundError:
            return False
        claimed = (self._read_raw(tombstone) or "") == snapshot
        if not claimed:
            try:
                os.link(tombstone, self.lock_path)
            except FileExistsError:
                logger.warning(f"Lock {self.lock_path} was replaced while restoring it")
        tombstone.unlink()
        return claimed

    def _try_lock(self) -> bool:
        if self._try_create():
            return True
        snapshot = self._stale_snapshot()
        if snapshot is None:
            return False
        if not self._claim_stale(snapshot):
            logger.debug(f"Stale lock {self.lock_path} was taken over by another process")
        # Another process may win the retry; that is a normal loss
        return self._try_create()

    def acquire(self, wait: bool = False, timeout: float = DEFAULT_TIMEOUT) -> bool:
        """Try to take the lock.

        Args:
            wait: Poll every ``poll_interval`` seconds instead of giving up.
            timeout: Seconds to keep polling when ``wait`` is true.

        Returns:
            True if this process now holds the lock.
        """
        deadline = time.monotonic() + timeout
        while True:
            if self._try_lock():
                logger.debug(f"Acquired sync lock {self.lock_path}")
                return True
            if not wait or time.monotonic() >= deadline:
                return False
            time.sleep(min(self.poll_interval, max(0.0, deadline - time.monotonic())))

    def release(self) -> bool:
        """Remove the lock only if this process owns it."""
        owner = self.read_owner()
        if owner is None or owner[0] != self.pid:
            return False
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Released sync lock {self.lock_path}")
        return True

    def is_locked(self) -> bool:
        return self.lock_path.exists() and not self._is_stale()

    @contextmanager
    def held(self, wait: bool = False, timeout: float = DEFAULT_TIMEOUT) -> Iterator[None]:
        """Hold the lock for the duration of a ``with`` block.

        Raises:
            SyncLockedError: If the lock cannot be acquired
        """
        if not self.acquire(wait=wait, timeout=timeout):
            raise SyncLockedError(str(self.lock_path))
        try:
            yield
        finally:
            self.release()

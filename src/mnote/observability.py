"""Logging setup and lightweight operation timing for mnote.

Log files go to a rotating ``mnote.log`` outside the notes root so they are
never committed by a sync. Timings are kept in memory for the life of the
process; the daemon logs a summary when it stops.
"""
import functools
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

LOG_FILENAME = "mnote.log"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
# ISO 8601
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar("F", bound=Callable[..., Any])


def _tag(handler: logging.Handler) -> logging.Handler:
    handler._mnote_handler = True
    return handler


def configure_logging(
    log_dir: Union[str, Path],
    level: int = logging.WARNING,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating file handler (and optionally stderr) to ``mnote``.

    Calling it again replaces the handlers it added before, so tests and
    repeated CLI invocations in one process never duplicate output.

    Returns:
        The log directory.
    """
    log_path = Path(log_dir).expanduser()
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("mnote")
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        if getattr(handler, "_mnote_handler", False):
            package_logger.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(
        log_path / LOG_FILENAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    package_logger.addHandler(_tag(file_handler))

    if console:
        # stderr keeps log lines out of command output
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        package_logger.addHandler(_tag(console_handler))

    package_logger.debug(f"Logging to {log_path / LOG_FILENAME}")
    return log_path


@dataclass
class OperationStats:
    """Running totals for one operation name."""
    count: int = 0
    failures: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = field(default=None)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "success_count": self.count - self.failures,
            "error_count": self.failures,
            "avg_duration_ms": round(self.total_ms / self.count, 2) if self.count else 0,
            "max_duration_ms": round(self.max_ms, 2),
            "last_error": self.last_error,
            "last_error_time": self.last_error_at.isoformat() if self.last_error_at else None,
        }


class MetricsCollector:
    """Per-process operation timings, safe to update from several threads."""

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()

    def record_operation(self, operation: str, duration_ms: float, success: bool,
                         error: Optional[str] = None) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.count += 1
            stats.total_ms += duration_ms
            stats.max_ms = max(stats.max_ms, duration_ms)
            if not success:
                stats.failures += 1
                stats.last_error = error
                stats.last_error_at = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: stats.snapshot() for name, stats in self._stats.items()}

    def summary(self) -> str:
        """One line per operation, e.g. ``sync: 12 runs, 1 failed, avg 310.5ms``."""
        lines = []
        for name, snap in sorted(self.get_metrics().items()):
            lines.append(
                f"{name}: {snap['count']} runs, {snap['error_count']} failed, "
                f"avg {snap['avg_duration_ms']}ms"
            )
        return "\n".join(lines)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context) -> Iterator[Dict[str, Any]]:
    """Time a block, record it in ``metrics`` and log start/end at DEBUG.

    The yielded dict collects result details for the end-of-operation log
    line (``op["result_count"] = len(results)``).
    """
    op_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {}
    if context:
        logger.debug(f"[{op_id}] {operation} started ({', '.join(f'{k}={v}' for k, v in context.items())})")
    else:
        logger.debug(f"[{op_id}] {operation} started")

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield info
    except Exception as e:
        error = str(e)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        outcome = "ok" if error is None else f"failed: {error}"
        details = " ".join(f"{k}={v}" for k, v in info.items())
        logger.debug(f"[{op_id}] {operation} {outcome} in {elapsed_ms:.1f}ms {details}".rstrip())


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a function (usually a store method) inside ``timed_operation``.

    The book argument, when present, is added to the log context.
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            book = kwargs.get("book", args[1] if len(args) > 1 else None)
            if isinstance(book, str):
                context["book"] = book
            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, set, dict)):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore[return-value]
    return decorator

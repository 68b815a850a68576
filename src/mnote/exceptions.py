"""Custom exceptions for mnote.

Provides a structured exception hierarchy with error codes and
machine-readable error information. The CLI prints ``error.message``;
``to_dict()`` is used for debug logging.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note and book errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_INDEX_INVALID = 1002
    BOOK_NOT_FOUND = 1101
    BOOK_ALREADY_EXISTS = 1102
    TEMPLATE_NOT_FOUND = 1201

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    INDEX_WRITE_FAILED = 4101
    INDEX_UNAVAILABLE = 4102

    # Search errors (5xxx)
    SEARCH_FAILED = 5001

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_KEY_NOT_FOUND = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    PATH_TRAVERSAL_DETECTED = 7005

    # Sync errors (8xxx)
    SYNC_GIT_UNAVAILABLE = 8001
    SYNC_NOT_A_REPOSITORY = 8002
    SYNC_CONFLICT = 8003
    SYNC_LOCKED = 8004
    SYNC_REMOTE_FAILED = 8005
    SYNC_COMMIT_FAILED = 8006

    # Editor errors (9xxx)
    EDITOR_FAILED = 9001


class MnoteError(Exception):
    """Base exception for all mnote errors.

    Attributes:
        message: Human-readable error message, printed by the CLI
        code: Machine-readable error code
        details: Context for debug logs; ``None`` values are left out
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
        **context: Any
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = dict(details or {})
        self.details.update({k: v for k, v in context.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        text = f"[{self.code.name}] {self.message}"
        if not self.details:
            return text
        return text + " (" + ", ".join(f"{k}={v}" for k, v in self.details.items()) + ")"


def _clip(value: Any, limit: int) -> Optional[str]:
    return None if value is None else str(value)[:limit]


class ValidationError(MnoteError):
    """Raised for invalid user input (book names, filenames, indexes)."""

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Optional[Any] = None,
                 code: ErrorCode = ErrorCode.VALIDATION_FAILED):
        super().__init__(message, code, field=field or None, value=_clip(value, 100))
        self.field = field
        self.value = value


class PathTraversalError(ValidationError):
    """Raised when a book name would resolve outside the notes root."""

    def __init__(self, book: str):
        super().__init__(f"Invalid book name '{book}': path traversal detected",
                         "book", book, ErrorCode.PATH_TRAVERSAL_DETECTED)


class InvalidNoteIndexError(ValidationError):
    """Raised when a 1-based note index is out of range for its book."""

    def __init__(self, book: str, index: int, count: int):
        super().__init__(f"Invalid note index {index} for book '{book}' ({count} notes)",
                         "index", index, ErrorCode.NOTE_INDEX_INVALID)
        self.book = book
        self.index = index
        self.count = count


class NotFoundError(MnoteError):
    """Base class for missing books, notes, templates and config keys."""


class BookNotFoundError(NotFoundError):
    def __init__(self, book: str):
        super().__init__(f"Book '{book}' not found", ErrorCode.BOOK_NOT_FOUND, book=book)
        self.book = book


class NoteNotFoundError(NotFoundError):
    def __init__(self, book: str, filename: str):
        super().__init__(f"Note '{filename}' not found in book '{book}'",
                         ErrorCode.NOTE_NOT_FOUND, book=book, filename=filename)
        self.book = book
        self.filename = filename


class TemplateNotFoundError(NotFoundError):
    def __init__(self, name: str):
        super().__init__(f"Template '{name}' not found", ErrorCode.TEMPLATE_NOT_FOUND,
                         template=name)
        self.name = name


class ConfigKeyNotFoundError(NotFoundError):
    """Raised when a dotted configuration key is absent."""

    def __init__(self, key: str):
        super().__init__(f"Configuration key '{key}' not found",
                         ErrorCode.CONFIG_KEY_NOT_FOUND, key=key)
        self.key = key


class BookExistsError(MnoteError):
    """Raised when a rename target book already exists."""

    def __init__(self, book: str):
        super().__init__(f"Book '{book}' already exists", ErrorCode.BOOK_ALREADY_EXISTS,
                         book=book)
        self.book = book


class StorageError(MnoteError):
    """Raised when a note file, book directory or config file cannot be used.

    Only the last path component goes into ``details`` so debug logs do not
    leak the full location of the notes root.
    """

    def __init__(self, message: str, operation: Optional[str] = None,
                 path: Optional[str] = None,
                 code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
                 original_error: Optional[Exception] = None):
        super().__init__(
            message, code,
            operation=operation,
            path_hint=path.rsplit("/", 1)[-1] if path else None,
            original_error=_clip(original_error, 200),
        )
        self.operation = operation
        self.path = path
        self.original_error = original_error


class SearchIndexError(StorageError):
    """Raised when the search index cannot be written or opened.

    Note store callers catch this and log a warning; the files stay
    authoritative and a rebuild repairs the drift.
    """

    def __init__(self, message: str, operation: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        super().__init__(message, operation, code=ErrorCode.INDEX_WRITE_FAILED,
                         original_error=original_error)


class ConfigurationError(MnoteError):
    """Raised for invalid configuration values or keys."""

    def __init__(self, message: str, config_key: Optional[str] = None,
                 code: ErrorCode = ErrorCode.CONFIG_INVALID):
        super().__init__(message, code, config_key=config_key or None)
        self.config_key = config_key


class SyncError(MnoteError):
    """Raised when a sync pass fails.

    Attributes:
        operation: The sync step that failed (e.g. "pull", "push")
        original_error: The underlying git error, if any
    """

    def __init__(self, message: str, operation: Optional[str] = None,
                 code: ErrorCode = ErrorCode.SYNC_REMOTE_FAILED,
                 original_error: Optional[Exception] = None):
        super().__init__(message, code, operation=operation,
                         original_error=_clip(original_error, 200))
        self.operation = operation
        self.original_error = original_error


class GitUnavailableError(SyncError):
    def __init__(self, original_error: Optional[Exception] = None):
        super().__init__("Git is not installed or not in PATH", "git",
                         ErrorCode.SYNC_GIT_UNAVAILABLE, original_error)


class NotARepositoryError(SyncError):
    """Raised when the notes root is not a git working tree."""

    def __init__(self, root: str):
        super().__init__(
            f"{root} is not a git repository. "
            "Run 'git init' there or use 'mnote sync init <remote-url>'.",
            "status", ErrorCode.SYNC_NOT_A_REPOSITORY,
        )
        self.root = root


class SyncConflictError(SyncError):
    """Raised when pulling remote changes produced merge conflicts."""

    def __init__(self, original_error: Optional[Exception] = None):
        super().__init__("Conflict detected! Please resolve conflicts manually.", "pull",
                         ErrorCode.SYNC_CONFLICT, original_error)


class SyncLockedError(SyncError):
    def __init__(self, lock_path: str):
        super().__init__(f"Another mnote process is syncing (lock: {lock_path})", "lock",
                         ErrorCode.SYNC_LOCKED)
        self.lock_path = lock_path


class EditorError(MnoteError):
    """Raised when the external editor exits abnormally."""

    def __init__(self, editor: str, returncode: Optional[int] = None):
        message = f"Editor '{editor}' failed"
        if returncode is not None:
            message += f" with exit code {returncode}"
        super().__init__(message, ErrorCode.EDITOR_FAILED, editor=editor)
        self.editor = editor
        self.returncode = returncode

"""Resolution of book names to directories under the notes root."""

import logging
from pathlib import Path
from typing import Tuple

from mnote.exceptions import (ErrorCode, PathTraversalError, StorageError,
                              ValidationError)
from mnote.models.schema import validate_note_filename

logger = logging.getLogger(__name__)

# Generated per-book listing; lives beside notes but is not one
BOOK_INDEX_FILENAME = "INDEX.md"


class PathResolver:
    """Maps book identifiers (``work/project1``) to directories under a root.

    Every book must resolve to a strict descendant of the root. Validation
    happens before any directory is created.
    """

    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def canonical_book(self, book: str) -> Tuple[str, Path]:
        """Validate a book name without touching the filesystem.

        Returns:
            (canonical slash-joined name, absolute directory path)

        Raises:
            PathTraversalError: If the book escapes the root
            ValidationError: If the name is empty or names a hidden directory
        """
        if book is None or not book.strip():
            raise ValidationError("Book name cannot be empty", field="book", value=book)
        if "\\" in book:
            raise ValidationError(
                f"Invalid book name '{book}': use '/' to nest books",
                field="book",
                value=book,
            )
        raw = Path(book)
        if raw.is_absolute() or ".." in raw.parts:
            raise PathTraversalError(book)

        candidate = (self.root / raw).resolve()
        # Symlinks can still point elsewhere after resolution
        if candidate == self.root or self.root not in candidate.parents:
            raise PathTraversalError(book)

        relative = candidate.relative_to(self.root).as_posix()
        if any(part.startswith(".") for part in relative.split("/")):
            raise ValidationError(
                f"Invalid book name '{book}': hidden directories are reserved",
                field="book",
                value=book,
            )
        return relative, candidate

    def resolve_book(self, book: str, create: bool = True) -> Tuple[str, Path]:
        """Validate a book name and (optionally) create its directory."""
        name, path = self.canonical_book(book)
        if create:
            try:
                path.mkdir(parents=True, exist_ok=True)
            except (FileExistsError, NotADirectoryError) as e:
                raise ValidationError(
                    f"Book '{name}' collides with an existing file",
                    field="book",
                    value=book,
                ) from e
            except OSError as e:
                raise StorageError(
                    f"Failed to create book '{name}': {e}",
                    operation="create_book",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                )
        return name, path

    def book_path(self, book: str, create: bool = False) -> Path:
        return self.resolve_book(book, create=create)[1]

    def note_path(self, book: str, filename: str) -> Path:
        """Absolute location of a note; the filename must be a bare ``*.md``."""
        try:
            validate_note_filename(filename)
        except ValueError as e:
            raise ValidationError(str(e), field="filename", value=filename) from e
        return self.book_path(book) / filename

    def book_name(self, directory: Path) -> str:
        """Canonical book name of a directory under the root."""
        return Path(directory).resolve().relative_to(self.root).as_posix()

"""Note storage: Markdown files in book directories.

Files are the source of truth. The search index is updated after each
successful file operation; index failures are logged and never undo the
file change, since a rebuild can always reconcile the two.
"""
import logging
import shutil
from datetime import date
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from mnote.config import TEMPLATES_SUBDIR
from mnote.exceptions import (BookExistsError, BookNotFoundError, ErrorCode,
                              InvalidNoteIndexError, NoteNotFoundError,
                              SearchIndexError, StorageError,
                              ValidationError)
from mnote.models.schema import Note, SearchResult
from mnote.observability import timed_operation, traced
from mnote.storage.markdown_parser import MarkdownParser
from mnote.storage.paths import BOOK_INDEX_FILENAME, PathResolver
from mnote.storage.search_index import SearchIndex
from mnote.storage.templates import TemplateProvider
from mnote.utils import derive_title, note_filename, slugify

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"
# Upper bound on "-N" suffixes tried for one slug on one day
MAX_COLLISION_SUFFIX = 10000


class NoteStore:
    """CRUD over note files with search index maintenance.

    Args:
        root: Notes root directory.
        index: Search index; one at ``<root>/mnote.db`` is created if omitted.
        templates: Template provider; ``<root>/.foam/templates`` if omitted.
    """

    def __init__(
        self,
        root: Path,
        index: Optional[SearchIndex] = None,
        templates: Optional[TemplateProvider] = None,
        parser: Optional[MarkdownParser] = None,
    ) -> None:
        self.paths = PathResolver(root)
        self.root = self.paths.root
        self.parser = parser or MarkdownParser()
        self.index = index or SearchIndex(self.root, parser=self.parser)
        self.templates = templates or TemplateProvider(self.root / TEMPLATES_SUBDIR)

    # ------------------------------------------------------------------
    # Index maintenance (never fatal)
    # ------------------------------------------------------------------

    def _safe_index(self, book: str, filename: str, content: str, path: Path) -> None:
        try:
            self.index.index_note(book, filename, content, path)
        except SearchIndexError as e:
            logger.warning(f"Failed to update search index for {book}/{filename}: {e}")

    def _safe_unindex(self, book: str, filename: str) -> None:
        try:
            self.index.unindex_note(book, filename)
        except SearchIndexError as e:
            logger.warning(f"Failed to remove {book}/{filename} from search index: {e}")

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _read(path: Path) -> str:
        # newline="" keeps line endings exactly as written
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()

    @staticmethod
    def _write(path: Path, content: str, mode: str = "w") -> None:
        with open(path, mode, encoding="utf-8", newline="") as f:
            f.write(content)

    def _compose_content(self, content: str, title: str,
                         tags: Optional[Sequence[str]],
                         template: Optional[str]) -> str:
        final = content
        if template:
            template_content = self.templates.apply_template(template, title=title)
            final = template_content + "\n" + content if content else template_content
        if tags:
            try:
                final = self.parser.merge_tags(final, tags)
            except ValueError as e:
                raise StorageError(
                    f"Cannot add tags: {e}",
                    operation="add_note",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                )
        return final

    def _create_exclusive(self, book_dir: Path, slug: str, content: str,
                          day: Optional[date] = None) -> str:
        """Write ``content`` under the first free ``YYYY-MM-DD-slug[-N].md``.

        Exclusive creation means two processes can never claim one name.
        """
        for counter in range(MAX_COLLISION_SUFFIX):
            filename = note_filename(slug, day, counter)
            path = book_dir / filename
            try:
                self._write(path, content, mode="x")
                return filename
            except FileExistsError:
                continue
            except OSError as e:
                raise StorageError(
                    f"Failed to write note: {e}",
                    operation="add_note",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                )
        raise StorageError(
            f"No free filename for '{slug}' in {book_dir}",
            operation="add_note",
            path=str(book_dir),
            code=ErrorCode.STORAGE_WRITE_FAILED,
        )

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @traced("add_note")
    def add_note(
        self,
        book: str,
        content: str,
        title: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        template: Optional[str] = None,
    ) -> Note:
        """Create a note file in ``book`` and index it.

        The title (explicit, else the first content line) only decides the
        filename. Template and tags are applied before anything is written,
        so a missing template leaves no trace on disk.
        """
        self.paths.canonical_book(book)
        final_title = derive_title(content, title)
        final_content = self._compose_content(content, final_title, tags, template)

        name, book_dir = self.paths.resolve_book(book)
        filename = self._create_exclusive(book_dir, slugify(final_title), final_content)
        path = book_dir / filename
        logger.info(f"Note saved to {path}")
        self._safe_index(name, filename, final_content, path)
        return Note(book=name, filename=filename, content=final_content, path=path)

    def _note_files(self, book_dir: Path) -> List[Path]:
        if not book_dir.is_dir():
            return []
        return sorted(
            (p for p in book_dir.iterdir()
             if p.is_file()
             and p.suffix == NOTE_SUFFIX
             and not p.name.startswith(".")
             and p.name != BOOK_INDEX_FILENAME),
            key=lambda p: p.name,
        )

    def get_notes(self, book: str) -> List[Note]:
        """Notes directly inside ``book``, sorted by filename.

        A book that does not exist has no notes. Files that are not valid
        UTF-8 are skipped with a warning.
        """
        name, book_dir = self.paths.canonical_book(book)
        notes = []
        for path in self._note_files(book_dir):
            try:
                content = self._read(path)
            except UnicodeDecodeError as e:
                logger.warning(f"Skipping {path}: not UTF-8 ({e})")
                continue
            except OSError as e:
                logger.warning(f"Skipping {path}: {e}")
                continue
            notes.append(Note(book=name, filename=path.name, content=content, path=path))
        return notes

    def get_note(self, book: str, index: int) -> Note:
        """1-based lookup into ``get_notes(book)``.

        Raises:
            InvalidNoteIndexError: If ``index`` is out of range
        """
        notes = self.get_notes(book)
        if index < 1 or index > len(notes):
            raise InvalidNoteIndexError(book, index, len(notes))
        return notes[index - 1]

    def _remove(self, note: Note) -> None:
        try:
            note.path.unlink()
        except FileNotFoundError:
            raise NoteNotFoundError(note.book, note.filename)
        except OSError as e:
            raise StorageError(
                f"Failed to delete note: {e}",
                operation="delete_note",
                path=str(note.path),
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            )
        self._safe_unindex(note.book, note.filename)

    @traced("delete_note")
    def delete_note(self, book: str, index: int) -> str:
        """Delete the ``index``-th note of ``book``; returns its filename."""
        note = self.get_note(book, index)
        self._remove(note)
        logger.info(f"Deleted note {note.book}/{note.filename}")
        return note.filename

    @traced("update_note")
    def update_note(self, book: str, filename: str, content: str) -> Note:
        """Rewrite an existing note in place and re-index it.

        Raises:
            NoteNotFoundError: If the note file does not exist
        """
        name, _ = self.paths.canonical_book(book)
        path = self.paths.note_path(name, filename)
        if not path.is_file():
            raise NoteNotFoundError(name, filename)
        try:
            self._write(path, content)
        except OSError as e:
            raise StorageError(
                f"Failed to write note: {e}",
                operation="update_note",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            )
        self._safe_index(name, filename, content, path)
        return Note(book=name, filename=filename, content=content, path=path)

    @traced("move_note")
    def move_note(self, book: str, index: int, target_book: str) -> Note:
        """Re-create a note in ``target_book`` and delete the original.

        The moved note gets a new filename (and today's date). The original
        is removed by the filename resolved before the add, so moving within
        one book never deletes the wrong file. Not atomic: if the delete
        fails the note exists in both books until it is removed by hand.
        """
        source = self.get_note(book, index)
        moved = self.add_note(target_book, source.content)
        self._remove(source)
        logger.info(f"Moved note {source.book}/{source.filename} -> {moved.book}/{moved.filename}")
        return moved

    @traced("rename_book")
    def rename_book(self, old_name: str, new_name: str) -> str:
        """Rename a book directory and rewrite its index records.

        Raises:
            BookNotFoundError: If ``old_name`` does not exist
            BookExistsError: If ``new_name`` already exists
        """
        old, old_path = self.paths.canonical_book(old_name)
        new, new_path = self.paths.canonical_book(new_name)
        if not old_path.is_dir():
            raise BookNotFoundError(old)
        if new_path.exists():
            raise BookExistsError(new)
        if old_path in new_path.parents:
            raise ValidationError(
                f"Cannot move book '{old}' inside itself",
                field="new_name",
                value=new_name,
            )
        try:
            new_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(old_path), str(new_path))
        except OSError as e:
            raise StorageError(
                f"Failed to rename book: {e}",
                operation="rename_book",
                path=str(old_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            )
        try:
            updated = self.index.rename_book(old, new)
            logger.debug(f"Rewrote {updated} index records for {old} -> {new}")
        except SearchIndexError as e:
            logger.warning(f"Failed to update search index for book rename: {e}")
        logger.info(f"Renamed book {old} -> {new}")
        return new

    # ------------------------------------------------------------------
    # Books and traversal
    # ------------------------------------------------------------------

    def get_books_recursive(self) -> List[str]:
        """All books, depth first, sorted at each level, parents first.

        Hidden directories (``.git``, ``.foam``) are not books. Directories
        whose names cannot be book names (a backslash, for instance) are
        skipped with a warning, together with everything below them.
        """
        books: List[str] = []

        def walk(directory: Path, parent: str) -> None:
            try:
                entries = sorted(directory.iterdir(), key=lambda p: p.name)
            except OSError as e:
                logger.warning(f"Cannot list {directory}: {e}")
                return
            for entry in entries:
                if entry.name.startswith(".") or not entry.is_dir() or entry.is_symlink():
                    continue
                name = f"{parent}/{entry.name}" if parent else entry.name
                try:
                    self.paths.canonical_book(name)
                except ValidationError as e:
                    logger.warning(f"Skipping directory {entry}: {e.message}")
                    continue
                books.append(name)
                walk(entry, name)

        walk(self.root, "")
        return books

    def iter_notes(self) -> Iterator[Note]:
        """Every note under the root, book by book."""
        for book in self.get_books_recursive():
            yield from self.get_notes(book)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def rebuild_index(self) -> int:
        """Re-index every note on disk from scratch; returns the count."""
        with timed_operation("rebuild_index") as op:
            count = self.index.rebuild(self.iter_notes())
            op["result_count"] = count
        return count

    def find_notes(self, keyword: Optional[str] = None, book: Optional[str] = None,
                   tag: Optional[str] = None) -> List[SearchResult]:
        """Search the index, rebuilding it first if the index file is missing."""
        if not self.index.exists():
            logger.warning("Search index not found, rebuilding from notes")
            try:
                self.rebuild_index()
            except SearchIndexError as e:
                logger.error(f"Failed to rebuild search index: {e}")
                return []
        if book:
            book = self.paths.canonical_book(book)[0]
        with timed_operation("find_notes", keyword=keyword, book=book, tag=tag) as op:
            results = self.index.search(keyword, book=book, tag=tag)
            op["result_count"] = len(results)
        return results

    def list_templates(self) -> List[str]:
        return self.templates.list_templates()

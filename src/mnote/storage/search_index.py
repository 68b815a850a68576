"""SQLite FTS5 search index over note files.

The index is derived state: a ``notes`` table keyed by (book, filename)
plus an FTS5 projection of the content, kept in step by triggers. It can
be deleted at any time and rebuilt from the note files.
"""
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional, Set

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from mnote.config import DB_FILENAME
from mnote.exceptions import SearchIndexError
from mnote.models.db_models import DBNote, init_db
from mnote.models.schema import Note, NoteKey, SearchResult
from mnote.storage.markdown_parser import MarkdownParser
from mnote.utils import escape_like_pattern

logger = logging.getLogger(__name__)


def build_match_query(keyword: str) -> str:
    """Translate a user keyword into an FTS5 MATCH expression.

    A keyword containing a double quote is passed through as written, so
    ``"exact phrase"`` stays a phrase query. Otherwise every whitespace
    separated term becomes a quoted prefix term: ``data sys`` matches
    ``database system``.
    """
    keyword = keyword.strip()
    if '"' in keyword:
        return keyword
    return " ".join(f'"{term}"*' for term in keyword.split())


class SearchIndex:
    """Queryable projection of all notes under one root.

    Args:
        root: Notes root; index paths are rebuilt relative to it.
        db_path: Index file, ``<root>/mnote.db`` by default.
        busy_timeout_ms: SQLite busy timeout for concurrent processes.
    """

    def __init__(
        self,
        root: Path,
        db_path: Optional[Path] = None,
        busy_timeout_ms: int = 5000,
        parser: Optional[MarkdownParser] = None,
    ) -> None:
        self.root = Path(root).expanduser().resolve()
        self.db_path = Path(db_path) if db_path else self.root / DB_FILENAME
        self.busy_timeout_ms = busy_timeout_ms
        self.parser = parser or MarkdownParser()
        self._engine = None
        self._session_factory = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        """True when the index file is present on disk."""
        return self.db_path.is_file()

    def _sessions(self):
        """Session factory, opening (and creating) the database on demand."""
        if self._engine is not None and not self.exists():
            # Deleted underneath us; start over with a fresh file
            logger.info(f"Index file {self.db_path} disappeared, reopening")
            self.close()
        if self._engine is None:
            try:
                self._engine = init_db(self.db_path, self.busy_timeout_ms)
            except (SQLAlchemyError, sqlite3.Error) as e:
                raise SearchIndexError(
                    f"Cannot open search index: {e}",
                    operation="open_index",
                    original_error=e,
                )
            self._session_factory = sessionmaker(bind=self._engine)
        return self._session_factory

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def _note_path(self, book: str, filename: str) -> str:
        return str(self.root / book / filename)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def index_note(self, book: str, filename: str, content: str,
                   path: Optional[Path] = None) -> None:
        """Insert or update the record for (book, filename).

        Raises:
            SearchIndexError: If the database write fails
        """
        tags = self.parser.tags_field(content)
        note_path = str(path) if path else self._note_path(book, filename)
        try:
            with self._sessions()() as session:
                db_note = session.scalar(
                    select(DBNote).where(DBNote.book == book, DBNote.filename == filename)
                )
                if db_note is None:
                    session.add(DBNote(book=book, filename=filename, path=note_path,
                                       content=content, tags=tags))
                else:
                    db_note.path = note_path
                    db_note.content = content
                    db_note.tags = tags
                session.commit()
        except SQLAlchemyError as e:
            raise SearchIndexError(
                f"Failed to index {book}/{filename}: {e}",
                operation="index_note",
                original_error=e,
            )

    def unindex_note(self, book: str, filename: str) -> bool:
        """Remove a record; returns whether one existed."""
        try:
            with self._sessions()() as session:
                db_note = session.scalar(
                    select(DBNote).where(DBNote.book == book, DBNote.filename == filename)
                )
                if db_note is None:
                    return False
                session.delete(db_note)
                session.commit()
                return True
        except SQLAlchemyError as e:
            raise SearchIndexError(
                f"Failed to unindex {book}/{filename}: {e}",
                operation="unindex_note",
                original_error=e,
            )

    def rename_book(self, old_name: str, new_name: str) -> int:
        """Rewrite book and path of every record under ``old_name``.

        Covers the book itself and all nested books (``old_name/...``).
        Returns the number of records updated.
        """
        prefix = old_name + "/"
        like = escape_like_pattern(prefix) + "%"
        try:
            with self._sessions()() as session:
                db_notes = session.scalars(
                    select(DBNote).where(
                        (DBNote.book == old_name)
                        | DBNote.book.like(like, escape="\\")
                    )
                ).all()
                for db_note in db_notes:
                    if db_note.book == old_name:
                        new_book = new_name
                    else:
                        new_book = new_name + "/" + db_note.book[len(prefix):]
                    db_note.book = new_book
                    db_note.path = self._note_path(new_book, db_note.filename)
                session.commit()
                return len(db_notes)
        except SQLAlchemyError as e:
            raise SearchIndexError(
                f"Failed to rename book {old_name} -> {new_name}: {e}",
                operation="rename_book",
                original_error=e,
            )

    def rebuild(self, notes: Iterable[Note]) -> int:
        """Replace the whole index with ``notes`` in one transaction.

        Clears both tables and the autoincrement counter first. Returns the
        number of records written.
        """
        count = 0
        try:
            with self._sessions()() as session:
                session.execute(text("DELETE FROM notes"))
                session.execute(text("DELETE FROM sqlite_sequence WHERE name = 'notes'"))
                for note in notes:
                    session.add(DBNote(
                        book=note.book,
                        filename=note.filename,
                        path=str(note.path or self._note_path(note.book, note.filename)),
                        content=note.content,
                        tags=self.parser.tags_field(note.content),
                    ))
                    count += 1
                session.flush()
                session.execute(text("INSERT INTO notes_fts(notes_fts) VALUES('rebuild')"))
                session.commit()
        except SQLAlchemyError as e:
            raise SearchIndexError(
                f"Failed to rebuild index: {e}",
                operation="rebuild",
                original_error=e,
            )
        logger.info(f"Rebuilt search index with {count} notes")
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(self, keyword: Optional[str] = None, book: Optional[str] = None,
               tag: Optional[str] = None) -> List[SearchResult]:
        """Full-text and tag search.

        Keyword results are ordered by BM25 relevance, tag-only results by
        filename. Query errors are logged and produce an empty list.
        """
        keyword = (keyword or "").strip()
        tag = (tag or "").strip()
        if not keyword and not tag:
            return []

        params = {}
        clauses = []
        if keyword:
            params["query"] = build_match_query(keyword)
            sql = (
                "SELECT n.book, n.filename, n.content FROM notes_fts "
                "JOIN notes n ON n.id = notes_fts.rowid "
                "WHERE notes_fts MATCH :query"
            )
            order = " ORDER BY bm25(notes_fts), n.filename"
        else:
            sql = "SELECT n.book, n.filename, n.content FROM notes n WHERE 1 = 1"
            order = " ORDER BY n.filename"

        if tag:
            params["tag"] = f"%,{escape_like_pattern(tag)},%"
            clauses.append("n.tags LIKE :tag ESCAPE '\\'")
        if book:
            params["book"] = book
            clauses.append("n.book = :book")
        for clause in clauses:
            sql += f" AND {clause}"
        sql += order

        try:
            with self._sessions()() as session:
                rows = session.execute(text(sql), params).fetchall()
        except (SQLAlchemyError, SearchIndexError) as e:
            logger.warning(f"Search failed for keyword={keyword!r} tag={tag!r}: {e}")
            return []
        return [SearchResult(book=r[0], filename=r[1], content=r[2]) for r in rows]

    def keys(self) -> Set[NoteKey]:
        """All (book, filename) pairs in the index; empty if there is no index."""
        if not self.exists():
            return set()
        with self._sessions()() as session:
            rows = session.execute(select(DBNote.book, DBNote.filename)).all()
        return {(r[0], r[1]) for r in rows}

    def get(self, book: str, filename: str) -> Optional[dict]:
        if not self.exists():
            return None
        with self._sessions()() as session:
            db_note = session.scalar(
                select(DBNote).where(DBNote.book == book, DBNote.filename == filename)
            )
            if db_note is None:
                return None
            return {
                "id": db_note.id,
                "book": db_note.book,
                "filename": db_note.filename,
                "path": db_note.path,
                "content": db_note.content,
                "tags": db_note.tags,
            }

    def count(self) -> int:
        if not self.exists():
            return 0
        with self._sessions()() as session:
            return session.scalar(select(func.count(DBNote.id))) or 0

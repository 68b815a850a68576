"""Generated navigation files: the root README.md and each book's INDEX.md.

Only the block between the two markers is rewritten, so anything a user
writes around it survives regeneration.
"""

import logging
from pathlib import Path
from typing import List
from urllib.parse import quote

from mnote.storage.note_store import NoteStore
from mnote.storage.paths import BOOK_INDEX_FILENAME

logger = logging.getLogger(__name__)

MARKER_START = "<!-- MNOTE_INDEX_START -->"
MARKER_END = "<!-- MNOTE_INDEX_END -->"
README_FILENAME = "README.md"
README_TITLE = "My Personal Notes"


def replace_generated_block(existing: str, generated: str, title: str) -> str:
    """Insert or replace the marker-delimited block in ``existing``."""
    block = f"{MARKER_START}\n{generated}\n{MARKER_END}"
    start = existing.find(MARKER_START)
    end = existing.find(MARKER_END)
    if start != -1 and end > start:
        return existing[:start] + block + existing[end + len(MARKER_END):]
    if existing.strip():
        return f"{existing}\n\n{block}\n"
    return f"# {title}\n\n{block}\n"


class BookIndexWriter:
    """Writes README.md (tree of books) and per-book INDEX.md files."""

    def __init__(self, store: NoteStore):
        self.store = store
        self.root = store.root

    def _update_file(self, path: Path, generated: str, title: str) -> None:
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        path.write_text(replace_generated_block(existing, generated, title), encoding="utf-8")

    def render_tree(self) -> str:
        lines: List[str] = []
        for book in self.store.get_books_recursive():
            depth = book.count("/")
            name = book.rsplit("/", 1)[-1]
            lines.append(f"{'  ' * depth}- [{name}]({quote(book)}/{BOOK_INDEX_FILENAME})")
        return "\n".join(lines)

    def render_book(self, book: str) -> str:
        _, book_dir = self.store.paths.canonical_book(book)
        sub_books = sorted(
            p.name for p in book_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        )
        notes = [note.filename for note in self.store.get_notes(book)]

        parts = ["## Contents", ""]
        if sub_books:
            parts.append("### Sub-books")
            parts.extend(f"- [{name}]({quote(name)}/{BOOK_INDEX_FILENAME})" for name in sub_books)
            parts.append("")
        if notes:
            parts.append("### Notes")
            parts.extend(f"- [{name[:-3]}]({quote(name)})" for name in notes)
        if not sub_books and not notes:
            parts.append("_Empty_")
        return "\n".join(parts).rstrip("\n")

    def write_readme(self) -> Path:
        path = self.root / README_FILENAME
        self._update_file(path, self.render_tree(), README_TITLE)
        return path

    def write_book_index(self, book: str) -> Path:
        _, book_dir = self.store.paths.canonical_book(book)
        path = book_dir / BOOK_INDEX_FILENAME
        self._update_file(path, self.render_book(book), book_dir.name)
        return path

    def reindex_all(self) -> int:
        """Regenerate README.md and every INDEX.md; returns the book count."""
        self.write_readme()
        books = self.store.get_books_recursive()
        for book in books:
            self.write_book_index(book)
        logger.info(f"Regenerated README and {len(books)} book indexes")
        return len(books)

"""SQLAlchemy database models for the mnote search index."""
from pathlib import Path
from typing import Union

from sqlalchemy import (Column, Integer, String, Text, UniqueConstraint,
                        create_engine, event, text)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import QueuePool

Base = declarative_base()


class DBNote(Base):
    """Index record for one note file."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    book = Column(String(1024), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    path = Column(String(4096), nullable=False, unique=True)
    content = Column(Text, nullable=True)
    # Padded delimited string (",a,b,") for LIKE containment matching
    tags = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("book", "filename", name="uq_notes_book_filename"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<Note(book='{self.book}', filename='{self.filename}')>"


def init_db(db_path: Union[str, Path], busy_timeout_ms: int = 5000) -> Engine:
    """Create (if needed) and open the index database.

    Every connection gets WAL journaling, NORMAL synchronous mode and a
    busy timeout, since several mnote processes may touch the index at
    the same time.
    """
    engine = create_engine(
        f"sqlite:///{db_path}",
        poolclass=QueuePool,
        pool_size=2,
        max_overflow=3,
        pool_timeout=30,
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)
    init_fts5(engine)
    return engine


# notes_fts is an external-content projection of notes.content; its rowid
# is always notes.id
FTS_DDL = (
    """CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
        book UNINDEXED, filename UNINDEXED, content,
        content='notes', content_rowid='id'
    )""",
    """CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN
        INSERT INTO notes_fts(rowid, book, filename, content)
        VALUES (NEW.id, NEW.book, NEW.filename, NEW.content);
    END""",
    """CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN
        INSERT INTO notes_fts(notes_fts, rowid, book, filename, content)
        VALUES ('delete', OLD.id, OLD.book, OLD.filename, OLD.content);
    END""",
    """CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE ON notes BEGIN
        INSERT INTO notes_fts(notes_fts, rowid, book, filename, content)
        VALUES ('delete', OLD.id, OLD.book, OLD.filename, OLD.content);
        INSERT INTO notes_fts(rowid, book, filename, content)
        VALUES (NEW.id, NEW.book, NEW.filename, NEW.content);
    END""",
)


def init_fts5(engine: Engine) -> None:
    """Create the full-text table and the triggers that keep it current."""
    with engine.begin() as conn:
        for statement in FTS_DDL:
            conn.execute(text(statement))

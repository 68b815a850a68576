"""Data models for mnote."""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

# A note filename is a bare Markdown file name: no separators, not hidden
SAFE_FILENAME_PATTERN = re.compile(r"^[^/\\.][^/\\]*\.md$")

NoteKey = Tuple[str, str]


def validate_note_filename(value: str) -> str:
    """Validate a note filename as a single ``*.md`` path component.

    Raises:
        ValueError: If the value could escape its book directory
    """
    if not value:
        raise ValueError("filename cannot be empty")
    if not SAFE_FILENAME_PATTERN.match(value):
        raise ValueError(f"'{value}' is not a Markdown filename")
    return value


class Note(BaseModel):
    """A note file within a book."""
    book: str = Field(..., description="Slash-delimited book path, e.g. work/project1")
    filename: str = Field(..., description="YYYY-MM-DD-<slug>[-N].md")
    content: str = Field(default="")
    path: Optional[Path] = Field(default=None, description="Absolute file location")

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("filename")
    @classmethod
    def _check_filename(cls, v: str) -> str:
        return validate_note_filename(v)

    @property
    def key(self) -> NoteKey:
        return (self.book, self.filename)


class SearchResult(BaseModel):
    """One match from the search index."""
    book: str
    filename: str
    content: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def key(self) -> NoteKey:
        return (self.book, self.filename)


class ConsistencyStatus(str, Enum):
    CONSISTENT = "consistent"
    INCONSISTENT = "inconsistent"


class ConsistencyReport(BaseModel):
    """Drift between note files and index records."""
    status: Literal["consistent", "inconsistent"]
    missing_in_index: List[NoteKey] = Field(default_factory=list)
    missing_on_disk: List[NoteKey] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return self.status == ConsistencyStatus.CONSISTENT.value


@dataclass
class SyncResult:
    """Outcome of one sync pass.

    Attributes:
        committed: Local changes were committed in this pass
        pulled: Remote changes were integrated
        pushed: Local history was pushed
        local_only: No remote configured; nothing left the machine
        message: Short human-readable summary
    """

    committed: bool = False
    pulled: bool = False
    pushed: bool = False
    local_only: bool = False
    message: str = ""

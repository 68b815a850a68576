"""Utility functions for mnote."""

import re
import unicodedata
from datetime import date, datetime
from typing import Optional

UNTITLED = "untitled"

# Leaves room for the date prefix and a "-N.md" suffix within the
# 255-byte filename limit of common filesystems. Slugs are ASCII.
MAX_SLUG_LENGTH = 200

_LEADING_MARKUP = re.compile(r"^[\s#\-\*]+")


def slugify(text: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Turn a title into a filename-safe slug.

    Long slugs are cut back to the last whole word within ``max_length``.

    Examples:
        "Hello World!" -> "hello-world"
        "Café  au lait" -> "cafe-au-lait"
        "--- a -- b ---" -> "a-b"
    """
    normalized = unicodedata.normalize("NFD", text)
    stripped = "".join(c for c in normalized if not unicodedata.combining(c))
    slug = stripped.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    if len(slug) > max_length:
        cut = slug[:max_length + 1]
        slug = cut.rsplit("-", 1)[0] if "-" in cut else slug[:max_length]
    return slug.strip("-")


def derive_title(content: str, title: Optional[str] = None) -> str:
    """Explicit title, else the first non-empty content line without
    leading markup (``#``, ``-``, ``*``), else "untitled"."""
    if title and title.strip():
        return title.strip()
    for line in content.splitlines():
        clean = _LEADING_MARKUP.sub("", line).strip()
        if clean:
            return clean
    return UNTITLED


def note_filename(slug: str, day: Optional[date] = None, counter: int = 0) -> str:
    """Build ``YYYY-MM-DD-<slug>[-N].md``."""
    day = day or date.today()
    stem = f"{day.isoformat()}-{slug or UNTITLED}"
    if counter:
        stem = f"{stem}-{counter}"
    return f"{stem}.md"


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Example:
        >>> escape_like_pattern("100% done_now")
        '100\\\\% done\\\\_now'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def sync_commit_message(now: Optional[datetime] = None) -> str:
    """Timestamped commit message used for local changes during sync."""
    now = now or datetime.now().astimezone()
    return f"Sync: {now.isoformat(timespec='seconds')}"

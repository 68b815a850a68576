"""Frontmatter handling for note content.

Only the ``tags`` key matters to mnote: it is read for the search index
and merged when a note is added with tags. Everything else in the
frontmatter block passes through untouched.
"""
import logging
from typing import Iterable, List, Optional

import frontmatter
import yaml

logger = logging.getLogger(__name__)

TAG_DELIMITER = ","


def _normalize_tags(raw) -> List[str]:
    """Accept a list, or a scalar (comma-separated when a string)."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set)):
        values = [str(t).strip() for t in raw if t is not None]
    elif isinstance(raw, str):
        values = [t.strip() for t in raw.split(TAG_DELIMITER)]
    else:
        values = [str(raw).strip()]
    return [v for v in values if v]


class MarkdownParser:
    """Reads and rewrites the frontmatter of note content."""

    def extract_tags(self, content: str) -> List[str]:
        """Return the frontmatter tags of a note, in order, without duplicates.

        Malformed frontmatter yields no tags; the problem is logged.
        """
        try:
            post = frontmatter.loads(content)
        except (ValueError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring unparseable frontmatter: {e}")
            return []
        tags = _normalize_tags(post.metadata.get("tags"))
        return list(dict.fromkeys(tags))

    def merge_tags(self, content: str, tags: Iterable[str]) -> str:
        """Union ``tags`` into the frontmatter tag list of ``content``.

        Existing tags keep their order; new tags are appended.

        Raises:
            ValueError: If existing frontmatter cannot be parsed
        """
        extra = _normalize_tags(list(tags))
        if not extra:
            return content
        try:
            post = frontmatter.loads(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Cannot merge tags into malformed frontmatter: {e}") from e
        existing = _normalize_tags(post.metadata.get("tags"))
        post.metadata["tags"] = list(dict.fromkeys(existing + extra))
        return frontmatter.dumps(post) + "\n"

    def tags_field(self, content: str) -> Optional[str]:
        """Index representation of the tags: ``,a,b,`` or None."""
        return format_tags_field(self.extract_tags(content))


def format_tags_field(tags: List[str]) -> Optional[str]:
    if not tags:
        return None
    return TAG_DELIMITER + TAG_DELIMITER.join(tags) + TAG_DELIMITER

"""Note templates stored under ``<root>/.foam/templates``."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from mnote.exceptions import ErrorCode, StorageError, TemplateNotFoundError
from mnote.utils import UNTITLED

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".md"


def template_variables(title: Optional[str] = None,
                       now: Optional[datetime] = None) -> Dict[str, str]:
    now = now or datetime.now()
    return {
        "$DATE_YEAR": f"{now.year:04d}",
        "$DATE_MONTH": f"{now.month:02d}",
        "$DATE_DAY": f"{now.day:02d}",
        "$DATE_HOUR": f"{now.hour:02d}",
        "$DATE_MINUTE": f"{now.minute:02d}",
        "$DATE_SECOND": f"{now.second:02d}",
        "$FOAM_TITLE": title or UNTITLED,
    }


class TemplateProvider:
    """Looks up templates by name and substitutes date/title placeholders."""

    def __init__(self, templates_dir: Path):
        self.templates_dir = Path(templates_dir)

    def _template_path(self, name: str) -> Path:
        # Names are bare file names; "daily" and "daily.md" are the same
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise TemplateNotFoundError(name)
        path = self.templates_dir / name
        if not path.is_file() and not name.endswith(TEMPLATE_SUFFIX):
            path = self.templates_dir / f"{name}{TEMPLATE_SUFFIX}"
        if not path.is_file():
            raise TemplateNotFoundError(name)
        return path

    def list_templates(self) -> List[str]:
        if not self.templates_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.templates_dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

    def apply_template(self, name: str, title: Optional[str] = None,
                       now: Optional[datetime] = None) -> str:
        """Read a template and substitute its placeholders.

        Raises:
            TemplateNotFoundError: If no template with that name exists
        """
        path = self._template_path(name)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Failed to read template '{name}': {e}",
                operation="read_template",
                path=str(path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            )
        for token, value in template_variables(title, now).items():
            content = content.replace(token, value)
        logger.debug(f"Applied template {name}")
        return content

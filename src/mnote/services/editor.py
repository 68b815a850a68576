"""Interactive editing of note content."""

import logging
import os
import shlex
import subprocess
import sys
import tempfile
from typing import Callable, Optional, TextIO

from mnote.exceptions import EditorError

logger = logging.getLogger(__name__)


class EditorLauncher:
    """Opens content in an external editor and returns the result.

    When the editor command cannot be started, falls back to reading lines
    from ``stdin`` until EOF.
    """

    def __init__(self, editor: str, stdin: Optional[TextIO] = None,
                 runner: Callable = subprocess.run) -> None:
        self.editor = editor
        self.stdin = stdin or sys.stdin
        self._run = runner

    def read_stdin(self) -> Optional[str]:
        print("Enter note content, finish with Ctrl-D:", file=sys.stderr)
        content = self.stdin.read()
        return content if content.strip() else None

    def edit(self, initial: str = "") -> Optional[str]:
        """Return edited content, or None if the result is blank.

        Raises:
            EditorError: If the editor exits with a non-zero status
        """
        fd, tmp_path = tempfile.mkstemp(prefix="mnote-edit-", suffix=".md")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(initial)
            try:
                result = self._run(shlex.split(self.editor) + [tmp_path])
            except (FileNotFoundError, PermissionError) as e:
                logger.warning(f"Cannot start editor '{self.editor}': {e}")
                return self.read_stdin()
            if result.returncode != 0:
                raise EditorError(self.editor, result.returncode)
            with open(tmp_path, "r", encoding="utf-8") as f:
                content = f.read()
        finally:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
        return content if content.strip() else None

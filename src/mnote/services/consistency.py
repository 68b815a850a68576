"""Drift detection and repair between note files and the search index."""

import logging

from mnote.models.schema import ConsistencyReport, ConsistencyStatus
from mnote.observability import timed_operation
from mnote.storage.note_store import NoteStore

logger = logging.getLogger(__name__)


class ConsistencyChecker:
    """Compares (book, filename) keys on disk with those in the index."""

    def __init__(self, store: NoteStore):
        self.store = store

    def check(self) -> ConsistencyReport:
        """Read-only comparison; a missing index counts as empty."""
        with timed_operation("check_consistency") as op:
            on_disk = {note.key for note in self.store.iter_notes()}
            in_index = self.store.index.keys()
            missing_in_index = sorted(on_disk - in_index)
            missing_on_disk = sorted(in_index - on_disk)
            status = (
                ConsistencyStatus.CONSISTENT
                if not missing_in_index and not missing_on_disk
                else ConsistencyStatus.INCONSISTENT
            )
            op["status"] = status.value
        if status is ConsistencyStatus.INCONSISTENT:
            logger.info(
                f"Index drift: {len(missing_in_index)} missing in index, "
                f"{len(missing_on_disk)} missing on disk"
            )
        return ConsistencyReport(
            status=status.value,
            missing_in_index=missing_in_index,
            missing_on_disk=missing_on_disk,
        )

    def rebuild(self) -> int:
        """Full rebuild of the index from disk; returns the note count."""
        return self.store.rebuild_index()

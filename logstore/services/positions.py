# logstore/services/positions.py
"""
Position tracker: per-file watermark of the last ingested line.

The tracker is a cache over the store. The store's highest `line_no` for a
file is the truth; `reconcile` corrects the cache whenever the two disagree
(for example after a crash between a write and the matching `advance`).
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from logstore.core.config import settings
from logstore.core.errors import OutOfOrderAdvance
from logstore.services.storage import LogStore

logger = logging.getLogger(__name__)


class PositionTracker:
    """Watermarks for every file, shared safely by workers on distinct files."""

    def __init__(
        self,
        store: LogStore,
        *,
        start_line_no: Optional[int] = None,
        recover: bool = True,
    ) -> None:
        self._store = store
        self._start = settings.START_LINE_NO if start_line_no is None else start_line_no
        self._marks: Dict[str, int] = {}
        self._lock = threading.Lock()
        if recover:
            self.recover()

    @property
    def start_line_no(self) -> int:
        return self._start

    def watermark(self, file_id: str) -> Optional[int]:
        with self._lock:
            return self._marks.get(file_id)

    def next_expected(self, file_id: str) -> int:
        with self._lock:
            mark = self._marks.get(file_id)
        return self._start if mark is None else mark + 1

    def advance(self, file_id: str, line_no: int) -> None:
        """
        Move the watermark of `file_id` to `line_no`.

        Raises:
            OutOfOrderAdvance: `line_no` is not past the current watermark.
        """
        with self._lock:
            mark = self._marks.get(file_id)
            if mark is not None and line_no <= mark:
                raise OutOfOrderAdvance(
                    f"advance to {line_no} is not past watermark {mark}",
                    file_id=file_id,
                    line_no=line_no,
                )
            self._marks[file_id] = line_no

    def reconcile(self, file_id: str) -> Optional[int]:
        """Align the watermark with the store; returns the corrected value."""
        stored = self._store.max_line_no(file_id)
        with self._lock:
            cached = self._marks.get(file_id)
            if cached != stored:
                if cached is not None:
                    logger.warning(
                        "Watermark mismatch for %s: tracker=%s store=%s; using store",
                        file_id,
                        cached,
                        stored,
                    )
                if stored is None:
                    self._marks.pop(file_id, None)
                else:
                    self._marks[file_id] = stored
        return stored

    def recover(self) -> Dict[str, int]:
        """Rebuild watermarks for every file the store knows about."""
        recovered = {}
        for file_id in self._store.file_ids():
            mark = self.reconcile(file_id)
            if mark is not None:
                recovered[file_id] = mark
        if recovered:
            logger.info("Recovered watermarks for %d file(s)", len(recovered))
        return recovered

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._marks)

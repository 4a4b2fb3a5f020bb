# logstore/services/query_service.py
"""
Query layer: turns a `LogQuery` into storage scans and streams the result.

- no file filter, or one file: a single `scan_filtered`
- several files: one `scan_filtered` per file, merge-sorted by
  (ts, file_id, line_no), the same order a single scan would produce

Results are lazy. Closing the returned iterator closes every underlying scan,
which releases their sessions.
"""

from __future__ import annotations

import heapq
import logging
from itertools import islice
from typing import Iterator, List, Optional

from logstore.schemas.query import LogQuery
from logstore.services.storage import LogStore, TimeRange
from logstore.utils.parsers import LogRecord

logger = logging.getLogger(__name__)


def _sort_key(record: LogRecord) -> tuple:
    return record.sort_key


class QueryService:
    def __init__(self, store: LogStore) -> None:
        self._store = store

    def run(self, query: LogQuery) -> Iterator[LogRecord]:
        """Records matching `query`, ascending by ts then (file_id, line_no)."""
        time_range = TimeRange(query.start, query.end)
        file_ids = list(dict.fromkeys(query.file_ids))

        scans = [
            self._store.scan_filtered(
                time_range,
                user_id=query.user_id,
                status_code=query.status_code,
                file_id=file_id,
            )
            for file_id in (file_ids or [None])
        ]
        logger.debug("Query %s -> %d scan(s)", query.model_dump(exclude_defaults=True), len(scans))
        return self._merge(scans, query.limit)

    def file_range(
        self,
        file_id: str,
        from_line: int = 1,
        to_line: Optional[int] = None,
    ) -> Iterator[LogRecord]:
        """Records of one file in line order."""
        return self._store.scan_file(file_id, from_line, to_line)

    @staticmethod
    def _merge(scans: List[Iterator[LogRecord]], limit: Optional[int]) -> Iterator[LogRecord]:
        try:
            merged = scans[0] if len(scans) == 1 else heapq.merge(*scans, key=_sort_key)
            if limit is not None:
                merged = islice(merged, limit)
            yield from merged
        finally:
            for scan in scans:
                scan.close()

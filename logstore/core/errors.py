# logstore/core/errors.py
"""
Error taxonomy shared by the codec, storage, tracker and pipeline.

Every error carries the `file_id` / `line_no` it concerns (when known) so a
caller can resume or diagnose without re-reading the whole file.
"""

from __future__ import annotations

from typing import Optional


class LogStoreError(Exception):
    """Base class for all log store errors."""

    def __init__(
        self,
        message: str,
        *,
        file_id: Optional[str] = None,
        line_no: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.file_id = file_id
        self.line_no = line_no

    def __str__(self) -> str:
        where = []
        if self.file_id is not None:
            where.append(f"file_id={self.file_id}")
        if self.line_no is not None:
            where.append(f"line_no={self.line_no}")
        if not where:
            return self.message
        return f"{self.message} ({', '.join(where)})"


class ParseError(LogStoreError):
    """A raw line (or encoded record) could not be decoded."""


class DuplicateKey(LogStoreError):
    """A record with the same (file_id, line_no) is already stored."""


class OutOfOrderAdvance(LogStoreError):
    """A watermark advance did not move strictly forward."""


class StorageIOError(LogStoreError):
    """The storage medium failed to read or write."""


class RecordNotFound(LogStoreError, KeyError):
    """Point lookup for a key that is not stored."""

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return LogStoreError.__str__(self)


class SourceIOError(LogStoreError):
    """The source log file could not be opened or read."""


class IngestStateError(LogStoreError):
    """Ingestion requested for a file that sits in the ERROR state."""
